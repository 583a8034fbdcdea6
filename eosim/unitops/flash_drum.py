from __future__ import annotations

from typing import List, Optional

import numpy as np

from ..flowsheet_tools import EPS, UnitOp, energy_terms, total_flow_row
from ..thermo import FlashResult


class FlashDrum(UnitOp):
    """
    Two-phase equilibrium drum. All inlets are mixed and flashed at the drum
    T and P; the vapor and liquid outlets leave at that T and P.

    Give exactly one of ``T`` / ``duty`` and exactly one of ``P`` / ``dP``
    (dP is taken from the lowest inlet pressure). The duty is an internal
    variable.

    Ports:
      any inlet name(s)
      vapor  : vapor outlet (phase V)
      liquid : liquid outlet (phase L)
    """

    def __init__(
        self,
        name: str,
        *,
        T: Optional[float] = None,
        duty: Optional[float] = None,
        P: Optional[float] = None,
        dP: Optional[float] = None,
    ):
        super().__init__(name)
        if T is not None and T <= 0:
            raise ValueError(f"{name}: T must be > 0 K")
        if P is not None and P <= 0:
            raise ValueError(f"{name}: P must be > 0 Pa")
        if dP is not None and dP < 0:
            raise ValueError(f"{name}: dP must be >= 0 Pa")
        self.T = None if T is None else float(T)
        self.duty = None if duty is None else float(duty)
        self.P = None if P is None else float(P)
        self.dP = None if dP is None else float(dP)

    def check_ports(self) -> List[str]:
        problems = []
        if not self.inlets:
            problems.append("needs at least one inlet")
        if set(self.outlets) != {"vapor", "liquid"}:
            problems.append("needs outlets on ports 'vapor' and 'liquid'")
        else:
            if self.outlets["vapor"].phase != "V":
                problems.append(f"vapor outlet '{self.outlets['vapor'].name}' must carry phase 'V'")
            if self.outlets["liquid"].phase != "L":
                problems.append(f"liquid outlet '{self.outlets['liquid'].name}' must carry phase 'L'")
        if (self.T is None) == (self.duty is None):
            problems.append("give exactly one of T or duty")
        if (self.P is None) == (self.dP is None):
            problems.append("give exactly one of P or dP")
        return problems

    def n_internal_vars(self) -> int:
        return 1

    def internal_names(self) -> List[str]:
        return ["duty"]

    def _specs(self) -> List[str]:
        specs = []
        if self.T is not None:
            specs.append("spec:T")
        if self.duty is not None:
            specs.append("spec:duty")
        if self.P is not None:
            specs.append("spec:P")
        if self.dP is not None:
            specs.append("spec:dP")
        return specs

    def n_equations(self) -> int:
        return 2 * self.props.n() + 5 + len(self._specs())

    def equation_labels(self) -> List[str]:
        names = self.props.names
        return ([f"balance[{c}]" for c in names] + [f"equilibrium[{c}]" for c in names]
                + ["vapor:total_flow", "liquid:total_flow", "temperature", "pressure", "energy"]
                + self._specs())

    def initial_internal(self, x, views) -> np.ndarray:
        return np.array([0.0 if self.duty is None else self.duty])

    def feed_flows(self, x, views) -> np.ndarray:
        return sum(s.flows(x) for s in views.inlets.values())

    def flash_state(self, x, views) -> Optional[FlashResult]:
        """Flash of the mixed feed at the drum T, P (None for an empty feed)."""
        z = np.clip(self.feed_flows(x, views), 0.0, None)
        if z.sum() <= EPS:
            return None
        vap = views.outlets["vapor"]
        return self.props.flash(vap.P(x), vap.T(x), z)

    def differenced_rows(self) -> np.ndarray:
        # only the equilibrium rows go through the nested flash
        n = self.props.n()
        return np.arange(n, 2 * n)

    def equations(self, x, views, jac):
        n = self.props.n()
        props = self.props
        vap = views.outlets["vapor"]
        liq = views.outlets["liquid"]
        ins = list(views.inlets.values())
        iQ = views.icol(0)
        Q = float(views.internal(x)[0])
        r = np.zeros(self.n_equations(), dtype=float)

        f_feed = self.feed_flows(x, views)
        r[:n] = vap.flows(x) + liq.flows(x) - f_feed
        if jac is not None:
            for i in range(n):
                jac.add(i, vap.iflows[i], 1.0)
                jac.add(i, liq.iflows[i], 1.0)
                for s in ins:
                    jac.add(i, s.iflows[i], -1.0)

        fl = self.flash_state(x, views)
        if fl is None:
            r[n:2 * n] = vap.flows(x)
        else:
            F_feed = float(np.clip(f_feed, 0.0, None).sum())
            r[n:2 * n] = vap.flows(x) - F_feed * fl.beta * fl.y

        row = 2 * n
        r[row] = total_flow_row(x, vap, row, jac)
        r[row + 1] = total_flow_row(x, liq, row + 1, jac)
        r[row + 2] = liq.T(x) - vap.T(x)
        r[row + 3] = liq.P(x) - vap.P(x)
        if jac is not None:
            jac.add(row + 2, liq.iT, 1.0)
            jac.add(row + 2, vap.iT, -1.0)
            jac.add(row + 3, liq.iP, 1.0)
            jac.add(row + 3, vap.iP, -1.0)
            jac.add(row + 4, iQ, -1.0)
        r[row + 4] = (energy_terms(props, x, vap, 1.0, row + 4, jac)
                      + energy_terms(props, x, liq, 1.0, row + 4, jac)
                      + sum(energy_terms(props, x, s, -1.0, row + 4, jac) for s in ins) - Q)

        row += 5
        if self.T is not None:
            r[row] = vap.T(x) - self.T
            if jac is not None:
                jac.add(row, vap.iT, 1.0)
            row += 1
        if self.duty is not None:
            r[row] = Q - self.duty
            if jac is not None:
                jac.add(row, iQ, 1.0)
            row += 1
        if self.P is not None:
            r[row] = vap.P(x) - self.P
            if jac is not None:
                jac.add(row, vap.iP, 1.0)
            row += 1
        if self.dP is not None:
            low = min(ins, key=lambda s: s.P(x))
            r[row] = vap.P(x) - (low.P(x) - self.dP)
            if jac is not None:
                jac.add(row, vap.iP, 1.0)
                jac.add(row, low.iP, -1.0)
        return r
