from __future__ import annotations

from typing import List, Optional

import numpy as np

from ..flowsheet_tools import UnitOp, energy_terms, total_flow_row


class Heater(UnitOp):
    """1-in/1-out heater/cooler with the duty Q [W] as an internal variable.

    Give ``T_out`` or ``duty``; giving both or neither leaves the unit
    over/under-specified and the flowsheet is rejected at assembly.
    """

    analytic = True

    def __init__(self, name: str, *, T_out: Optional[float] = None, duty: Optional[float] = None,
                 dP: float = 0.0):
        super().__init__(name)
        if T_out is not None and T_out <= 0:
            raise ValueError(f"{name}: T_out must be > 0 K")
        if dP < 0:
            raise ValueError(f"{name}: dP must be >= 0 Pa")
        self.T_out = None if T_out is None else float(T_out)
        self.duty = None if duty is None else float(duty)
        self.dP = float(dP)

    def check_ports(self) -> List[str]:
        problems = []
        if set(self.inlets) != {"in"}:
            problems.append("needs exactly one inlet on port 'in'")
        if set(self.outlets) != {"out"}:
            problems.append("needs exactly one outlet on port 'out'")
        return problems

    def n_internal_vars(self) -> int:
        return 1

    def internal_names(self) -> List[str]:
        return ["duty"]

    def _specs(self) -> List[str]:
        specs = []
        if self.T_out is not None:
            specs.append("spec:T_out")
        if self.duty is not None:
            specs.append("spec:duty")
        return specs

    def n_equations(self) -> int:
        return self.props.n() + 3 + len(self._specs())

    def equation_labels(self) -> List[str]:
        return ([f"balance[{c}]" for c in self.props.names]
                + ["total_flow", "pressure", "energy"] + self._specs())

    def initial_internal(self, x, views) -> np.ndarray:
        return np.array([0.0 if self.duty is None else self.duty])

    def equations(self, x, views, jac):
        n = self.props.n()
        sin = views.inlets["in"]
        out = views.outlets["out"]
        Q = float(views.internal(x)[0])
        r = np.zeros(self.n_equations(), dtype=float)

        r[:n] = out.flows(x) - sin.flows(x)
        r[n] = total_flow_row(x, out, n, jac)
        r[n + 1] = out.P(x) - (sin.P(x) - self.dP)
        r[n + 2] = (energy_terms(self.props, x, out, 1.0, n + 2, jac)
                    + energy_terms(self.props, x, sin, -1.0, n + 2, jac) - Q)

        row = n + 3
        if jac is not None:
            for i in range(n):
                jac.add(i, out.iflows[i], 1.0)
                jac.add(i, sin.iflows[i], -1.0)
            jac.add(n + 1, out.iP, 1.0)
            jac.add(n + 1, sin.iP, -1.0)
            jac.add(n + 2, views.icol(0), -1.0)
        if self.T_out is not None:
            r[row] = out.T(x) - self.T_out
            if jac is not None:
                jac.add(row, out.iT, 1.0)
            row += 1
        if self.duty is not None:
            r[row] = Q - self.duty
            if jac is not None:
                jac.add(row, views.icol(0), 1.0)
        return r
