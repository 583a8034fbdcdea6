from __future__ import annotations

from typing import List, Optional

import numpy as np

from ..flowsheet_tools import UnitOp, energy_terms, total_flow_row

VOLUME_DT = 1e-5  # relative T step for the liquid volume slope


class Pump(UnitOp):
    """1-in/1-out liquid pump; shaft work W = v_L * F * (P_out - P_in) / efficiency.

    Give ``set_p`` (outlet pressure) or ``dP`` (pressure rise). The work is
    an internal variable and lands in the outlet enthalpy.
    """

    analytic = True

    def __init__(self, name: str, *, set_p: Optional[float] = None, dP: Optional[float] = None,
                 efficiency: float = 0.75):
        super().__init__(name)
        if set_p is not None and set_p <= 0:
            raise ValueError(f"{name}: set_p must be > 0 Pa")
        if not (0.0 < efficiency <= 1.0):
            raise ValueError(f"{name}: efficiency must be in (0,1]")
        self.set_p = None if set_p is None else float(set_p)
        self.dP = None if dP is None else float(dP)
        self.efficiency = float(efficiency)

    def check_ports(self) -> List[str]:
        problems = []
        if set(self.inlets) != {"in"}:
            problems.append("needs exactly one inlet on port 'in'")
        if set(self.outlets) != {"out"}:
            problems.append("needs exactly one outlet on port 'out'")
        if (self.set_p is None) == (self.dP is None):
            problems.append("give exactly one of set_p or dP")
        return problems

    def n_internal_vars(self) -> int:
        return 1

    def internal_names(self) -> List[str]:
        return ["work"]

    def _specs(self) -> List[str]:
        return (["spec:P_out"] if self.set_p is not None else []) + (["spec:dP"] if self.dP is not None else [])

    def n_equations(self) -> int:
        return self.props.n() + 3 + len(self._specs())

    def equation_labels(self) -> List[str]:
        return ([f"balance[{c}]" for c in self.props.names]
                + ["total_flow", "energy", "work"] + self._specs())

    def equations(self, x, views, jac):
        n = self.props.n()
        props = self.props
        sin = views.inlets["in"]
        out = views.outlets["out"]
        iW = views.icol(0)
        W = float(views.internal(x)[0])
        r = np.zeros(self.n_equations(), dtype=float)

        r[:n] = out.flows(x) - sin.flows(x)
        if jac is not None:
            for i in range(n):
                jac.add(i, out.iflows[i], 1.0)
                jac.add(i, sin.iflows[i], -1.0)
        r[n] = total_flow_row(x, out, n, jac)
        r[n + 1] = (energy_terms(props, x, out, 1.0, n + 1, jac)
                    + energy_terms(props, x, sin, -1.0, n + 1, jac) - W)

        T_in = sin.T(x)
        f_in = sin.flows(x)
        v = props.liquid_molar_volumes(T_in)
        v_flow = float(v @ f_in)
        dP = out.P(x) - sin.P(x)
        eta = self.efficiency
        r[n + 2] = W - v_flow * dP / eta
        if jac is not None:
            jac.add(n + 1, iW, -1.0)
            jac.add(n + 2, iW, 1.0)
            jac.add_many(n + 2, sin.iflows, -v * dP / eta)
            jac.add(n + 2, out.iP, -v_flow / eta)
            jac.add(n + 2, sin.iP, v_flow / eta)
            # dv/dT by central difference
            hT = VOLUME_DT * T_in
            dv = (props.liquid_molar_volumes(T_in + hT) - props.liquid_molar_volumes(T_in - hT)) / (2.0 * hT)
            jac.add(n + 2, sin.iT, -float(dv @ f_in) * dP / eta)

        row = n + 3
        if self.set_p is not None:
            r[row] = out.P(x) - self.set_p
            if jac is not None:
                jac.add(row, out.iP, 1.0)
            row += 1
        if self.dP is not None:
            r[row] = out.P(x) - sin.P(x) - self.dP
            if jac is not None:
                jac.add(row, out.iP, 1.0)
                jac.add(row, sin.iP, -1.0)
        return r
