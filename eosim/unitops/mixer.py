from __future__ import annotations

from typing import List

import numpy as np

from ..flowsheet_tools import UnitOp, energy_terms, total_flow_row


class Mixer(UnitOp):
    """N-in/1-out adiabatic mixer; outlet at the lowest inlet pressure."""

    analytic = True

    def check_ports(self) -> List[str]:
        problems = []
        if not self.inlets:
            problems.append("needs at least one inlet")
        if set(self.outlets) != {"out"}:
            problems.append("needs exactly one outlet on port 'out'")
        return problems

    def n_equations(self) -> int:
        return self.props.n() + 3

    def equation_labels(self) -> List[str]:
        return [f"balance[{c}]" for c in self.props.names] + ["total_flow", "pressure", "energy"]

    def equations(self, x, views, jac):
        n = self.props.n()
        out = views.outlets["out"]
        ins = list(views.inlets.values())
        r = np.zeros(n + 3, dtype=float)

        r[:n] = out.flows(x) - sum(s.flows(x) for s in ins)
        r[n] = total_flow_row(x, out, n, jac)
        p_in = [s.P(x) for s in ins]
        k = int(np.argmin(p_in))
        r[n + 1] = out.P(x) - p_in[k]
        r[n + 2] = sum(energy_terms(self.props, x, s, 1.0, n + 2, jac) for s in ins)
        r[n + 2] += energy_terms(self.props, x, out, -1.0, n + 2, jac)

        if jac is not None:
            for i in range(n):
                jac.add(i, out.iflows[i], 1.0)
                for s in ins:
                    jac.add(i, s.iflows[i], -1.0)
            jac.add(n + 1, out.iP, 1.0)
            jac.add(n + 1, ins[k].iP, -1.0)
        return r
