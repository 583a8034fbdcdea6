from __future__ import annotations

from typing import Dict, List

import numpy as np

from ..flowsheet_tools import UnitOp, total_flow_row


class ComponentSplitter(UnitOp):
    """
    Split selected components to outlet A by fixed fractions.
    Unspecified components default to default_to_A (typically 0, i.e. stay in B).
    Both outlets leave at inlet T and P; there is no energy balance.

    Ports:
      in  : inlet stream
      A   : outlet A
      B   : outlet B
    """

    analytic = True

    def __init__(self, name: str, frac_to_A: Dict[str, float], default_to_A: float = 0.0):
        super().__init__(name)
        self.frac_to_A = {k: float(v) for k, v in frac_to_A.items()}
        self.default_to_A = float(default_to_A)
        for sp, f in self.frac_to_A.items():
            if not (0.0 <= f <= 1.0):
                raise ValueError(f"{name}: frac_to_A[{sp}] must be in [0,1]")
        if not (0.0 <= self.default_to_A <= 1.0):
            raise ValueError(f"{name}: default_to_A must be in [0,1]")

    def check_ports(self) -> List[str]:
        problems = []
        if set(self.inlets) != {"in"}:
            problems.append("needs exactly one inlet on port 'in'")
        if set(self.outlets) != {"A", "B"}:
            problems.append("needs outlets on ports 'A' and 'B'")
        unknown = sorted(set(self.frac_to_A) - set(self.props.names))
        if unknown:
            problems.append(f"unknown component(s) {unknown}")
        return problems

    def fractions(self) -> np.ndarray:
        return np.array([self.frac_to_A.get(sp, self.default_to_A) for sp in self.props.names], dtype=float)

    def n_equations(self) -> int:
        return 2 * (self.props.n() + 3)

    def equation_labels(self) -> List[str]:
        labels = []
        for port in ("A", "B"):
            labels += [f"{port}:split[{c}]" for c in self.props.names]
            labels += [f"{port}:total_flow", f"{port}:temperature", f"{port}:pressure"]
        return labels

    def equations(self, x, views, jac):
        n = self.props.n()
        sin = views.inlets["in"]
        f_in = sin.flows(x)
        phi = self.fractions()
        r = np.zeros(self.n_equations(), dtype=float)

        for block, (port, frac) in enumerate((("A", phi), ("B", 1.0 - phi))):
            out = views.outlets[port]
            row = block * (n + 3)
            r[row:row + n] = out.flows(x) - frac * f_in
            r[row + n] = total_flow_row(x, out, row + n, jac)
            r[row + n + 1] = out.T(x) - sin.T(x)
            r[row + n + 2] = out.P(x) - sin.P(x)
            if jac is not None:
                for i in range(n):
                    jac.add(row + i, out.iflows[i], 1.0)
                    jac.add(row + i, sin.iflows[i], -frac[i])
                jac.add(row + n + 1, out.iT, 1.0)
                jac.add(row + n + 1, sin.iT, -1.0)
                jac.add(row + n + 2, out.iP, 1.0)
                jac.add(row + n + 2, sin.iP, -1.0)
        return r
