from __future__ import annotations

from typing import Dict, List, Mapping

import numpy as np

from ..flowsheet_tools import N_STATE, UnitOp, total_flow_row


class Splitter(UnitOp):
    """1-in/K-out stream divider; split fractions are internal variables.

    ``split`` fixes the fraction of K-1 outlet ports; the last one follows
    from the fractions summing to one.
    """

    analytic = True

    def __init__(self, name: str, split: Mapping[str, float]):
        super().__init__(name)
        self.split: Dict[str, float] = {}
        for port, frac in split.items():
            if not (0.0 <= frac <= 1.0):
                raise ValueError(f"{name}: split fraction for '{port}' must be in [0,1]")
            self.split[str(port)] = float(frac)

    def check_ports(self) -> List[str]:
        problems = []
        if set(self.inlets) != {"in"}:
            problems.append("needs exactly one inlet on port 'in'")
        if len(self.outlets) < 2:
            problems.append("needs at least two outlets")
        unknown = sorted(set(self.split) - set(self.outlets))
        if unknown:
            problems.append(f"split given for unconnected outlet(s) {unknown}")
        return problems

    def n_internal_vars(self) -> int:
        return len(self.outlets)

    def internal_names(self) -> List[str]:
        return [f"split[{port}]" for port in self.outlets]

    def n_equations(self) -> int:
        return len(self.outlets) * (self.props.n() + N_STATE) + len(self.split) + 1

    def equation_labels(self) -> List[str]:
        labels = []
        for port in self.outlets:
            labels += [f"{port}:split[{c}]" for c in self.props.names]
            labels += [f"{port}:total_flow", f"{port}:temperature", f"{port}:pressure"]
        labels += [f"spec:split[{port}]" for port in self.outlets if port in self.split]
        return labels + ["split_sum"]

    def initial_internal(self, x, views) -> np.ndarray:
        free = [p for p in self.outlets if p not in self.split]
        rest = max(1.0 - sum(self.split.values()), 0.0) / max(len(free), 1)
        return np.array([self.split.get(p, rest) for p in self.outlets], dtype=float)

    def equations(self, x, views, jac):
        n = self.props.n()
        sin = views.inlets["in"]
        f_in = sin.flows(x)
        s = views.internal(x)
        r = np.zeros(self.n_equations(), dtype=float)

        row = 0
        for j, port in enumerate(self.outlets):
            out = views.outlets[port]
            r[row:row + n] = out.flows(x) - s[j] * f_in
            if jac is not None:
                for i in range(n):
                    jac.add(row + i, out.iflows[i], 1.0)
                    jac.add(row + i, sin.iflows[i], -s[j])
                    jac.add(row + i, views.icol(j), -f_in[i])
            row += n
            r[row] = total_flow_row(x, out, row, jac)
            r[row + 1] = out.T(x) - sin.T(x)
            r[row + 2] = out.P(x) - sin.P(x)
            if jac is not None:
                jac.add(row + 1, out.iT, 1.0)
                jac.add(row + 1, sin.iT, -1.0)
                jac.add(row + 2, out.iP, 1.0)
                jac.add(row + 2, sin.iP, -1.0)
            row += 3

        for j, port in enumerate(self.outlets):
            if port in self.split:
                r[row] = s[j] - self.split[port]
                if jac is not None:
                    jac.add(row, views.icol(j), 1.0)
                row += 1

        r[row] = float(s.sum()) - 1.0
        if jac is not None:
            jac.add_many(row, views.offset + np.arange(len(s)), 1.0)
        return r
