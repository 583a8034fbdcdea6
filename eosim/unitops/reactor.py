from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from ..flowsheet_tools import UnitOp, energy_terms, total_flow_row


@dataclass(frozen=True)
class StoichReaction:
    """
    nu    : stoichiometric coefficients (reactants negative)
    key   : component the conversion refers to (default: first reactant)
    conversion : fraction of the inlet key flow consumed
    """
    name: str
    nu: Dict[str, float]
    key: Optional[str] = None
    conversion: float = 1.0

    def __post_init__(self):
        if not (0.0 <= self.conversion <= 1.0):
            raise ValueError(f"{self.name}: conversion must be in [0,1]")
        if self.key_component not in self.nu or self.nu[self.key_component] >= 0:
            raise ValueError(f"{self.name}: key component must be a reactant")

    @property
    def key_component(self) -> str:
        if self.key is not None:
            return self.key
        reactants = [sp for sp, v in self.nu.items() if v < 0]
        if not reactants:
            raise ValueError(f"{self.name}: reaction has no reactant")
        return reactants[0]


class StoichiometricReactor(UnitOp):
    """
    Fixed-conversion reactor. Each reaction extent xi_r is an internal
    variable with xi_r = X_r * f_in[key_r] / |nu_key,r|; parallel reactions on
    the same key each see the full inlet flow. Heat of reaction comes from the
    formation enthalpies. Give ``T_out`` or ``duty`` (adiabatic: duty=0).

    Ports:
      in  : inlet (extra inlet ports are summed)
      out : outlet
    """

    analytic = True

    def __init__(self, name: str, reactions: Sequence[StoichReaction], *,
                 T_out: Optional[float] = None, duty: Optional[float] = None, dP: float = 0.0):
        super().__init__(name)
        if not reactions:
            raise ValueError(f"{name}: at least one reaction is required")
        if T_out is not None and T_out <= 0:
            raise ValueError(f"{name}: T_out must be > 0 K")
        if dP < 0:
            raise ValueError(f"{name}: dP must be >= 0 Pa")
        self.reactions: List[StoichReaction] = list(reactions)
        self.T_out = None if T_out is None else float(T_out)
        self.duty = None if duty is None else float(duty)
        self.dP = float(dP)

    def check_ports(self) -> List[str]:
        problems = []
        if "in" not in self.inlets:
            problems.append("needs an inlet on port 'in'")
        if set(self.outlets) != {"out"}:
            problems.append("needs exactly one outlet on port 'out'")
        known = set(self.props.names)
        for rxn in self.reactions:
            unknown = sorted(set(rxn.nu) - known)
            if unknown:
                problems.append(f"reaction '{rxn.name}' uses unknown component(s) {unknown}")
        return problems

    def nu_matrix(self) -> np.ndarray:
        """(n_components, n_reactions)."""
        idx = self.props.registry.index()
        nu = np.zeros((self.props.n(), len(self.reactions)), dtype=float)
        for r, rxn in enumerate(self.reactions):
            for sp, v in rxn.nu.items():
                nu[idx[sp], r] = v
        return nu

    def n_internal_vars(self) -> int:
        return len(self.reactions) + 1

    def internal_names(self) -> List[str]:
        return [f"extent[{rxn.name}]" for rxn in self.reactions] + ["duty"]

    def _specs(self) -> List[str]:
        return (["spec:T_out"] if self.T_out is not None else []) + (["spec:duty"] if self.duty is not None else [])

    def n_equations(self) -> int:
        return self.props.n() + len(self.reactions) + 3 + len(self._specs())

    def equation_labels(self) -> List[str]:
        return ([f"balance[{c}]" for c in self.props.names]
                + [f"conversion[{rxn.name}]" for rxn in self.reactions]
                + ["total_flow", "pressure", "energy"] + self._specs())

    def initial_internal(self, x, views) -> np.ndarray:
        f_in = sum(s.flows(x) for s in views.inlets.values())
        idx = self.props.registry.index()
        xi = [rxn.conversion * f_in[idx[rxn.key_component]] / -rxn.nu[rxn.key_component]
              for rxn in self.reactions]
        return np.array(xi + [0.0 if self.duty is None else self.duty], dtype=float)

    def generation(self, x, views) -> np.ndarray:
        R = len(self.reactions)
        return self.nu_matrix() @ views.internal(x)[:R]

    def equations(self, x, views, jac):
        n = self.props.n()
        R = len(self.reactions)
        idx = self.props.registry.index()
        out = views.outlets["out"]
        ins = list(views.inlets.values())
        main = views.inlets["in"]
        internal = views.internal(x)
        xi, Q = internal[:R], float(internal[R])
        nu = self.nu_matrix()
        r = np.zeros(self.n_equations(), dtype=float)

        f_in = sum(s.flows(x) for s in ins)
        r[:n] = out.flows(x) - f_in - nu @ xi
        for k, rxn in enumerate(self.reactions):
            j = idx[rxn.key_component]
            scale = rxn.conversion / -rxn.nu[rxn.key_component]
            r[n + k] = xi[k] - scale * f_in[j]
            if jac is not None:
                jac.add(n + k, views.icol(k), 1.0)
                for s in ins:
                    jac.add(n + k, s.iflows[j], -scale)

        row = n + R
        r[row] = total_flow_row(x, out, row, jac)
        r[row + 1] = out.P(x) - (main.P(x) - self.dP)
        r[row + 2] = energy_terms(self.props, x, out, 1.0, row + 2, jac) - Q
        for s in ins:
            r[row + 2] += energy_terms(self.props, x, s, -1.0, row + 2, jac)

        if jac is not None:
            for i in range(n):
                jac.add(i, out.iflows[i], 1.0)
                for s in ins:
                    jac.add(i, s.iflows[i], -1.0)
                for k in range(R):
                    if nu[i, k] != 0.0:
                        jac.add(i, views.icol(k), -nu[i, k])
            jac.add(row + 1, out.iP, 1.0)
            jac.add(row + 1, main.iP, -1.0)
            jac.add(row + 2, views.icol(R), -1.0)

        row += 3
        if self.T_out is not None:
            r[row] = out.T(x) - self.T_out
            if jac is not None:
                jac.add(row, out.iT, 1.0)
            row += 1
        if self.duty is not None:
            r[row] = Q - self.duty
            if jac is not None:
                jac.add(row, views.icol(R), 1.0)
        return r
