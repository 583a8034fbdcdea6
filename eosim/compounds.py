from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

import numpy as np

from .errors import ConfigurationError, FormulaError
from .inputs import InputParameters


def parse_formula(formula: str) -> Dict[str, int]:
    s = formula.replace(" ", "")
    i = 0

    def parse_group() -> Dict[str, int]:
        nonlocal i
        counts: Dict[str, int] = {}
        while i < len(s):
            if s[i] == "(":
                i += 1
                inner = parse_group()
                if i >= len(s) or s[i] != ")":
                    raise FormulaError(f"Unmatched '(' in {formula}")
                i += 1
                mult = parse_int()
                for el, n in inner.items():
                    counts[el] = counts.get(el, 0) + n * mult
            elif s[i] == ")":
                break
            else:
                el = parse_element()
                counts[el] = counts.get(el, 0) + parse_int()
        return counts

    def parse_element() -> str:
        nonlocal i
        if i >= len(s) or not s[i].isalpha() or not s[i].isupper():
            raise FormulaError(f"Expected element at position {i} in {formula}")
        el = s[i]
        i += 1
        while i < len(s) and s[i].isalpha() and s[i].islower():
            el += s[i]
            i += 1
        return el

    def parse_int() -> int:
        nonlocal i
        j = i
        while j < len(s) and s[j].isdigit():
            j += 1
        if j == i:
            return 1
        val = int(s[i:j])
        i = j
        return val

    counts = parse_group()
    if i != len(s):
        raise FormulaError(f"Could not parse full formula {formula} (stopped at {i})")
    return counts


@dataclass(frozen=True)
class Compound:
    """Pure-component reference data. Units: K, Pa, J/mol, J/mol/K, m3/mol."""
    name: str
    Tc: float
    Pc: float
    omega: float
    cp_coeffs: Tuple[float, float, float, float] = (29.1, 0.0, 0.0, 0.0)
    mw: float = 1.0
    hf: float = 0.0
    vl: Optional[float] = None
    formula: Optional[str] = None

    def __post_init__(self):
        if self.Tc <= 0:
            raise ValueError(f"{self.name}: Tc must be > 0 K")
        if self.Pc <= 0:
            raise ValueError(f"{self.name}: Pc must be > 0 Pa")
        coeffs = tuple(float(c) for c in self.cp_coeffs)
        if len(coeffs) > 4:
            raise ValueError(f"{self.name}: cp_coeffs takes at most 4 coefficients")
        object.__setattr__(self, "cp_coeffs", coeffs + (0.0,) * (4 - len(coeffs)))


@dataclass
class ComponentRegistry:
    atomic_weights: Dict[str, float] = field(default_factory=lambda: dict(InputParameters.ATOMIC_WEIGHTS))
    compounds: Dict[str, Compound] = field(default_factory=dict)
    _order: List[str] = field(default_factory=list)
    frozen: bool = False

    def add(self, compound: Compound) -> Compound:
        if compound.name in self.compounds:
            raise ConfigurationError(f"Compound '{compound.name}' already registered", compound=compound.name)
        if self.frozen:
            raise ConfigurationError(f"Registry frozen; cannot add compound '{compound.name}'")
        if compound.formula and compound.mw == 1.0:
            compound = replace(compound, mw=self.mw_from_formula(compound.formula))
        self.compounds[compound.name] = compound
        self._order.append(compound.name)
        return compound

    def mw_from_formula(self, formula: str) -> float:
        atoms = parse_formula(formula)
        mw = 0.0
        for el, n in atoms.items():
            if el not in self.atomic_weights:
                raise FormulaError(f"Atomic weight for element '{el}' not provided (needed for {formula})")
            mw += self.atomic_weights[el] * n
        return mw

    @property
    def species(self) -> Tuple[str, ...]:
        return tuple(self._order)

    def index(self) -> Dict[str, int]:
        return {sp: i for i, sp in enumerate(self._order)}

    def n(self) -> int:
        return len(self._order)

    def __getitem__(self, name: str) -> Compound:
        return self.compounds[name]

    def __iter__(self):
        return (self.compounds[name] for name in self._order)

    def freeze(self) -> None:
        self.frozen = True

    def dense(self, amounts: Mapping[str, float]) -> np.ndarray:
        idx = self.index()
        out = np.zeros(self.n(), dtype=float)
        for sp, v in amounts.items():
            if sp not in idx:
                raise ConfigurationError(f"Unknown compound '{sp}'", compound=sp)
            out[idx[sp]] = float(v)
        return out

    # vectorised views for the property package
    def critical_arrays(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        Tc = np.array([c.Tc for c in self], dtype=float)
        Pc = np.array([c.Pc for c in self], dtype=float)
        omega = np.array([c.omega for c in self], dtype=float)
        return Tc, Pc, omega

    def cp_matrix(self) -> np.ndarray:
        return np.array([c.cp_coeffs for c in self], dtype=float)


@dataclass(frozen=True)
class InteractionParameter:
    """kij for cubic EOS; NRTL tau_ij = aij + bij / T (and ji), non-randomness alpha."""
    kij: float = 0.0
    aij: float = 0.0
    aji: float = 0.0
    bij: float = 0.0
    bji: float = 0.0
    alpha: float = 0.3

    def swapped(self) -> "InteractionParameter":
        return InteractionParameter(kij=self.kij, aij=self.aji, aji=self.aij,
                                    bij=self.bji, bji=self.bij, alpha=self.alpha)


_DEFAULT_PARAM = InteractionParameter()


class BinaryInteractionSet:
    """Immutable pairwise parameters keyed by (model, unordered compound pair)."""

    def __init__(self, entries: Optional[Iterable[Tuple[str, str, str, InteractionParameter]]] = None):
        data: Dict[Tuple[str, FrozenSet[str]], Tuple[str, InteractionParameter]] = {}
        for model, i, j, param in entries or ():
            if i == j:
                raise ConfigurationError(f"binary parameter for identical pair ({i}, {j})")
            key = (str(model).lower(), frozenset((i, j)))
            if key in data:
                raise ConfigurationError(f"duplicate {model} parameter for pair ({i}, {j})")
            data[key] = (i, param)
        self._data = MappingProxyType(data)

    def get(self, model: str, i: str, j: str) -> InteractionParameter:
        if i == j:
            return _DEFAULT_PARAM
        hit = self._data.get((model.lower(), frozenset((i, j))))
        if hit is None:
            return _DEFAULT_PARAM
        first, param = hit
        return param if first == i else param.swapped()

    def __len__(self) -> int:
        return len(self._data)

    def kij_matrix(self, model: str, names: Tuple[str, ...]) -> np.ndarray:
        n = len(names)
        k = np.zeros((n, n), dtype=float)
        for a in range(n):
            for b in range(a + 1, n):
                k[a, b] = k[b, a] = self.get(model, names[a], names[b]).kij
        return k

    def nrtl_matrices(self, names: Tuple[str, ...]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return (A, B, alpha) with tau = A + B / T; diagonal zero."""
        n = len(names)
        A = np.zeros((n, n), dtype=float)
        B = np.zeros((n, n), dtype=float)
        alpha = np.zeros((n, n), dtype=float)
        for a in range(n):
            for b in range(n):
                if a == b:
                    continue
                p = self.get("nrtl", names[a], names[b])
                A[a, b], B[a, b], alpha[a, b] = p.aij, p.bij, p.alpha
        return A, B, alpha
