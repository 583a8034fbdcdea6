from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Optional, Tuple

from .errors import ConfigurationError


class InputParameters:
    # -------------------------------------------------------------------------
    # GLOBAL DEFAULTS
    # -------------------------------------------------------------------------
    DEFAULT_T_K = 298.15
    DEFAULT_P_PA = 101325.0
    T_REF_K = 298.15
    R_GAS = 8.314462618  # J/mol/K

    # -------------------------------------------------------------------------
    # ATOMIC WEIGHTS (g/mol) - for formula-based MW
    # -------------------------------------------------------------------------
    ATOMIC_WEIGHTS = {
        "H": 1.008, "He": 4.0026, "C": 12.011, "N": 14.007, "O": 15.999,
        "F": 18.998, "Na": 22.990, "S": 32.06, "Cl": 35.45, "Ar": 39.948,
    }

    # -------------------------------------------------------------------------
    # NEWTON-RAPHSON
    # -------------------------------------------------------------------------
    NR_ABS_TOL = 1e-6
    NR_REL_TOL = 1e-4
    NR_MAX_ITER = 100
    NR_LINE_SEARCH_HALVINGS = 4
    NR_FD_REL_STEP = 1e-7
    NR_FD_MIN_STEP = 1e-10
    NR_PIVOT_FLOOR = 1e-13

    # -------------------------------------------------------------------------
    # FLASH
    # -------------------------------------------------------------------------
    FLASH_TOL = 1e-8
    FLASH_MAX_ITER = 100
    RR_TOL = 1e-14
    RR_MAX_ITER = 100
    RCOND_FLOOR = 1e-12

    # -------------------------------------------------------------------------
    # RECYCLE (tear-stream mode)
    # -------------------------------------------------------------------------
    RECYCLE_TOL = 1e-6
    RECYCLE_MAX_ITER = 50
    # Wegstein slope bounds; outside them the update is plain substitution
    WEGSTEIN_SLOPE_MIN = -5.0
    WEGSTEIN_SLOPE_MAX = 0.9

    PROPERTY_MODELS = ("ideal", "peng-robinson", "nrtl")
    SOLVE_MODES = ("simultaneous", "sequential")
    RECYCLE_METHODS = ("direct", "wegstein", "quasi-newton")


_ALIASES = {
    "pr": "peng-robinson",
    "pengrobinson": "peng-robinson",
    "raoult": "ideal",
    "substitution": "direct",
    "directsubstitution": "direct",
    "successivesubstitution": "direct",
    "broyden": "quasi-newton",
    "quasinewton": "quasi-newton",
    "eo": "simultaneous",
    "equationoriented": "simultaneous",
    "tear": "sequential",
}


def normalize_choice(value: str, allowed: Tuple[str, ...], what: str) -> str:
    key = str(value).strip().lower()
    if key in allowed:
        return key
    compact = key.replace("-", "").replace("_", "").replace(" ", "")
    matches = [opt for opt in allowed if opt.replace("-", "") == compact]
    key = matches[0] if matches else _ALIASES.get(compact, key)
    if key not in allowed:
        raise ConfigurationError(
            f"unknown {what} '{value}'; expected one of {list(allowed)}", option=what, value=value
        )
    return key


@dataclass(frozen=True)
class SolverConfig:
    abs_tol: float = InputParameters.NR_ABS_TOL
    rel_tol: float = InputParameters.NR_REL_TOL
    max_iterations: int = InputParameters.NR_MAX_ITER
    line_search_halvings: int = InputParameters.NR_LINE_SEARCH_HALVINGS
    property_model: Optional[str] = None
    mode: str = "simultaneous"
    recycle_method: str = "wegstein"
    recycle_tol: float = InputParameters.RECYCLE_TOL
    recycle_max_iterations: int = InputParameters.RECYCLE_MAX_ITER
    tear_streams: Optional[Tuple[str, ...]] = None
    workers: int = 1
    pivot_floor: float = InputParameters.NR_PIVOT_FLOOR
    wegstein_bounds: Tuple[float, float] = field(
        default=(InputParameters.WEGSTEIN_SLOPE_MIN, InputParameters.WEGSTEIN_SLOPE_MAX)
    )

    def __post_init__(self):
        if self.abs_tol <= 0 or self.rel_tol <= 0 or self.recycle_tol <= 0:
            raise ConfigurationError("tolerances must be > 0")
        if self.max_iterations < 1 or self.recycle_max_iterations < 1:
            raise ConfigurationError("iteration limits must be >= 1")
        if self.line_search_halvings < 0:
            raise ConfigurationError("line_search_halvings must be >= 0")
        if self.workers < 1:
            raise ConfigurationError("workers must be >= 1")
        lo, hi = self.wegstein_bounds
        if not lo < hi < 1.0:
            raise ConfigurationError(f"wegstein_bounds must satisfy lo < hi < 1, got {self.wegstein_bounds}")
        # frozen dataclass: normalise through object.__setattr__
        if self.property_model is not None:
            object.__setattr__(self, "property_model",
                               normalize_choice(self.property_model, InputParameters.PROPERTY_MODELS, "property model"))
        object.__setattr__(self, "mode", normalize_choice(self.mode, InputParameters.SOLVE_MODES, "solve mode"))
        object.__setattr__(self, "recycle_method",
                           normalize_choice(self.recycle_method, InputParameters.RECYCLE_METHODS, "recycle method"))
        if self.tear_streams is not None:
            object.__setattr__(self, "tear_streams", tuple(str(s) for s in self.tear_streams))

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "SolverConfig":
        """Build a config from a plain mapping handed over by the job layer."""
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"unknown solver option(s): {unknown}", options=unknown)
        if "wegstein_bounds" in data:
            data["wegstein_bounds"] = tuple(float(v) for v in data["wegstein_bounds"])
        return cls(**data)
