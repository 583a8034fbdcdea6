from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np

from ..compounds import BinaryInteractionSet, ComponentRegistry
from ..errors import ConfigurationError, FlashError
from ..inputs import InputParameters, normalize_choice
from . import correlations as corr
from .activity import NRTL
from .cubic import PengRobinson
from .flash import FlashResult, flash_pt

logger = logging.getLogger(__name__)

PHASES = ("V", "L")


class PropertyPackage:
    """Read-only thermodynamic model over a frozen component registry.

    Safe to share between concurrent solves: nothing here mutates after
    construction.
    """

    def __init__(
        self,
        registry: ComponentRegistry,
        model: str = "ideal",
        interactions: Optional[BinaryInteractionSet] = None,
        *,
        flash_tol: float = InputParameters.FLASH_TOL,
        flash_max_iter: int = InputParameters.FLASH_MAX_ITER,
    ):
        if registry.n() == 0:
            raise ConfigurationError("property package needs at least one compound")
        registry.freeze()
        self.registry = registry
        self.names = registry.species
        self.model = normalize_choice(model, InputParameters.PROPERTY_MODELS, "property model")
        self.interactions = interactions or BinaryInteractionSet()
        self.flash_tol = float(flash_tol)
        self.flash_max_iter = int(flash_max_iter)

        self.Tc, self.Pc, self.omega = registry.critical_arrays()
        self.cp_coeffs = registry.cp_matrix()
        self.hf = np.array([c.hf for c in registry], dtype=float)
        self._vl_fixed = np.array([np.nan if c.vl is None else c.vl for c in registry], dtype=float)

        self._eos = PengRobinson(self.Tc, self.Pc, self.omega,
                                 self.interactions.kij_matrix("peng-robinson", self.names))
        self._nrtl = NRTL(*self.interactions.nrtl_matrices(self.names))

    def n(self) -> int:
        return len(self.names)

    # -------------------------------------------------------------------------
    # PHASE EQUILIBRIUM
    # -------------------------------------------------------------------------
    def wilson_k(self, T: float, P: float) -> np.ndarray:
        return corr.wilson_k(T, P, self.Tc, self.Pc, self.omega)

    def psat(self, T: float) -> np.ndarray:
        return corr.lee_kesler_psat(T, self.Tc, self.Pc, self.omega)

    def k_values(self, T: float, P: float, x: np.ndarray, y: np.ndarray, model: Optional[str] = None) -> np.ndarray:
        model = self.model if model is None else model
        if model == "ideal":
            return self.psat(T) / P
        if model == "peng-robinson":
            return self._eos.k_values(T, P, x, y)
        if model == "nrtl":
            return self._nrtl.gamma(T, x) * self.psat(T) / P
        raise ConfigurationError(f"unknown property model '{model}'")

    def flash(self, pressure: float, temperature: float, overall_composition, model: Optional[str] = None) -> FlashResult:
        model = self.model if model is None else normalize_choice(model, InputParameters.PROPERTY_MODELS, "property model")
        T = float(temperature)
        P = float(pressure)
        return flash_pt(
            P, T, np.asarray(overall_composition, dtype=float),
            k_initial=self.wilson_k,
            k_update=lambda T_, P_, x, y: self.k_values(T_, P_, x, y, model),
            supercritical=T > self.Tc,
            tol=self.flash_tol,
            max_iter=self.flash_max_iter,
        )

    # -------------------------------------------------------------------------
    # ENTHALPY (ideal-gas reference + vaporisation for liquids)
    # -------------------------------------------------------------------------
    def cp_ig(self, T: float) -> np.ndarray:
        return corr.ideal_gas_cp(T, self.cp_coeffs)

    def h_ig(self, T: float) -> np.ndarray:
        return corr.ideal_gas_enthalpy(T, self.cp_coeffs, self.hf)

    def hvap(self, T: float) -> np.ndarray:
        return corr.vaporization_enthalpy(T, self.Tc, self.Pc, self.omega)

    def dhvap_dT(self, T: float) -> np.ndarray:
        dT = max(1e-4 * T, 1e-6)
        return (self.hvap(T + dT) - self.hvap(T - dT)) / (2.0 * dT)

    def molar_enthalpies(self, T: float, phase: str) -> np.ndarray:
        _check_phase(phase)
        h = self.h_ig(T)
        return h if phase == "V" else h - self.hvap(T)

    def stream_enthalpy(self, T: float, flows: np.ndarray, phase: str) -> float:
        if not np.isfinite(T) or T <= 0.0:
            raise FlashError(f"enthalpy requested at non-physical T={T}", T=T)
        return float(self.molar_enthalpies(T, phase) @ flows)

    def enthalpy_gradient(self, T: float, flows: np.ndarray, phase: str) -> Tuple[float, float, np.ndarray]:
        """Return (H, dH/dT, dH/df) for a stream of component flows ``flows``."""
        if not np.isfinite(T) or T <= 0.0:
            raise FlashError(f"enthalpy requested at non-physical T={T}", T=T)
        h = self.molar_enthalpies(T, phase)
        cp = self.cp_ig(T)
        if phase == "L":
            cp = cp - self.dhvap_dT(T)
        return float(h @ flows), float(cp @ flows), h

    # -------------------------------------------------------------------------
    # VOLUMES
    # -------------------------------------------------------------------------
    def liquid_molar_volumes(self, T: float) -> np.ndarray:
        rackett = corr.rackett_volume(T, self.Tc, self.Pc, self.omega)
        return np.where(np.isnan(self._vl_fixed), rackett, self._vl_fixed)


def _check_phase(phase: str) -> None:
    if phase not in PHASES:
        raise ConfigurationError(f"phase label must be one of {PHASES}, got '{phase}'")
