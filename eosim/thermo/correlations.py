"""Pure-component correlations from critical properties.

All functions are vectorised over components (numpy arrays of Tc, Pc, omega).
Units: K, Pa, J/mol, J/mol/K, m3/mol.
"""
from __future__ import annotations

import numpy as np

from ..inputs import InputParameters

R = InputParameters.R_GAS
T_REF = InputParameters.T_REF_K


def wilson_k(T: float, P: float, Tc: np.ndarray, Pc: np.ndarray, omega: np.ndarray) -> np.ndarray:
    return (Pc / P) * np.exp(5.373 * (1.0 + omega) * (1.0 - Tc / T))


def _lk_terms(Tr: np.ndarray):
    f0 = 5.92714 - 6.09648 / Tr - 1.28862 * np.log(Tr) + 0.169347 * Tr**6
    f1 = 15.2518 - 15.6875 / Tr - 13.4721 * np.log(Tr) + 0.43577 * Tr**6
    return f0, f1


def lee_kesler_psat(T: float, Tc: np.ndarray, Pc: np.ndarray, omega: np.ndarray) -> np.ndarray:
    """Saturation pressure; extrapolated smoothly above Tc (used only for ideal K values)."""
    Tr = T / Tc
    f0, f1 = _lk_terms(Tr)
    return Pc * np.exp(f0 + omega * f1)


def lee_kesler_dlnpsat_dT(T: float, Tc: np.ndarray, omega: np.ndarray) -> np.ndarray:
    Tr = T / Tc
    d0 = 6.09648 / Tr**2 - 1.28862 / Tr + 6.0 * 0.169347 * Tr**5
    d1 = 15.6875 / Tr**2 - 13.4721 / Tr + 6.0 * 0.43577 * Tr**5
    return (d0 + omega * d1) / Tc


def vaporization_enthalpy(T: float, Tc: np.ndarray, Pc: np.ndarray, omega: np.ndarray) -> np.ndarray:
    """Clausius-Clapeyron on Lee-Kesler with the Haggenmacher dZ; zero at and above Tc."""
    Tr = T / Tc
    Pr = lee_kesler_psat(T, Tc, Pc, omega) / Pc
    dZ = np.sqrt(np.clip(1.0 - Pr / Tr**3, 0.0, None))
    dh = R * T * T * lee_kesler_dlnpsat_dT(T, Tc, omega) * dZ
    return np.where(Tr < 1.0, dh, 0.0)


def ideal_gas_cp(T: float, coeffs: np.ndarray) -> np.ndarray:
    a, b, c, d = coeffs.T
    return a + b * T + c * T**2 + d * T**3


def ideal_gas_enthalpy(T: float, coeffs: np.ndarray, hf: np.ndarray) -> np.ndarray:
    """Formation enthalpy at T_REF plus sensible heat (integrated cp polynomial)."""
    a, b, c, d = coeffs.T
    T0 = T_REF
    return (hf + a * (T - T0) + b / 2.0 * (T**2 - T0**2)
            + c / 3.0 * (T**3 - T0**3) + d / 4.0 * (T**4 - T0**4))


def rackett_volume(T: float, Tc: np.ndarray, Pc: np.ndarray, omega: np.ndarray) -> np.ndarray:
    """Saturated liquid molar volume (Yamada-Gunn Z_RA); clamped at Tc."""
    Tr = np.minimum(T / Tc, 1.0)
    z_ra = 0.29056 - 0.08775 * omega
    return (R * Tc / Pc) * z_ra ** (1.0 + (1.0 - Tr) ** (2.0 / 7.0))
