"""Isothermal two-phase (PT) flash by successive substitution on K values."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Tuple

import numpy as np

from ..errors import FlashError, FlashNotConverged
from ..inputs import InputParameters

logger = logging.getLogger(__name__)

TWO_PHASE = "two-phase"
VAPOR = "vapor"
LIQUID = "liquid"
# max |ln K| below which the K values are the trivial solution x = y
TRIVIAL_LN_K = 1e-6


@dataclass(frozen=True)
class FlashResult:
    beta: float
    x: np.ndarray
    y: np.ndarray
    K: np.ndarray
    iterations: int
    phase: str

    @property
    def single_phase(self) -> bool:
        return self.phase != TWO_PHASE


def rachford_rice(z: np.ndarray, K: np.ndarray, *, tol: float = InputParameters.RR_TOL,
                  max_iter: int = InputParameters.RR_MAX_ITER) -> Tuple[float, str]:
    """Vapor fraction in [0, 1] from safeguarded Newton.

    Returns ``(0.0, LIQUID)`` / ``(1.0, VAPOR)`` without iterating when the
    bracket collapses (subcooled / superheated feed).
    """
    km1 = K - 1.0
    if float(z @ km1) <= 0.0:
        return 0.0, LIQUID
    if float(z @ (km1 / K)) >= 0.0:
        return 1.0, VAPOR

    lo, hi = 0.0, 1.0
    beta = 0.5
    for _ in range(max_iter):
        denom = 1.0 + beta * km1
        g = float(np.sum(z * km1 / denom))
        if abs(g) < tol:
            break
        # g is strictly decreasing in beta
        if g > 0.0:
            lo = beta
        else:
            hi = beta
        dg = -float(np.sum(z * km1**2 / denom**2))
        step = beta - g / dg if dg != 0.0 else 0.5 * (lo + hi)
        beta = step if lo < step < hi else 0.5 * (lo + hi)
        if hi - lo < 1e-15:
            break
    return float(beta), TWO_PHASE


def phase_compositions(z: np.ndarray, K: np.ndarray, beta: float) -> Tuple[np.ndarray, np.ndarray]:
    x = z / (1.0 + beta * (K - 1.0))
    y = K * x
    return x / x.sum(), y / y.sum()


def flash_pt(
    P: float,
    T: float,
    z: np.ndarray,
    *,
    k_initial: Callable[[float, float], np.ndarray],
    k_update: Callable[[float, float, np.ndarray, np.ndarray], np.ndarray],
    supercritical: np.ndarray,
    tol: float = InputParameters.FLASH_TOL,
    max_iter: int = InputParameters.FLASH_MAX_ITER,
) -> FlashResult:
    """Pure function: all state lives in the loop locals.

    ``supercritical`` flags components with T above their Tc; a feed made only
    of such components is returned as vapor directly.
    """
    z = np.asarray(z, dtype=float)
    if P <= 0 or T <= 0:
        raise FlashError(f"flash needs positive T and P (T={T}, P={P})", T=T, P=P)
    total = z.sum()
    if total <= 0 or np.any(z < 0) or not np.all(np.isfinite(z)):
        raise FlashError("overall composition must be finite, non-negative and non-empty", z=list(z))
    z = z / total
    present = z > 0.0

    if np.all(supercritical[present]):
        return FlashResult(1.0, z.copy(), z.copy(), np.ones_like(z), 0, VAPOR)

    K = np.asarray(k_initial(T, P), dtype=float)
    dK = np.inf
    for it in range(1, max_iter + 1):
        beta, phase = rachford_rice(z, K)
        # a collapsed bracket is final: beta is 0 or 1, no further iteration
        if phase != TWO_PHASE:
            return FlashResult(beta, z.copy(), z.copy(), K, it - 1, phase)
        x, y = phase_compositions(z, K, beta)
        K_new = np.asarray(k_update(T, P, x, y), dtype=float)
        if not np.all(np.isfinite(K_new)) or np.any(K_new <= 0.0):
            raise FlashError(f"non-finite K values at T={T:.6g} K, P={P:.6g} Pa", T=T, P=P, iteration=it)
        if np.max(np.abs(np.log(K_new))) < TRIVIAL_LN_K:
            # both phases collapsed onto one root: single phase, side picked by the last split
            phase = VAPOR if beta >= 0.5 else LIQUID
            return FlashResult(1.0 if phase == VAPOR else 0.0, z.copy(), z.copy(), K_new, it, phase)
        dK = float(np.max(np.abs(K_new - K) / K))
        K = K_new
        if dK < tol:
            beta, phase = rachford_rice(z, K)
            if phase != TWO_PHASE:
                return FlashResult(beta, z.copy(), z.copy(), K, it, phase)
            x, y = phase_compositions(z, K, beta)
            return FlashResult(beta, x, y, K, it, phase)

    logger.debug("flash not converged: T=%.6g P=%.6g dK=%.3e", T, P, dK)
    raise FlashNotConverged(
        f"flash did not converge in {max_iter} iterations at T={T:.6g} K, P={P:.6g} Pa (dK={dK:.3e})",
        T=T, P=P, z=z, iterations=max_iter, dK=dK,
    )
