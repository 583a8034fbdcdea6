from __future__ import annotations

from typing import Tuple

import numpy as np

from ..errors import FlashError
from ..inputs import InputParameters

R = InputParameters.R_GAS
_SQ2 = np.sqrt(2.0)


class PengRobinson:
    """Peng-Robinson EOS with van der Waals one-fluid mixing and symmetric kij."""

    def __init__(self, Tc: np.ndarray, Pc: np.ndarray, omega: np.ndarray, kij: np.ndarray):
        self.Tc = np.asarray(Tc, dtype=float)
        self.Pc = np.asarray(Pc, dtype=float)
        self.omega = np.asarray(omega, dtype=float)
        self.kij = np.asarray(kij, dtype=float)
        if not np.allclose(self.kij, self.kij.T):
            raise ValueError("kij must be symmetric")
        self.kappa = 0.37464 + 1.54226 * self.omega - 0.26992 * self.omega**2
        self.b = 0.07780 * R * self.Tc / self.Pc

    def a_pure(self, T: float) -> np.ndarray:
        alpha = (1.0 + self.kappa * (1.0 - np.sqrt(T / self.Tc))) ** 2
        return 0.45724 * (R * self.Tc) ** 2 / self.Pc * alpha

    def mixture(self, T: float, x: np.ndarray) -> Tuple[float, float, np.ndarray]:
        ai = self.a_pure(T)
        aij = np.sqrt(np.outer(ai, ai)) * (1.0 - self.kij)
        sum_a = aij @ x
        return float(x @ sum_a), float(x @ self.b), sum_a

    @staticmethod
    def z_roots(A: float, B: float) -> np.ndarray:
        coeffs = [1.0, -(1.0 - B), A - 3.0 * B**2 - 2.0 * B, -(A * B - B**2 - B**3)]
        roots = np.roots(coeffs)
        real = np.sort(roots[np.abs(roots.imag) < 1e-10].real)
        real = real[real > B]
        if real.size == 0:
            raise FlashError(f"no physical compressibility root (A={A:.6g}, B={B:.6g})", A=A, B=B)
        return real

    def ln_phi(self, T: float, P: float, x: np.ndarray, phase: str) -> np.ndarray:
        am, bm, sum_a = self.mixture(T, x)
        A = am * P / (R * T) ** 2
        B = bm * P / (R * T)
        roots = self.z_roots(A, B)
        Z = roots[-1] if phase == "V" else roots[0]
        log_term = np.log((Z + (1.0 + _SQ2) * B) / (Z + (1.0 - _SQ2) * B))
        bi_bm = self.b / bm
        return (bi_bm * (Z - 1.0) - np.log(Z - B)
                - A / (2.0 * _SQ2 * B) * (2.0 * sum_a / am - bi_bm) * log_term)

    def k_values(self, T: float, P: float, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return np.exp(self.ln_phi(T, P, x, "L") - self.ln_phi(T, P, y, "V"))
