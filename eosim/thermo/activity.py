from __future__ import annotations

import numpy as np


class NRTL:
    """NRTL liquid activity model, tau_ij = A_ij + B_ij / T, G_ij = exp(-alpha_ij tau_ij)."""

    def __init__(self, A: np.ndarray, B: np.ndarray, alpha: np.ndarray):
        self.A = np.asarray(A, dtype=float)
        self.B = np.asarray(B, dtype=float)
        self.alpha = np.asarray(alpha, dtype=float)

    def ln_gamma(self, T: float, x: np.ndarray) -> np.ndarray:
        tau = self.A + self.B / T
        G = np.exp(-self.alpha * tau)
        S = x @ G                 # S_j = sum_k x_k G_kj
        C = x @ (tau * G)         # C_j = sum_m x_m tau_mj G_mj
        return C / S + (G * (tau - C / S)) @ (x / S)

    def gamma(self, T: float, x: np.ndarray) -> np.ndarray:
        return np.exp(self.ln_gamma(T, x))
