from __future__ import annotations

import numpy as np

from ..errors import SingularMatrixError
from ..inputs import InputParameters


def rcond(A: np.ndarray) -> float:
    """Reciprocal 2-norm condition number (0 for singular or non-finite input)."""
    if not np.all(np.isfinite(A)):
        return 0.0
    s = np.linalg.svd(A, compute_uv=False)
    if s.size == 0 or s[0] == 0.0:
        return 0.0
    return float(s[-1] / s[0])


def solve_checked(A: np.ndarray, b: np.ndarray, *, floor: float = InputParameters.RCOND_FLOOR,
                  what: str = "matrix") -> np.ndarray:
    rc = rcond(A)
    if rc < floor:
        raise SingularMatrixError(f"{what} is near-singular (rcond={rc:.3e} < {floor:.1e})",
                                  rcond=rc, floor=floor, shape=tuple(A.shape))
    return np.linalg.solve(A, b)
