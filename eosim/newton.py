"""Damped sparse Newton-Raphson over an assembled flowsheet."""
from __future__ import annotations

import contextlib
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
import scipy.sparse as sps
import scipy.sparse.linalg as spla

from .assembler import Assembly
from .errors import (
    EOSimError,
    MaxIterationsExceeded,
    NonFiniteResidual,
    SingularJacobian,
    SolveCancelled,
    UnitEvaluationError,
)
from .inputs import SolverConfig
from .results import stream_table

logger = logging.getLogger(__name__)

# dense SVD fallback for rank diagnosis only below this size
_SVD_MAX_N = 2000


class SolveStatus(Enum):
    INITIALIZED = "initialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    DIVERGED = "diverged"
    MAX_ITER_EXCEEDED = "max_iterations_exceeded"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProgressEvent:
    iteration: int
    residual_norm: float
    elapsed: float
    step_length: float = 1.0
    non_monotone: bool = False


@dataclass
class SolveResult:
    status: SolveStatus
    x: np.ndarray
    residual_norm: float
    iterations: int
    elapsed: float = 0.0
    streams: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    worst_unit: Optional[str] = None
    worst_equation: Optional[str] = None
    error: Optional[EOSimError] = None
    history: List[ProgressEvent] = field(default_factory=list)
    # RecycleResult when solved in sequential mode
    recycle: Optional[Any] = None

    @property
    def converged(self) -> bool:
        return self.status is SolveStatus.CONVERGED

    def raise_for_status(self) -> "SolveResult":
        if self.converged:
            return self
        if self.error is not None:
            raise self.error
        raise EOSimError(f"solve ended with status {self.status.value}", status=self.status.value)


def cancel_check(cancel) -> Callable[[], bool]:
    if cancel is None:
        return lambda: False
    if hasattr(cancel, "is_set"):
        return cancel.is_set
    return cancel


class NewtonSolver:
    """
    Drives INITIALIZED -> ITERATING -> {CONVERGED | DIVERGED | MAX_ITER_EXCEEDED}.

    progress : called with a ProgressEvent after every iteration
    cancel   : threading.Event-like (``is_set``) or zero-arg callable; polled
               before every residual evaluation
    """

    def __init__(self, assembly: Assembly, config: Optional[SolverConfig] = None, *,
                 progress: Optional[Callable[[ProgressEvent], None]] = None, cancel=None):
        self.assembly = assembly
        self.config = config or SolverConfig()
        self.progress = progress
        self._cancelled = cancel_check(cancel)
        self.status = SolveStatus.INITIALIZED

    # -------------------------------------------------------------------------
    # linear algebra
    # -------------------------------------------------------------------------
    def _implicated_rows(self, J: sps.csc_matrix, lu=None) -> np.ndarray:
        row_mass = np.asarray(abs(J).sum(axis=1)).ravel()
        zero = np.flatnonzero(row_mass == 0.0)
        if zero.size:
            return zero
        if J.shape[0] <= _SVD_MAX_N:
            u, s, _ = np.linalg.svd(J.toarray())
            v = np.abs(u[:, -1])
            return np.flatnonzero(v > 0.1 * v.max())
        if lu is not None:
            d = np.abs(lu.U.diagonal())
            small = np.flatnonzero(d < self.config.pivot_floor * max(d.max(), 1.0))
            return np.argsort(lu.perm_r)[small]
        return np.arange(0)

    def _singular(self, J, iteration: int, detail: str, lu=None) -> SingularJacobian:
        rows = self._implicated_rows(J, lu)
        blocks: List[str] = []
        for r in rows:
            block = self.assembly.block_of_row(r)[0]
            if block not in blocks:
                blocks.append(block)
        labels = [self.assembly.block_of_row(r) for r in rows[:10]]
        return SingularJacobian(
            f"singular Jacobian at iteration {iteration} ({detail}); rank-deficient block(s): {blocks or ['?']}; "
            f"rows {labels}",
            rows=rows.tolist(), blocks=blocks, iteration=iteration,
        )

    def _newton_step(self, J: sps.csc_matrix, r: np.ndarray, iteration: int) -> np.ndarray:
        try:
            lu = spla.splu(J)
        except RuntimeError as exc:
            raise self._singular(J, iteration, str(exc)) from exc
        d = np.abs(lu.U.diagonal())
        dmax = d.max() if d.size else 0.0
        if dmax == 0.0 or d.min() / dmax < self.config.pivot_floor:
            raise self._singular(J, iteration, f"pivot ratio {d.min() / dmax if dmax else 0.0:.3e}", lu)
        dx = lu.solve(-r)
        if not np.all(np.isfinite(dx)):
            raise self._singular(J, iteration, "non-finite Newton step", lu)
        return dx

    def _line_search(self, x, dx, norm0, executor) -> Tuple[np.ndarray, np.ndarray, float, float, bool]:
        """Backtracking alpha = 1, 1/2, ...; if none reduces |F| the last trial that
        evaluated is kept."""
        atol = self.config.abs_tol
        alpha = 1.0
        last_exc: Optional[EOSimError] = None
        fallback = None
        for _ in range(self.config.line_search_halvings + 1):
            x_try = x + alpha * dx
            try:
                r_try = self.assembly.residual(x_try, executor)
            except (UnitEvaluationError, NonFiniteResidual) as exc:
                logger.debug("trial step alpha=%g rejected: %s", alpha, exc)
                last_exc = exc
            else:
                n_try = float(np.linalg.norm(r_try))
                if n_try < norm0 or n_try <= atol:
                    return x_try, r_try, n_try, alpha, False
                fallback = (x_try, r_try, n_try, alpha, True)
            alpha *= 0.5
        if fallback is None:
            raise last_exc
        return fallback

    # -------------------------------------------------------------------------
    # main loop
    # -------------------------------------------------------------------------
    def solve(self, x0: Optional[np.ndarray] = None) -> SolveResult:
        asm = self.assembly
        cfg = self.config
        t0 = time.perf_counter()
        x = asm.initial_vector() if x0 is None else np.array(x0, dtype=float, copy=True)
        if x.shape != (asm.N,):
            raise ValueError(f"initial vector has shape {x.shape}, expected ({asm.N},)")

        self.status = SolveStatus.INITIALIZED
        history: List[ProgressEvent] = []
        iteration = 0
        r = None
        norm = float("inf")

        pool = ThreadPoolExecutor(max_workers=cfg.workers) if cfg.workers > 1 else contextlib.nullcontext()
        with pool as executor:
            try:
                if self._cancelled():
                    raise SolveCancelled("solve cancelled before the first evaluation", iteration=0)
                r = asm.residual(x, executor)
                norm = float(np.linalg.norm(r))
                rel_step = 0.0
                self.status = SolveStatus.ITERATING
                while True:
                    if norm < cfg.abs_tol and rel_step < cfg.rel_tol:
                        self.status = SolveStatus.CONVERGED
                        break
                    if iteration >= cfg.max_iterations:
                        self.status = SolveStatus.MAX_ITER_EXCEEDED
                        break

                    if self._cancelled():
                        raise SolveCancelled(f"solve cancelled at iteration {iteration}",
                                             iteration=iteration, residual=norm)
                    r, J = asm.contribute(x, executor)
                    dx = self._newton_step(J, r, iteration)

                    if self._cancelled():
                        raise SolveCancelled(f"solve cancelled at iteration {iteration}",
                                             iteration=iteration, residual=norm)
                    x_new, r, norm_new, alpha, non_monotone = self._line_search(x, dx, norm, executor)
                    rel_step = float(np.max(np.abs(x_new - x) / np.maximum(np.abs(x), 1.0)))
                    x, norm = x_new, norm_new
                    iteration += 1

                    event = ProgressEvent(iteration, norm, time.perf_counter() - t0, alpha, non_monotone)
                    history.append(event)
                    if non_monotone:
                        logger.warning("non-monotone step accepted (alpha=%g, |F|=%.3e)", alpha, norm,
                                       extra={"iteration": iteration})
                    else:
                        logger.info("|F|=%.3e alpha=%g step=%.3e", norm, alpha, rel_step,
                                    extra={"iteration": iteration})
                    if self.progress is not None:
                        self.progress(event)
            except SolveCancelled as exc:
                self.status = SolveStatus.CANCELLED
                return self._result(x, r, norm, iteration, t0, history, exc)
            except (SingularJacobian, UnitEvaluationError, NonFiniteResidual) as exc:
                self.status = SolveStatus.DIVERGED
                exc.context.setdefault("iteration", iteration)
                logger.warning("solve diverged: %s", exc, extra={"iteration": iteration,
                                                                  "unit": exc.context.get("unit", "-")})
                return self._result(x, r, norm, iteration, t0, history, exc)

        error = None
        if self.status is SolveStatus.MAX_ITER_EXCEEDED:
            error = MaxIterationsExceeded(
                f"no convergence in {cfg.max_iterations} iterations (|F|={norm:.3e})",
                iteration=iteration, residual=norm,
            )
            logger.warning("%s", error, extra={"iteration": iteration})
        else:
            logger.info("converged in %d iteration(s), |F|=%.3e", iteration, norm, extra={"iteration": iteration})
        return self._result(x, r, norm, iteration, t0, history, error)

    def _result(self, x, r, norm, iteration, t0, history, error) -> SolveResult:
        res = SolveResult(
            status=self.status,
            x=x,
            residual_norm=norm,
            iterations=iteration,
            elapsed=time.perf_counter() - t0,
            streams=stream_table(self.assembly, x),
            error=error,
            history=history,
        )
        if r is not None and r.size and not res.converged and np.all(np.isfinite(r)):
            res.worst_unit, res.worst_equation, _ = self.assembly.worst_equation(r)
        if error is not None:
            unit = error.context.get("unit")
            if unit is not None and res.worst_unit is None:
                res.worst_unit = unit
            if isinstance(error, SingularJacobian) and error.blocks:
                res.worst_unit = error.blocks[0]
        return res


def solve(assembly: Assembly, config: Optional[SolverConfig] = None, *, x0=None, progress=None,
          cancel=None) -> SolveResult:
    return NewtonSolver(assembly, config, progress=progress, cancel=cancel).solve(x0)
