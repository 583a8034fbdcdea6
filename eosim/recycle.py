"""Sequential (tear-stream) mode with recycle convergence acceleration.

Each outer pass fixes the tear guesses x, solves the torn flowsheet with the
Newton solver and reads g(x) back at the producer side of every tear. The
accelerator then proposes the next guess.
"""
from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from .assembler import Assembly, assemble
from .errors import ConfigurationError, RecycleNotConverged, SingularMatrixError, SolveCancelled
from .flowsheet_tools import Flowsheet
from .inputs import InputParameters, SolverConfig
from .newton import NewtonSolver, ProgressEvent, SolveResult, SolveStatus, cancel_check
from .thermo import solve_checked

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------------------
# tear selection
# ------------------------------------------------------------------------------

def find_tear_streams(fs: Flowsheet) -> List[str]:
    """Streams on DFS back-edges of the unit graph; removing them leaves a DAG.

    The search starts from units fed by boundary feeds, in feed order, so the
    torn edge is the one closing each loop rather than one entering it.
    """
    adj: Dict[str, List[Tuple[str, str]]] = defaultdict(list)
    for producer, consumer, stream in fs.connections():
        if producer in fs.units and consumer in fs.units:
            adj[producer].append((consumer, stream))

    roots = [s.consumer for s in fs.feeds() if s.consumer in fs.units]
    roots += [u for u in fs.units if u not in roots]

    WHITE, GREY, BLACK = 0, 1, 2
    colour = {u: WHITE for u in fs.units}
    tears: List[str] = []

    for root in roots:
        if colour[root] != WHITE:
            continue
        # iterative DFS: (node, iterator over its out-edges)
        stack = [(root, iter(adj[root]))]
        colour[root] = GREY
        while stack:
            node, edges = stack[-1]
            for nxt, stream in edges:
                if colour[nxt] == GREY:
                    tears.append(stream)
                elif colour[nxt] == WHITE:
                    colour[nxt] = GREY
                    stack.append((nxt, iter(adj[nxt])))
                    break
            else:
                colour[node] = BLACK
                stack.pop()
    return tears


# ------------------------------------------------------------------------------
# accelerators
# ------------------------------------------------------------------------------

def relative_change(x_new: np.ndarray, x_old: np.ndarray) -> float:
    """||(x_new - x_old) / max(|x_old|, 1)||_2, so T, P and flows weigh alike."""
    return float(np.linalg.norm((x_new - x_old) / np.maximum(np.abs(x_old), 1.0)))


def direct_substitution(x1: np.ndarray, g1: np.ndarray) -> np.ndarray:
    return np.array(g1, dtype=float, copy=True)


def wegstein_update(x1: np.ndarray, g1: np.ndarray, s: np.ndarray) -> np.ndarray:
    """x_new = (s*x1 - g1) / (s - 1); s = 0 is plain substitution."""
    return (s * x1 - g1) / (s - 1.0)


def wegstein_step(x0: np.ndarray, g0: np.ndarray, x1: np.ndarray, g1: np.ndarray,
                  bounds: Tuple[float, float] = (InputParameters.WEGSTEIN_SLOPE_MIN,
                                                 InputParameters.WEGSTEIN_SLOPE_MAX)) -> np.ndarray:
    """
    Per-variable secant slope s = (g1 - g0) / (x1 - x0). Variables whose slope
    is outside ``bounds`` (near 1 the update blows up) or whose x did not move
    fall back to substitution.
    """
    lo, hi = bounds
    dx = x1 - x0
    dg = g1 - g0
    moved = np.abs(dx) > 1e-12 * np.maximum(np.abs(x1), 1.0)
    s = np.zeros_like(x1)
    s[moved] = dg[moved] / dx[moved]
    usable = moved & (s >= lo) & (s <= hi)
    s[~usable] = 0.0
    x_new = wegstein_update(x1, g1, s)
    x_new[~usable] = g1[~usable]
    return x_new


class BroydenAccelerator:
    """Quasi-Newton on r(x) = g(x) - x with a rank-one (Broyden) Jacobian update.

    B starts at -I, so the first step is plain substitution.
    """

    def __init__(self, n: int):
        self.B = -np.eye(n)
        self._prev: Optional[Tuple[np.ndarray, np.ndarray]] = None

    def step(self, x1: np.ndarray, g1: np.ndarray) -> np.ndarray:
        r1 = g1 - x1
        if self._prev is not None:
            x0, r0 = self._prev
            dx = x1 - x0
            dr = r1 - r0
            dd = float(dx @ dx)
            if dd > 0.0:
                self.B += np.outer(dr - self.B @ dx, dx) / dd
        self._prev = (x1.copy(), r1.copy())
        return x1 + solve_checked(self.B, -r1, what="Broyden recycle Jacobian")


# ------------------------------------------------------------------------------
# outer loop
# ------------------------------------------------------------------------------

@dataclass
class RecycleResult:
    converged: bool
    tears: Tuple[str, ...]
    estimate: Dict[str, np.ndarray]
    iterations: int
    trend: List[float] = field(default_factory=list)
    error: Optional[RecycleNotConverged] = None


class RecycleSolver:
    """Tear-stream solve of a flowsheet.

    Tears come from ``config.tear_streams`` or ``find_tear_streams``.
    """

    def __init__(self, fs: Flowsheet, config: Optional[SolverConfig] = None, *,
                 progress: Optional[Callable[[ProgressEvent], None]] = None, cancel=None):
        self.fs = fs
        self.config = config or SolverConfig(mode="sequential")
        self.progress = progress
        self.cancel = cancel
        self._cancelled = cancel_check(cancel)
        tears = self.config.tear_streams
        self.tears: Tuple[str, ...] = tuple(find_tear_streams(fs) if tears is None else tears)
        self.assembly: Assembly = assemble(fs, tears=self.tears)

    def _pack(self) -> np.ndarray:
        if not self.tears:
            return np.zeros(0)
        return np.concatenate([self.assembly.tear_values[t] for t in self.tears])

    def _unpack(self, v: np.ndarray) -> None:
        size = self.assembly.n + 3
        for k, t in enumerate(self.tears):
            self.assembly.tear_values[t] = np.array(v[k * size:(k + 1) * size], dtype=float)

    def _evaluate(self, t: np.ndarray, x_warm: Optional[np.ndarray]) -> Tuple[np.ndarray, SolveResult]:
        """g(t): solve the torn flowsheet with the tear guesses pinned to ``t``."""
        asm = self.assembly
        self._unpack(t)
        x0 = None
        if x_warm is not None:
            x0 = x_warm.copy()
            for name, view in asm.guess_views.items():
                view.slice(x0)[:] = asm.tear_values[name]
        inner = NewtonSolver(asm, self.config, cancel=self.cancel).solve(x0)
        if not self.tears:
            return np.zeros(0), inner
        g = np.concatenate([asm.tear_output(inner.x, name) for name in self.tears])
        return g, inner

    def _accelerate(self, method: str, history: List[Tuple[np.ndarray, np.ndarray]],
                    broyden: Optional[BroydenAccelerator]) -> np.ndarray:
        x1, g1 = history[-1]
        if method == "direct" or (method == "wegstein" and len(history) < 2):
            return direct_substitution(x1, g1)
        if method == "wegstein":
            x0, g0 = history[-2]
            return wegstein_step(x0, g0, x1, g1, self.config.wegstein_bounds)
        return broyden.step(x1, g1)

    def solve(self) -> SolveResult:
        cfg = self.config
        asm = self.assembly
        t0 = time.perf_counter()
        guess = asm.default_stream_state()
        for name in self.tears:
            asm.tear_values[name] = guess.copy()
        t = self._pack()
        if self.tears:
            logger.info("tear streams: %s (method=%s)", list(self.tears), cfg.recycle_method)

        broyden = BroydenAccelerator(t.size) if cfg.recycle_method == "quasi-newton" else None
        history: List[Tuple[np.ndarray, np.ndarray]] = []
        trend: List[float] = []
        events: List[ProgressEvent] = []
        best: Tuple[float, np.ndarray] = (np.inf, t)
        x_warm: Optional[np.ndarray] = None
        inner: Optional[SolveResult] = None
        converged = False
        iteration = 0

        while iteration < cfg.recycle_max_iterations:
            if self._cancelled():
                inner = self._cancelled_result(inner, iteration, t0)
                break
            g, inner = self._evaluate(t, x_warm)
            if not inner.converged:
                # hard inner failure: report it as the outcome of the whole solve
                logger.warning("inner solve failed on recycle pass %d: %s", iteration + 1,
                               inner.error, extra={"iteration": iteration + 1})
                inner.recycle = RecycleResult(False, self.tears, self._estimate(t), iteration, trend)
                return inner
            x_warm = inner.x
            iteration += 1
            if not self.tears:
                converged = True
                break

            history.append((t, g))
            try:
                t_new = self._accelerate(cfg.recycle_method, history, broyden)
            except SingularMatrixError as exc:
                logger.warning("quasi-Newton update singular (%s); substituting", exc,
                               extra={"iteration": iteration})
                broyden = BroydenAccelerator(t.size)
                t_new = direct_substitution(t, g)

            err = relative_change(g, t)
            trend.append(err)
            if err < best[0]:
                best = (err, g)
            event = ProgressEvent(iteration, err, time.perf_counter() - t0)
            events.append(event)
            logger.info("recycle |g(x)-x|=%.3e", err, extra={"iteration": iteration})
            if self.progress is not None:
                self.progress(event)

            if relative_change(t_new, t) < cfg.recycle_tol:
                converged = True
                t = t_new
                break
            t = t_new

        if inner is None or inner.status is SolveStatus.CANCELLED:
            inner = inner or self._cancelled_result(None, iteration, t0)
            inner.recycle = RecycleResult(False, self.tears, self._estimate(best[1]), iteration, trend)
            return inner

        if converged and self.tears:
            # final pass so the reported streams sit on the accepted tear values
            g, inner = self._evaluate(t, x_warm)
            if not inner.converged:
                inner.recycle = RecycleResult(False, self.tears, self._estimate(t), iteration, trend)
                return inner

        recycle = RecycleResult(converged, self.tears, self._estimate(t if converged else best[1]),
                                iteration, trend)
        if not converged:
            recycle.error = RecycleNotConverged(
                f"tear streams {list(self.tears)} not converged in {iteration} passes "
                f"(last change {trend[-1] if trend else float('nan'):.3e})",
                iterations=iteration, trend=list(trend), tears=list(self.tears),
            )
            logger.warning("%s", recycle.error, extra={"iteration": iteration})

        inner.status = SolveStatus.CONVERGED if converged else SolveStatus.MAX_ITER_EXCEEDED
        inner.error = recycle.error
        inner.iterations = iteration
        inner.history = events
        inner.elapsed = time.perf_counter() - t0
        inner.recycle = recycle
        return inner

    def _estimate(self, t: np.ndarray) -> Dict[str, np.ndarray]:
        size = self.assembly.n + 3
        return {name: np.array(t[k * size:(k + 1) * size]) for k, name in enumerate(self.tears)}

    def _cancelled_result(self, inner: Optional[SolveResult], iteration: int, t0: float) -> SolveResult:
        x = inner.x if inner is not None else self.assembly.initial_vector()
        error = SolveCancelled(f"recycle solve cancelled after {iteration} pass(es)", iteration=iteration)
        return SolveResult(status=SolveStatus.CANCELLED, x=x, residual_norm=float("nan"),
                           iterations=iteration, elapsed=time.perf_counter() - t0, error=error)


def solve_sequential(fs: Flowsheet, config: Optional[SolverConfig] = None, *,
                     progress=None, cancel=None) -> SolveResult:
    if config is not None and config.mode != "sequential":
        raise ConfigurationError(f"solve_sequential needs mode='sequential', got '{config.mode}'")
    return RecycleSolver(fs, config, progress=progress, cancel=cancel).solve()
