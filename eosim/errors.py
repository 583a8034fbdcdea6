from __future__ import annotations

from typing import Any, Dict, Optional


class EOSimError(Exception):
    """Base class for solver errors. ``context`` holds ids and magnitudes."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context: Dict[str, Any] = dict(context)


class ConfigurationError(EOSimError, ValueError):
    """Flowsheet or solver setup cannot be solved as given (raised before iterating)."""


class FormulaError(ConfigurationError):
    pass


class FlashError(EOSimError):
    """Property package produced an unusable result (non-finite values, bad input)."""


class FlashNotConverged(FlashError):
    def __init__(self, message: str, *, T: float, P: float, z, iterations: int, dK: float):
        super().__init__(message, T=float(T), P=float(P), z=list(map(float, z)),
                         iterations=int(iterations), dK=float(dK))


class SingularMatrixError(FlashError):
    """A dense solve in property/derivative evaluation hit a near-singular matrix."""


class UnitEvaluationError(EOSimError):
    """A unit model failed while evaluating its residual rows."""

    def __init__(self, message: str, *, unit: str, stream: Optional[str] = None,
                 cause: Optional[BaseException] = None, **context: Any):
        super().__init__(message, unit=unit, stream=stream, **context)
        self.unit = unit
        self.stream = stream
        self.cause = cause


class SingularJacobian(EOSimError):
    def __init__(self, message: str, *, rows, blocks, iteration: int):
        super().__init__(message, rows=list(rows), blocks=list(blocks), iteration=int(iteration))
        self.rows = list(rows)
        self.blocks = list(blocks)


class NonFiniteResidual(EOSimError):
    pass


class MaxIterationsExceeded(EOSimError):
    """Soft failure: the result still carries the best-effort state."""


class RecycleNotConverged(EOSimError):
    """Soft failure from the tear-stream loop: best estimate and trend are kept."""


class SolveCancelled(EOSimError):
    pass
