from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np

from .errors import ConfigurationError, FlashError, UnitEvaluationError
from .inputs import InputParameters
from .thermo import PHASES, PropertyPackage

logger = logging.getLogger(__name__)

EPS = 1e-30
N_STATE = 3  # T, P, F ahead of the component flows in every stream slice


@dataclass(frozen=True, eq=False)
class FeedSpec:
    T: float
    P: float
    flows: np.ndarray

    @property
    def F(self) -> float:
        return float(self.flows.sum())

    def as_vector(self) -> np.ndarray:
        return np.concatenate(([self.T, self.P, self.F], self.flows))


@dataclass(eq=False)
class Stream:
    name: str
    phase: str = "L"
    producer: Optional[str] = None
    consumer: Optional[str] = None
    feed: Optional[FeedSpec] = None

    def __post_init__(self):
        if self.phase not in PHASES:
            raise ValueError(f"{self.name}: phase must be one of {PHASES}")

    @property
    def is_feed(self) -> bool:
        return self.feed is not None


class StreamView:
    """Fixed offset into the flat variable vector: [T, P, F, f_1..f_n]."""

    __slots__ = ("name", "offset", "n", "phase")

    def __init__(self, name: str, offset: int, n: int, phase: str):
        self.name = name
        self.offset = int(offset)
        self.n = int(n)
        self.phase = phase

    @property
    def size(self) -> int:
        return N_STATE + self.n

    @property
    def iT(self) -> int:
        return self.offset

    @property
    def iP(self) -> int:
        return self.offset + 1

    @property
    def iF(self) -> int:
        return self.offset + 2

    @property
    def iflows(self) -> np.ndarray:
        return np.arange(self.offset + N_STATE, self.offset + N_STATE + self.n)

    def columns(self) -> np.ndarray:
        return np.arange(self.offset, self.offset + self.size)

    def T(self, x: np.ndarray) -> float:
        return float(x[self.offset])

    def P(self, x: np.ndarray) -> float:
        return float(x[self.offset + 1])

    def F(self, x: np.ndarray) -> float:
        return float(x[self.offset + 2])

    def flows(self, x: np.ndarray) -> np.ndarray:
        return x[self.offset + N_STATE:self.offset + N_STATE + self.n]

    def slice(self, x: np.ndarray) -> np.ndarray:
        return x[self.offset:self.offset + self.size]

    def __repr__(self) -> str:
        return f"StreamView({self.name!r}, offset={self.offset})"


@dataclass
class UnitViews:
    inlets: Dict[str, StreamView]
    outlets: Dict[str, StreamView]
    offset: int
    n_internal: int

    def internal(self, x: np.ndarray) -> np.ndarray:
        return x[self.offset:self.offset + self.n_internal]

    def icol(self, k: int) -> int:
        return self.offset + k


class JacobianEntries:
    """(local_row, global_col, value) triples; duplicates are summed downstream."""

    def __init__(self):
        self.rows: List[int] = []
        self.cols: List[int] = []
        self.vals: List[float] = []

    def add(self, row: int, col: int, val: float) -> None:
        self.rows.append(int(row))
        self.cols.append(int(col))
        self.vals.append(float(val))

    def add_many(self, row: int, cols, vals) -> None:
        cols = np.atleast_1d(cols)
        vals = np.broadcast_to(np.asarray(vals, dtype=float), cols.shape)
        self.rows.extend([int(row)] * len(cols))
        self.cols.extend(int(c) for c in cols)
        self.vals.extend(float(v) for v in vals)

    def arrays(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        return (np.asarray(self.rows, dtype=int), np.asarray(self.cols, dtype=int),
                np.asarray(self.vals, dtype=float))


class UnitOp:
    """Base unit: owns its outlet stream slices plus ``n_internal_vars()`` values.

    Subclasses implement ``n_equations``, ``equation_labels`` and ``equations``.
    Units with ``analytic = True`` write their Jacobian entries while evaluating;
    the rest are differenced one-sided, column by column, over the rows named
    by ``differenced_rows``.
    """

    analytic = False

    def __init__(self, name: str):
        self.name = name
        self.inlets: Dict[str, Stream] = {}
        self.outlets: Dict[str, Stream] = {}
        self.props: Optional[PropertyPackage] = None

    def add_inlet(self, port: str, s: Stream) -> None:
        if port in self.inlets:
            raise ValueError(f"{self.name}: inlet port '{port}' already connected")
        if s.consumer is not None:
            raise ConfigurationError(
                f"stream '{s.name}' already consumed by '{s.consumer}', cannot feed '{self.name}'",
                stream=s.name, unit=self.name,
            )
        self.inlets[port] = s
        s.consumer = self.name

    def add_outlet(self, port: str, s: Stream) -> None:
        if port in self.outlets:
            raise ValueError(f"{self.name}: outlet port '{port}' already connected")
        if s.producer is not None or s.is_feed:
            raise ConfigurationError(
                f"stream '{s.name}' already has a producer, cannot be an outlet of '{self.name}'",
                stream=s.name, unit=self.name,
            )
        self.outlets[port] = s
        s.producer = self.name

    def bind(self, props: PropertyPackage) -> None:
        self.props = props

    # -------------------------------------------------------------------------
    # static metadata
    # -------------------------------------------------------------------------
    def n_internal_vars(self) -> int:
        return 0

    def internal_names(self) -> List[str]:
        return []

    def n_equations(self) -> int:
        raise NotImplementedError

    def equation_labels(self) -> List[str]:
        raise NotImplementedError

    def check_ports(self) -> List[str]:
        """Problems with the port wiring, reported by the assembler."""
        return []

    def n_owned_vars(self, n_components: int) -> int:
        return len(self.outlets) * (N_STATE + n_components) + self.n_internal_vars()

    # -------------------------------------------------------------------------
    # numerics
    # -------------------------------------------------------------------------
    def initial_internal(self, x: np.ndarray, views: UnitViews) -> np.ndarray:
        return np.zeros(self.n_internal_vars(), dtype=float)

    def equations(self, x: np.ndarray, views: UnitViews, jac: Optional[JacobianEntries]) -> np.ndarray:
        """Residual rows; analytic units also push derivatives into ``jac`` when given."""
        raise NotImplementedError

    def generation(self, x: np.ndarray, views: UnitViews) -> np.ndarray:
        """Net component production (outlet - inlet at balance)."""
        return np.zeros(self.props.n(), dtype=float)

    def columns(self, views: UnitViews) -> np.ndarray:
        cols = [v.columns() for v in views.inlets.values()]
        cols += [v.columns() for v in views.outlets.values()]
        cols.append(np.arange(views.offset, views.offset + views.n_internal))
        return np.unique(np.concatenate(cols))

    def evaluate(self, x: np.ndarray, views: UnitViews, jac: Optional[JacobianEntries] = None) -> np.ndarray:
        try:
            r = np.asarray(self.equations(x, views, jac), dtype=float)
        except FlashError as exc:
            inlet = next(iter(views.inlets.values()), None)
            stream = inlet.name if inlet is not None else None
            raise UnitEvaluationError(
                f"{self.name}: property evaluation failed ({exc})",
                unit=self.name, stream=stream, cause=exc, **exc.context,
            ) from exc
        if r.shape != (self.n_equations(),):
            raise UnitEvaluationError(
                f"{self.name}: produced {r.shape[0]} residual rows, declared {self.n_equations()}",
                unit=self.name,
            )
        return r

    def differenced_rows(self) -> Optional[np.ndarray]:
        """Rows a non-analytic unit leaves to finite differences (None: every row).

        When this returns rows, ``equations`` writes exact entries for all the
        other rows itself.
        """
        return None

    def numeric_jacobian(self, x: np.ndarray, views: UnitViews, r0: np.ndarray,
                         entries: Optional[JacobianEntries] = None) -> JacobianEntries:
        entries = JacobianEntries() if entries is None else entries
        rows = self.differenced_rows()
        keep = np.ones(r0.shape, dtype=bool)
        if rows is not None:
            keep[:] = False
            keep[rows] = True
        xw = np.array(x, dtype=float, copy=True)
        for j in self.columns(views):
            xj = xw[j]
            h = max(InputParameters.NR_FD_REL_STEP * abs(xj), InputParameters.NR_FD_MIN_STEP)
            xw[j] = xj + h
            d = np.where(keep, (self.evaluate(xw, views) - r0) / h, 0.0)
            xw[j] = xj
            if not np.all(np.isfinite(d)):
                raise UnitEvaluationError(f"{self.name}: non-finite derivative in column {j}",
                                          unit=self.name, column=int(j))
            for row in np.flatnonzero(d):
                entries.add(row, j, d[row])
        return entries

    def contribute(self, x: np.ndarray, views: UnitViews) -> Tuple[np.ndarray, JacobianEntries]:
        if self.analytic:
            jac = JacobianEntries()
            return self.evaluate(x, views, jac), jac
        jac = JacobianEntries() if self.differenced_rows() is not None else None
        r = self.evaluate(x, views, jac)
        return r, self.numeric_jacobian(x, views, r, jac)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"


# ------------------------------------------------------------------------------
# shared residual/Jacobian pieces
# ------------------------------------------------------------------------------

def total_flow_row(x, out: StreamView, row: int, jac: Optional[JacobianEntries]) -> float:
    """F_out - sum(f_out) = 0."""
    if jac is not None:
        jac.add(row, out.iF, 1.0)
        jac.add_many(row, out.iflows, -1.0)
    return out.F(x) - float(out.flows(x).sum())


def energy_terms(props: PropertyPackage, x, view: StreamView, sign: float, row: int,
                 jac: Optional[JacobianEntries]) -> float:
    """Add ``sign * H(view)`` to an energy row (and its gradient)."""
    H, dH_dT, dH_df = props.enthalpy_gradient(view.T(x), view.flows(x), view.phase)
    if jac is not None:
        jac.add(row, view.iT, sign * dH_dT)
        jac.add_many(row, view.iflows, sign * dH_df)
    return sign * H


class Flowsheet:
    def __init__(self, props: PropertyPackage, *,
                 default_T: float = InputParameters.DEFAULT_T_K,
                 default_p: float = InputParameters.DEFAULT_P_PA):
        self.props = props
        self.reg = props.registry
        self.default_T = float(default_T)
        self.default_p = float(default_p)
        self.streams: Dict[str, Stream] = {}
        self.units: Dict[str, UnitOp] = {}

    def add_stream(self, s: Stream) -> Stream:
        if s.name in self.streams:
            raise ConfigurationError(f"Stream '{s.name}' already exists", stream=s.name)
        self.streams[s.name] = s
        return s

    def new_stream(self, name: str, *, phase: str = "L") -> Stream:
        return self.add_stream(Stream(name=name, phase=phase))

    def new_feed(
        self,
        name: str,
        *,
        T: float,
        P: float,
        flows: Optional[Mapping[str, float]] = None,
        flow: Optional[float] = None,
        composition: Optional[Mapping[str, float]] = None,
        phase: str = "L",
    ) -> Stream:
        """Boundary stream. Give component ``flows`` or total ``flow`` + ``composition``."""
        if T <= 0:
            raise ValueError(f"{name}: T must be > 0 K")
        if P <= 0:
            raise ValueError(f"{name}: P must be > 0 Pa")
        if flows is not None:
            if flow is not None or composition is not None:
                raise ValueError(f"{name}: give either flows or flow+composition, not both")
            f = self.reg.dense(flows)
        else:
            if flow is None or composition is None:
                raise ValueError(f"{name}: feed needs flows or flow+composition")
            z = self.reg.dense(composition)
            if z.sum() <= 0:
                raise ValueError(f"{name}: composition must have a positive sum")
            f = float(flow) * z / z.sum()
        if np.any(f < 0):
            raise ValueError(f"{name}: negative component flow in feed")
        return self.add_stream(Stream(name=name, phase=phase, feed=FeedSpec(float(T), float(P), f)))

    def add_unit(self, unit: UnitOp) -> UnitOp:
        if unit.name in self.units:
            raise ConfigurationError(f"Unit '{unit.name}' already exists", unit=unit.name)
        for s in list(unit.inlets.values()) + list(unit.outlets.values()):
            if self.streams.get(s.name) is not s:
                raise ConfigurationError(
                    f"{unit.name}: stream '{s.name}' is not part of this flowsheet", unit=unit.name, stream=s.name
                )
        unit.bind(self.props)
        self.units[unit.name] = unit
        return unit

    def feeds(self) -> List[Stream]:
        return [s for s in self.streams.values() if s.is_feed]

    def connections(self) -> List[Tuple[str, str, str]]:
        """(producer unit, consumer unit, stream) for every internal edge."""
        return [(s.producer, s.consumer, s.name) for s in self.streams.values()
                if s.producer is not None and s.consumer is not None]
