"""Global variable/equation indexing for a flowsheet.

Variable layout: every feed stream slice, then tear-guess slices (sequential
mode only), then for each unit in insertion order its outlet stream slices
followed by its internal variables. Equation rows follow the same order:
fixed blocks (feeds, tear guesses) first, then one block per unit.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sps

from .errors import ConfigurationError, NonFiniteResidual
from .flowsheet_tools import N_STATE, Flowsheet, StreamView, UnitViews

logger = logging.getLogger(__name__)

GUESS_SUFFIX = "[guess]"


class FixedBlock:
    """Rows pinning one stream slice to given values (feed spec or tear guess)."""

    __slots__ = ("name", "view", "row")

    def __init__(self, name: str, view: StreamView, row: int):
        self.name = name
        self.view = view
        self.row = row


class Assembly:
    def __init__(self, fs: Flowsheet, tears: Sequence[str] = ()):
        self.fs = fs
        self.props = fs.props
        self.n = fs.props.n()
        self.tears: Tuple[str, ...] = tuple(tears)

        self.stream_views: Dict[str, StreamView] = {}
        self.guess_views: Dict[str, StreamView] = {}
        self.unit_views: Dict[str, UnitViews] = {}
        self.unit_rows: Dict[str, int] = {}
        self.fixed: List[FixedBlock] = []
        self.tear_values: Dict[str, np.ndarray] = {}
        self.row_labels: List[Tuple[str, str]] = []
        self.col_labels: List[str] = []
        self.N = 0
        self.M = 0

    # -------------------------------------------------------------------------
    # layout
    # -------------------------------------------------------------------------
    def _new_view(self, name: str, phase: str) -> StreamView:
        v = StreamView(name, self.N, self.n, phase)
        self.N += v.size
        self.col_labels += [f"{name}.T", f"{name}.P", f"{name}.F"]
        self.col_labels += [f"{name}.f[{c}]" for c in self.props.names]
        return v

    def _fixed_rows(self, block: str, view: StreamView) -> None:
        self.fixed.append(FixedBlock(block, view, self.M))
        labels = ["T", "P", "total_flow"] + [f"flow[{c}]" for c in self.props.names]
        self.row_labels += [(block, lab) for lab in labels]
        self.M += view.size

    def _layout(self) -> None:
        fs = self.fs
        for s in fs.feeds():
            self.stream_views[s.name] = self._new_view(s.name, s.phase)
            self._fixed_rows(f"feed:{s.name}", self.stream_views[s.name])
        for name in self.tears:
            s = fs.streams[name]
            gname = name + GUESS_SUFFIX
            self.guess_views[name] = self._new_view(gname, s.phase)
            self._fixed_rows(f"tear:{name}", self.guess_views[name])

        for unit in fs.units.values():
            for s in unit.outlets.values():
                self.stream_views[s.name] = self._new_view(s.name, s.phase)
            offset = self.N
            self.N += unit.n_internal_vars()
            self.col_labels += [f"{unit.name}.{lab}" for lab in unit.internal_names()]
            self.unit_views[unit.name] = UnitViews(inlets={}, outlets={}, offset=offset,
                                                   n_internal=unit.n_internal_vars())

        for unit in fs.units.values():
            uv = self.unit_views[unit.name]
            for port, s in unit.inlets.items():
                uv.inlets[port] = self.guess_views.get(s.name, self.stream_views[s.name])
            for port, s in unit.outlets.items():
                uv.outlets[port] = self.stream_views[s.name]
            self.unit_rows[unit.name] = self.M
            labels = unit.equation_labels()
            self.row_labels += [(unit.name, lab) for lab in labels]
            self.M += unit.n_equations()

    # -------------------------------------------------------------------------
    # validation
    # -------------------------------------------------------------------------
    def _validate(self) -> None:
        fs = self.fs
        dangling = sorted(s.name for s in fs.streams.values() if s.producer is None and not s.is_feed)
        if dangling:
            raise ConfigurationError(
                f"dangling stream(s) with no producer and no feed specification: {dangling}",
                streams=dangling,
            )

        consumers: Dict[str, List[str]] = defaultdict(list)
        producers: Dict[str, List[str]] = defaultdict(list)
        for unit in fs.units.values():
            for s in unit.inlets.values():
                consumers[s.name].append(unit.name)
            for s in unit.outlets.values():
                producers[s.name].append(unit.name)
        twice = {k: v for k, v in consumers.items() if len(v) > 1}
        if twice:
            raise ConfigurationError(f"stream(s) consumed by more than one unit: {twice}", streams=sorted(twice))
        orphans = sorted(s.name for s in fs.streams.values() if s.producer is not None and s.name not in producers)
        if orphans:
            raise ConfigurationError(f"stream(s) name a producer that is not in the flowsheet: {orphans}",
                                     streams=orphans)

        for name in self.tears:
            s = fs.streams.get(name)
            if s is None:
                raise ConfigurationError(f"unknown tear stream '{name}'", stream=name)
            if s.is_feed or s.consumer is None:
                raise ConfigurationError(f"tear stream '{name}' must connect two units", stream=name)

        port_problems = {}
        for unit in fs.units.values():
            problems = unit.check_ports()
            if problems:
                port_problems[unit.name] = problems
        if port_problems:
            detail = "; ".join(f"{u}: {', '.join(p)}" for u, p in port_problems.items())
            raise ConfigurationError(f"invalid unit wiring: {detail}", units=port_problems)

        imbalance = {}
        for unit in fs.units.values():
            diff = unit.n_equations() - unit.n_owned_vars(self.n)
            if diff:
                imbalance[unit.name] = diff
        M = (N_STATE + self.n) * (len(fs.feeds()) + len(self.tears))
        M += sum(u.n_equations() for u in fs.units.values())
        N = (N_STATE + self.n) * len(fs.streams) + (N_STATE + self.n) * len(self.tears)
        N += sum(u.n_internal_vars() for u in fs.units.values())
        if imbalance or M != N:
            parts = [f"{u} ({'+' if d > 0 else ''}{d})" for u, d in imbalance.items()]
            excess = M - N
            kind = "excess" if excess > 0 else "missing"
            raise ConfigurationError(
                f"non-square system: {M} equations for {N} variables ({abs(excess)} {kind} equation(s)); "
                f"over/under-specified unit(s): {', '.join(parts) or 'none'}",
                equations=M, variables=N, excess=excess, units=imbalance,
            )

    def build(self) -> "Assembly":
        self._validate()
        self._layout()
        if self.M != self.N:
            raise ConfigurationError(f"non-square system after layout: M={self.M}, N={self.N}",
                                     equations=self.M, variables=self.N)
        for name in self.tears:
            self.tear_values[name] = np.zeros(N_STATE + self.n, dtype=float)
        logger.debug("assembled %d equations over %d units (%d tears)", self.M, len(self.unit_views), len(self.tears))
        return self

    # -------------------------------------------------------------------------
    # initial guess
    # -------------------------------------------------------------------------
    def default_stream_state(self) -> np.ndarray:
        feeds = self.fs.feeds()
        if feeds:
            flows = np.mean([s.feed.flows for s in feeds], axis=0)
        else:
            flows = np.zeros(self.n, dtype=float)
        return np.concatenate(([self.fs.default_T, self.fs.default_p, flows.sum()], flows))

    def initial_vector(self) -> np.ndarray:
        x = np.zeros(self.N, dtype=float)
        guess = self.default_stream_state()
        for s in self.fs.feeds():
            self.stream_views[s.name].slice(x)[:] = s.feed.as_vector()
        for name, view in self.stream_views.items():
            if not self.fs.streams[name].is_feed:
                view.slice(x)[:] = guess
        for name, view in self.guess_views.items():
            view.slice(x)[:] = self.tear_values[name]
        for unit in self.fs.units.values():
            uv = self.unit_views[unit.name]
            if uv.n_internal:
                x[uv.offset:uv.offset + uv.n_internal] = unit.initial_internal(x, uv)
        return x

    def fixed_values(self, block: FixedBlock) -> np.ndarray:
        kind, name = block.name.split(":", 1)
        if kind == "feed":
            return self.fs.streams[name].feed.as_vector()
        return self.tear_values[name]

    # -------------------------------------------------------------------------
    # evaluation
    # -------------------------------------------------------------------------
    def _map_units(self, fn, executor):
        units = list(self.fs.units.values())
        if executor is None:
            return [fn(u) for u in units]
        return list(executor.map(fn, units))

    def _fixed_residual(self, x, r) -> None:
        for block in self.fixed:
            r[block.row:block.row + block.view.size] = block.view.slice(x) - self.fixed_values(block)

    def residual(self, x: np.ndarray, executor=None) -> np.ndarray:
        r = np.empty(self.M, dtype=float)
        self._fixed_residual(x, r)
        results = self._map_units(lambda u: u.evaluate(x, self.unit_views[u.name]), executor)
        for unit, rows in zip(self.fs.units.values(), results):
            start = self.unit_rows[unit.name]
            r[start:start + len(rows)] = rows
        self._check_finite(r)
        return r

    def contribute(self, x: np.ndarray, executor=None) -> Tuple[np.ndarray, sps.csc_matrix]:
        """Residual and sparse Jacobian in one pass; duplicate entries are summed."""
        r = np.empty(self.M, dtype=float)
        self._fixed_residual(x, r)
        rows, cols, vals = [], [], []
        for block in self.fixed:
            rows.append(block.row + np.arange(block.view.size))
            cols.append(block.view.columns())
            vals.append(np.ones(block.view.size))

        results = self._map_units(lambda u: u.contribute(x, self.unit_views[u.name]), executor)
        for unit, (res, entries) in zip(self.fs.units.values(), results):
            start = self.unit_rows[unit.name]
            r[start:start + len(res)] = res
            lr, lc, lv = entries.arrays()
            rows.append(lr + start)
            cols.append(lc)
            vals.append(lv)
        self._check_finite(r)
        J = sps.coo_matrix(
            (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))), shape=(self.M, self.N)
        ).tocsc()
        return r, J

    def _check_finite(self, r: np.ndarray) -> None:
        bad = np.flatnonzero(~np.isfinite(r))
        if bad.size:
            block, label = self.row_labels[bad[0]]
            raise NonFiniteResidual(
                f"non-finite residual in '{block}' ({label})",
                rows=bad.tolist(), unit=block, equation=label,
            )

    # -------------------------------------------------------------------------
    # diagnostics
    # -------------------------------------------------------------------------
    def sparsity_pattern(self) -> sps.csr_matrix:
        """Structural non-zeros; depends on topology only."""
        rows, cols = [], []
        for block in self.fixed:
            rows.append(block.row + np.arange(block.view.size))
            cols.append(block.view.columns())
        for unit in self.fs.units.values():
            uv = self.unit_views[unit.name]
            ucols = unit.columns(uv)
            start = self.unit_rows[unit.name]
            for k in range(unit.n_equations()):
                rows.append(np.full(ucols.shape, start + k))
                cols.append(ucols)
        rows = np.concatenate(rows)
        cols = np.concatenate(cols)
        data = np.ones(rows.shape, dtype=float)
        pattern = sps.coo_matrix((data, (rows, cols)), shape=(self.M, self.N)).tocsr()
        pattern.data[:] = 1.0
        return pattern

    def block_of_row(self, row: int) -> Tuple[str, str]:
        return self.row_labels[int(row)]

    def worst_equation(self, r: np.ndarray) -> Tuple[str, str, float]:
        k = int(np.argmax(np.abs(r)))
        block, label = self.row_labels[k]
        return block, label, float(r[k])

    def tear_output(self, x: np.ndarray, name: str) -> np.ndarray:
        """g(x): the producer-side slice of a torn stream."""
        return self.stream_views[name].slice(x).copy()


def assemble(fs: Flowsheet, *, tears: Optional[Sequence[str]] = None) -> Assembly:
    return Assembly(fs, tears or ()).build()
