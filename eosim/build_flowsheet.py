from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from .assembler import assemble
from .compounds import BinaryInteractionSet, ComponentRegistry, Compound, InteractionParameter
from .errors import ConfigurationError
from .flowsheet_tools import Flowsheet, UnitOp
from .inputs import InputParameters, SolverConfig
from .newton import NewtonSolver, SolveResult
from .recycle import RecycleSolver
from .results import outcome
from .thermo import PropertyPackage
from .unitops import (
    ComponentSplitter,
    EquilibriumStage,
    FlashDrum,
    Heater,
    Mixer,
    Pump,
    Splitter,
    StoichiometricReactor,
    StoichReaction,
)

logger = logging.getLogger(__name__)


def _reactor(name: str, *, reactions: Iterable[Any], **params) -> StoichiometricReactor:
    rxns = [r if isinstance(r, StoichReaction) else StoichReaction(**r) for r in reactions]
    return StoichiometricReactor(name, rxns, **params)


UNIT_TYPES: Dict[str, Callable[..., UnitOp]] = {
    "mixer": Mixer,
    "splitter": Splitter,
    "component_splitter": ComponentSplitter,
    "heater": Heater,
    "pump": Pump,
    "flash": FlashDrum,
    "flash_drum": FlashDrum,
    "reactor": _reactor,
    "equilibrium_stage": EquilibriumStage,
}


# ------------------------------------------------------------------------------
# REGISTRY
# ------------------------------------------------------------------------------

def build_registry(compounds: Mapping[str, Mapping[str, Any]],
                   atomic_weights: Optional[Mapping[str, float]] = None) -> ComponentRegistry:
    """
    compounds: name -> {Tc, Pc, omega, cp (a, b, c, d), mw | formula, hf, vl}
    Order of the mapping is the composition order.
    """
    reg = ComponentRegistry()
    if atomic_weights:
        reg.atomic_weights.update(atomic_weights)
    for name, data in compounds.items():
        data = dict(data)
        try:
            reg.add(Compound(
                name=name,
                Tc=float(data.pop("Tc")),
                Pc=float(data.pop("Pc")),
                omega=float(data.pop("omega", 0.0)),
                cp_coeffs=tuple(data.pop("cp", (29.1,))),
                mw=float(data.pop("mw", 1.0)),
                hf=float(data.pop("hf", 0.0)),
                vl=data.pop("vl", None),
                formula=data.pop("formula", None),
            ))
        except KeyError as exc:
            raise ConfigurationError(f"compound '{name}' is missing {exc}", compound=name) from exc
        if data:
            raise ConfigurationError(f"compound '{name}': unknown field(s) {sorted(data)}", compound=name)
    return reg


def build_interactions(entries: Iterable[Mapping[str, Any]]) -> BinaryInteractionSet:
    """entries: {model, i, j, kij | aij, aji, bij, bji, alpha}."""
    out = []
    for e in entries:
        e = dict(e)
        try:
            model, i, j = e.pop("model"), e.pop("i"), e.pop("j")
            out.append((model, i, j, InteractionParameter(**e)))
        except (KeyError, TypeError) as exc:
            raise ConfigurationError(f"bad binary interaction entry: {exc}") from exc
    return BinaryInteractionSet(out)


def build_property_package(topology: Mapping[str, Any], model: Optional[str] = None) -> PropertyPackage:
    reg = build_registry(topology["compounds"], topology.get("atomic_weights"))
    interactions = build_interactions(topology.get("interactions", ()))
    return PropertyPackage(reg, model or topology.get("property_model", "ideal"), interactions)


# ------------------------------------------------------------------------------
# FLOWSHEET
# ------------------------------------------------------------------------------

def build_flowsheet(topology: Mapping[str, Any], *, props: Optional[PropertyPackage] = None,
                    property_model: Optional[str] = None) -> Flowsheet:
    """
    Build a Flowsheet from a plain mapping handed in by the job layer:

      compounds    : see build_registry
      interactions : see build_interactions (optional)
      streams      : name -> {phase, feed: {T, P, flows | flow + composition}}
      units        : [{name, type, inlets: {port: stream}, outlets: {port: stream}, params}]
    """
    props = props or build_property_package(topology, property_model)
    fs = Flowsheet(props,
                   default_T=topology.get("default_T", InputParameters.DEFAULT_T_K),
                   default_p=topology.get("default_p", InputParameters.DEFAULT_P_PA))

    for name, sdata in topology.get("streams", {}).items():
        sdata = dict(sdata or {})
        phase = sdata.get("phase", "L")
        feed = sdata.get("feed")
        try:
            if feed is None:
                fs.new_stream(name, phase=phase)
            else:
                fs.new_feed(name, phase=phase, **feed)
        except ConfigurationError as exc:
            exc.context.setdefault("stream", name)
            raise
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"stream '{name}': {exc}", stream=name) from exc

    for udata in topology.get("units", ()):
        udata = dict(udata)
        name = udata.get("name")
        kind = str(udata.get("type", "")).lower()
        if kind not in UNIT_TYPES:
            raise ConfigurationError(f"unit '{name}': unknown type '{udata.get('type')}'; "
                                     f"expected one of {sorted(UNIT_TYPES)}", unit=name)
        try:
            unit = UNIT_TYPES[kind](name, **udata.get("params", {}))
            for ports, connect in ((udata.get("inlets", {}), unit.add_inlet),
                                   (udata.get("outlets", {}), unit.add_outlet)):
                for port, sname in ports.items():
                    if sname not in fs.streams:
                        fs.new_stream(sname)
                    connect(port, fs.streams[sname])
        except ConfigurationError as exc:
            exc.context.setdefault("unit", name)
            raise
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"unit '{name}': bad parameters ({exc})", unit=name) from exc
        fs.add_unit(unit)

    logger.debug("built flowsheet: %d streams, %d units", len(fs.streams), len(fs.units))
    return fs


# ------------------------------------------------------------------------------
# SOLVE
# ------------------------------------------------------------------------------

def solve_flowsheet(fs: Flowsheet, config: Optional[SolverConfig] = None, *, x0=None,
                    progress=None, cancel=None) -> SolveResult:
    """Simultaneous (EO) or sequential (tear-stream) solve, per ``config.mode``."""
    config = config or SolverConfig()
    if config.property_model is not None and config.property_model != fs.props.model:
        raise ConfigurationError(
            f"flowsheet property package uses '{fs.props.model}', config asks for '{config.property_model}'",
            option="property_model",
        )
    if config.mode == "sequential":
        return RecycleSolver(fs, config, progress=progress, cancel=cancel).solve()
    return NewtonSolver(assemble(fs), config, progress=progress, cancel=cancel).solve(x0)


def run_job(payload: Mapping[str, Any], *, progress=None, cancel=None) -> Dict[str, Any]:
    """Mapping in, mapping out: {"topology": ..., "config": ...} -> {"outcome", "streams"}."""
    config = SolverConfig.from_mapping(payload.get("config"))
    fs = build_flowsheet(payload["topology"], property_model=config.property_model)
    result = solve_flowsheet(fs, config, progress=progress, cancel=cancel)
    out = {"outcome": outcome(result), "streams": result.streams}
    if result.recycle is not None:
        out["outcome"]["recycle"] = {
            "tears": list(result.recycle.tears),
            "trend": list(result.recycle.trend),
            "converged": result.recycle.converged,
        }
    return out
