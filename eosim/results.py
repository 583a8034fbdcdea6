from __future__ import annotations

from typing import Any, Dict

import numpy as np

from .assembler import Assembly
from .flowsheet_tools import EPS


def stream_state(assembly: Assembly, x: np.ndarray, name: str) -> Dict[str, Any]:
    view = assembly.stream_views[name]
    names = assembly.props.names
    flows = np.array(view.flows(x), dtype=float)
    F = float(flows.sum())
    z = flows / F if abs(F) > EPS else np.zeros_like(flows)
    return {
        "T": view.T(x),
        "P": view.P(x),
        "flow": F,
        "phase": view.phase,
        "vapor_fraction": 1.0 if view.phase == "V" else 0.0,
        "component_flows": dict(zip(names, flows.tolist())),
        "mole_fractions": dict(zip(names, z.tolist())),
    }


def stream_table(assembly: Assembly, x: np.ndarray) -> Dict[str, Dict[str, Any]]:
    """Per-stream state keyed by stream name."""
    return {name: stream_state(assembly, x, name) for name in assembly.stream_views}


def unit_balance(assembly: Assembly, x: np.ndarray, unit_name: str) -> np.ndarray:
    """inlets + generation - outlets, per component."""
    unit = assembly.fs.units[unit_name]
    uv = assembly.unit_views[unit_name]
    f_in = sum((v.flows(x) for v in uv.inlets.values()), np.zeros(assembly.n))
    f_out = sum((v.flows(x) for v in uv.outlets.values()), np.zeros(assembly.n))
    return f_in + unit.generation(x, uv) - f_out


def mass_balance_errors(assembly: Assembly, x: np.ndarray) -> Dict[str, float]:
    return {name: float(np.max(np.abs(unit_balance(assembly, x, name))))
            for name in assembly.fs.units}


def outcome(result) -> Dict[str, Any]:
    """Plain-mapping summary of a SolveResult for the job layer."""
    out = {
        "status": result.status.value,
        "iterations": result.iterations,
        "residual_norm": result.residual_norm,
        "elapsed": result.elapsed,
        "worst_unit": result.worst_unit,
        "worst_equation": result.worst_equation,
    }
    if result.error is not None:
        out["error"] = {"type": type(result.error).__name__, "message": str(result.error),
                        "context": dict(getattr(result.error, "context", {}))}
    return out
