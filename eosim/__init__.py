from .errors import (
    EOSimError,
    ConfigurationError,
    FormulaError,
    FlashError,
    FlashNotConverged,
    SingularMatrixError,
    UnitEvaluationError,
    SingularJacobian,
    NonFiniteResidual,
    MaxIterationsExceeded,
    RecycleNotConverged,
    SolveCancelled,
)
from .inputs import InputParameters, SolverConfig
from .logging_utils import setup_logging
from .compounds import Compound, ComponentRegistry, BinaryInteractionSet, InteractionParameter, parse_formula
from .thermo import PropertyPackage, FlashResult
from .flowsheet_tools import Flowsheet, Stream, UnitOp
from .assembler import Assembly, assemble
from .newton import NewtonSolver, SolveResult, SolveStatus, ProgressEvent
from .recycle import RecycleSolver, RecycleResult, find_tear_streams
from .build_flowsheet import build_flowsheet, build_registry, solve_flowsheet, run_job
from .results import stream_table, mass_balance_errors, outcome

__version__ = "0.1.0"
