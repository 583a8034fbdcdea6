from .flash import FlashResult, flash_pt, rachford_rice, phase_compositions, TWO_PHASE, VAPOR, LIQUID
from .package import PropertyPackage, PHASES
from .cubic import PengRobinson
from .activity import NRTL
from ._linalg import rcond, solve_checked
