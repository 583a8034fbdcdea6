from .mixer import Mixer
from .splitter import Splitter
from .component_splitter import ComponentSplitter
from .heater import Heater
from .pump import Pump
from .flash_drum import FlashDrum
from .equilibrium_stage import EquilibriumStage
from .reactor import StoichiometricReactor, StoichReaction
