# src/fastlnlp/__init__.py
from importlib.metadata import version, PackageNotFoundError
from typing import TYPE_CHECKING
from ._version import __version__

try:
    __version__ = version("FastLNLP")
except PackageNotFoundError:
    pass

from . import utils as utils
from .errors import (
    ConfigurationError,
    InfeasibleParameterError,
    ParameterSkippedWarning,
    UndefinedStatisticWarning,
)
from .types import (
    Series,
    Range,
    ParameterSet,
    NeighborRecord,
    PredictionRecord,
    SkillStats,
    ModelOutput,
    RunResult,
)

__all__ = (
    "__version__", "LNLP", "Visualizer", "utils",
    "Series", "Range", "ParameterSet", "NeighborRecord", "PredictionRecord",
    "SkillStats", "ModelOutput", "RunResult",
    "ConfigurationError", "InfeasibleParameterError",
    "ParameterSkippedWarning", "UndefinedStatisticWarning",
)

if TYPE_CHECKING:
    from .lnlp import LNLP as _LNLP
    from .lnlp_utils import Visualizer as _Visualizer

def __getattr__(name: str):
    if name == "LNLP":
        from .lnlp import LNLP
        return LNLP
    if name == "Visualizer":
        from .lnlp_utils import Visualizer
        return Visualizer
    raise AttributeError(f"module 'fastlnlp' has no attribute {name!r}")
