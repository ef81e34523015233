"""LumiScan - street-light fixture identification from field photos."""

__version__ = "1.0.0"

from .config import OCREngineType, ResultSource, ConfidenceTier
from .core import (
    AnalysisConfig,
    AnalysisResult,
    ConsensusEngine,
    JobScheduler,
    ProcessingJob,
    TrainingExample,
    select_best_image,
)
from .exceptions import (
    LumiscanError,
    ConfigurationError,
    ImageDecodeError,
    OCRError,
    AdvisorError,
    ValidationError,
    WorkerError,
)
from .utils.env import setup_logging

__all__ = [
    '__version__',
    'OCREngineType',
    'ResultSource',
    'ConfidenceTier',
    'AnalysisConfig',
    'AnalysisResult',
    'ConsensusEngine',
    'JobScheduler',
    'ProcessingJob',
    'TrainingExample',
    'select_best_image',
    'setup_logging',
    # Exceptions
    'LumiscanError',
    'ConfigurationError',
    'ImageDecodeError',
    'OCRError',
    'AdvisorError',
    'ValidationError',
    'WorkerError',
]
