"""Core processing functionality."""

from .records import (
    VisualFeatures,
    DetectionBounds,
    PreprocessedImage,
    TrainingExample,
    ReasoningFragment,
    ReasoningTrail,
    AnalysisResult,
    ProcessingJob,
)
from .features import FeatureExtractor
from .ocr_base import BaseOCR
from .ocr_factory import OCRFactory, get_ocr_engine
from .ocr_tesseract import TesseractOCR
from .worker import OCRWorkerPool
from .knowledge import KnowledgeBase, Interpretation, MODEL_VALID_POWERS
from .advisor import Advisor, AdvisorResponse, OllamaAdvisor
from .processor import AnalysisConfig, ConsensusEngine
from .batch import select_best_image
from .events import ProcessingEvent, SimpleEventPublisher
from .scheduler import JobScheduler, JobOutcome, JobStatus

__all__ = [
    # Records
    'VisualFeatures',
    'DetectionBounds',
    'PreprocessedImage',
    'TrainingExample',
    'ReasoningFragment',
    'ReasoningTrail',
    'AnalysisResult',
    'ProcessingJob',
    # Vision
    'FeatureExtractor',
    # OCR
    'BaseOCR',
    'OCRFactory',
    'get_ocr_engine',
    'TesseractOCR',
    'OCRWorkerPool',
    # Knowledge
    'KnowledgeBase',
    'Interpretation',
    'MODEL_VALID_POWERS',
    # Advisor
    'Advisor',
    'AdvisorResponse',
    'OllamaAdvisor',
    # Processing
    'AnalysisConfig',
    'ConsensusEngine',
    'select_best_image',
    'ProcessingEvent',
    'SimpleEventPublisher',
    'JobScheduler',
    'JobOutcome',
    'JobStatus',
]
