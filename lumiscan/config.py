"""Configuration and constants for the LumiScan project."""

from dataclasses import dataclass
from enum import Enum


class OCREngineType(str, Enum):
    """Supported OCR engine types."""
    TESSERACT = "tesseract"
    EASYOCR = "easyocr"
    PADDLEOCR = "paddleocr"


class ResultSource(str, Enum):
    """Where the final model/power of a result came from."""
    HEURISTIC = "heuristic"
    VISUAL_MEMORY = "visual-memory"
    EXTERNAL_ADVISOR = "external-advisor"
    USER_CORRECTED = "user-corrected"


class RejectionKind(str, Enum):
    """Why a photo was refused before OCR."""
    DECODE_FAILURE = "decode_failure"
    SCENE_REJECTED = "scene_rejected"
    POLE_SHAPE = "pole_shape"
    INSUFFICIENT_RESOLUTION = "insufficient_resolution"


class ConfidenceTier(float, Enum):
    """Fixed confidence levels a result can carry."""
    REJECTED = 0.0
    NOTHING = 0.2
    POWER_ONLY = 0.6
    MODEL_ONLY = 0.7
    VISUAL_FUSION = 0.75
    ADVISOR = 0.85
    MODEL_AND_POWER = 0.92
    DUPLICATE = 1.0


# Visual memory thresholds (weighted feature distance)
EXACT_DUPLICATE_THRESHOLD = 0.05
RELATED_THRESHOLD = 0.20

# Fusion kicks in below the floor and never lifts confidence past the cap
FUSION_FLOOR = 0.8
FUSION_CAP = ConfidenceTier.VISUAL_FUSION.value

# Results under this confidence go to manual review
DEFAULT_REVIEW_THRESHOLD = 0.85


@dataclass(frozen=True)
class DetectionConfig:
    """Configuration for segmentation and feature extraction."""
    max_dimension: int = 2000  # Longest side after downscale
    score_dimension: int = 600  # Longest side used by score()
    full_frame_quality: int = 80  # JPEG quality of the fallback frame
    crop_quality: int = 90

    # Segmentation
    scan_step: int = 8
    max_visited_nodes: int = 150_000
    min_blob_area_fraction: float = 0.02
    bottom_margin_fraction: float = 0.01
    blob_padding: int = 20
    max_vertical_aspect: float = 3.0  # h/w above this is a pole, not a fixture

    # Background classification (HSL)
    sky_hue_min: float = 170.0
    sky_hue_max: float = 270.0
    sky_min_saturation: float = 0.15
    sky_min_lightness: float = 0.3
    overexposed_min_lightness: float = 0.95
    overexposed_max_saturation: float = 0.1

    # Features
    edge_step: int = 4
    edge_luminance_delta: float = 20.0
    center_window_fraction: float = 0.4
    center_sample_stride: int = 4

    # OCR enhancement
    small_region_fraction: float = 0.15
    small_region_scale: float = 3.0
    large_region_scale: float = 1.5
    binarize_threshold: int = 160
    min_crop_width: int = 150

    # score() weights
    score_area_weight: float = 0.6
    score_edge_weight: float = 0.4
    score_brightness_bonus: float = 0.05
    score_brightness_band: tuple[float, float] = (60.0, 200.0)


DETECTION_CONFIG = DetectionConfig()


# Visual match weights: aspect, edge density, hue, brightness, saturation
VISUAL_MATCH_WEIGHTS: dict[str, float] = {
    "aspect_ratio": 0.45,
    "edge_density": 0.35,
    "hue": 0.10,
    "brightness": 0.05,
    "saturation": 0.05,
}


# OCR
OCR_CHAR_WHITELIST = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-. /:Ww"
TESSERACT_PSM = 6  # Single uniform block of text
MAX_OCR_WORKERS = 4
MIN_PLAUSIBLE_TEXT_LENGTH = 4


# Advisor (Ollama)
DEFAULT_OLLAMA_HOST = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "llava"
DEFAULT_ADVISOR_TIMEOUT = 20.0
ADVISOR_KNOWN_MODELS_LIMIT = 15
OLLAMA_HOST_KEY = "LUMISCAN_OLLAMA_HOST"
OLLAMA_MODEL_KEY = "LUMISCAN_OLLAMA_MODEL"


# File handling
SUPPORTED_IMAGE_EXTENSIONS: tuple[str, ...] = (
    '.jpg', '.jpeg', '.jpe',
    '.png',
    '.bmp',
    '.tiff', '.tif',
    '.webp',
)


# Logging
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"
