"""Factory for creating OCR engine instances."""

import importlib.util
import logging
from typing import Type

from ..config import OCREngineType
from ..exceptions import ConfigurationError
from .ocr_base import BaseOCR

logger = logging.getLogger(__name__)

# Distribution each engine needs at runtime
_BACKING_MODULES: dict[OCREngineType, str] = {
    OCREngineType.TESSERACT: "pytesseract",
    OCREngineType.EASYOCR: "easyocr",
    OCREngineType.PADDLEOCR: "paddleocr",
}

# Lazy-loaded implementation registry
_IMPLEMENTATIONS: dict[OCREngineType, Type[BaseOCR]] | None = None


def _load_implementations() -> dict[OCREngineType, Type[BaseOCR]]:
    """Load and return the engine classes."""
    global _IMPLEMENTATIONS
    if _IMPLEMENTATIONS is not None:
        return _IMPLEMENTATIONS

    from .ocr_easyocr import EasyOCRReader
    from .ocr_paddle import PaddleOCRReader
    from .ocr_tesseract import TesseractOCR

    _IMPLEMENTATIONS = {
        OCREngineType.TESSERACT: TesseractOCR,
        OCREngineType.EASYOCR: EasyOCRReader,
        OCREngineType.PADDLEOCR: PaddleOCRReader,
    }
    return _IMPLEMENTATIONS


def _coerce(engine_type: OCREngineType | str) -> OCREngineType:
    if isinstance(engine_type, OCREngineType):
        return engine_type
    try:
        return OCREngineType(engine_type)
    except ValueError as e:
        available = [m.value for m in OCREngineType]
        raise ConfigurationError(
            f"Unknown OCR engine: '{engine_type}'. "
            f"Available: {', '.join(available)}",
            config_key="ocr_engine"
        ) from e


class OCRFactory:
    """Factory for creating OCR engine instances.

    Engines import their heavy libraries only in load(), so creating one is
    cheap and never fails because of a missing optional dependency.

    Example:
        >>> from lumiscan.core.ocr_factory import OCRFactory
        >>> ocr = OCRFactory.create("tesseract")
        >>> text = ocr.recognize(jpeg_bytes)
    """

    @classmethod
    def create(cls, engine_type: OCREngineType | str, **kwargs) -> BaseOCR:
        """Create an OCR engine instance.

        Args:
            engine_type: Engine type (enum or string)
            **kwargs: Engine-specific arguments

        Returns:
            Configured, not yet loaded, engine

        Raises:
            ConfigurationError: If the engine type is not supported
        """
        engine_type = _coerce(engine_type)
        impl_class = _load_implementations()[engine_type]
        logger.debug(f"Creating OCR engine: {engine_type.value}")
        return impl_class(**kwargs)

    @classmethod
    def list_available(cls) -> list[OCREngineType]:
        """List engines whose backing library is importable."""
        return [t for t in OCREngineType if cls.is_available(t)]

    @classmethod
    def is_available(cls, engine_type: OCREngineType | str) -> bool:
        """Check if an engine's library is installed.

        Args:
            engine_type: Engine type to check

        Returns:
            True if available, False otherwise
        """
        try:
            engine_type = _coerce(engine_type)
        except ConfigurationError:
            return False
        return importlib.util.find_spec(_BACKING_MODULES[engine_type]) is not None


def get_ocr_engine(engine_type: OCREngineType | str, **kwargs) -> BaseOCR:
    """Convenience function to create an OCR engine."""
    return OCRFactory.create(engine_type, **kwargs)
