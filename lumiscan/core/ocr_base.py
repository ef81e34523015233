"""Abstract base class for OCR text recognition."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from ..config import OCR_CHAR_WHITELIST
from ..exceptions import ImageDecodeError, OCRError
from .image_ops import ImageArray, decode_image

logger = logging.getLogger(__name__)


class BaseOCR(ABC):
    """Abstract base class for OCR engines.

    This class defines the interface that all OCR implementations must follow.
    It provides lazy loading, whitelist filtering and proper cleanup.

    Example:
        class MyOCR(BaseOCR):
            name = "mine"

            def load(self) -> None:
                self._model = load_my_model()

            def read_text(self, image: ImageArray) -> str:
                return self._model.read(image)

            def unload(self) -> None:
                self._model = None
    """

    name: str = "base"

    def __init__(self, whitelist: str = OCR_CHAR_WHITELIST):
        """Initialize OCR engine.

        Args:
            whitelist: Characters the engine is allowed to emit
        """
        self.whitelist = whitelist
        self._model: Optional[object] = None

    @property
    def is_loaded(self) -> bool:
        """Check if the model is loaded."""
        return self._model is not None

    @abstractmethod
    def load(self) -> None:
        """Load the OCR model into memory.

        Raises:
            OCRError: If model loading fails
        """

    @abstractmethod
    def read_text(self, image: ImageArray) -> str:
        """Recognize text in an RGB or gray array.

        Raises:
            OCRError: If recognition fails
        """

    @abstractmethod
    def unload(self) -> None:
        """Unload the model and free memory."""

    def filter_text(self, text: str) -> str:
        """Drop characters outside the whitelist (newlines become spaces)."""
        allowed = set(self.whitelist)
        return "".join(c if c in allowed else " " for c in text.replace("\n", " "))

    def recognize(self, image: bytes | ImageArray) -> str:
        """Recognize text with automatic loading.

        Args:
            image: Encoded image bytes or a decoded array

        Returns:
            Recognized text restricted to the whitelist

        Raises:
            OCRError: If loading, decoding or recognition fails
        """
        if not self.is_loaded:
            try:
                self.load()
            except OCRError:
                raise
            except Exception as e:
                raise OCRError(f"Failed to load OCR model: {e}", engine=self.name) from e

        if isinstance(image, (bytes, bytearray)):
            try:
                image = decode_image(bytes(image))
            except ImageDecodeError as e:
                raise OCRError(f"OCR input not decodable: {e}", engine=self.name) from e

        try:
            text = self.read_text(np.ascontiguousarray(image))
        except OCRError:
            raise
        except Exception as e:
            raise OCRError(f"OCR recognition failed: {e}", engine=self.name) from e

        return self.filter_text(text)

    def __enter__(self):
        """Context manager entry."""
        self.load()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.unload()
