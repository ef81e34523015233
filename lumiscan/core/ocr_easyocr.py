"""EasyOCR implementation of text recognition."""

import logging

from ..config import OCR_CHAR_WHITELIST
from ..exceptions import OCRError
from .image_ops import ImageArray
from .ocr_base import BaseOCR

logger = logging.getLogger(__name__)


class EasyOCRReader(BaseOCR):
    """Text recognition using EasyOCR.

    EasyOCR has no Tesseract binary dependency and handles embossed or
    curved nameplates reasonably well, at the cost of a torch install and
    slower CPU inference.

    Args:
        lang_list: List of language codes to recognize (default: ['en'])
        gpu: Whether to use GPU acceleration
        whitelist: Allowed characters

    Installation:
        pip install easyocr
    """

    name = "easyocr"

    def __init__(
        self,
        lang_list: list[str] | None = None,
        gpu: bool = False,
        whitelist: str = OCR_CHAR_WHITELIST,
    ):
        super().__init__(whitelist)
        self.lang_list = lang_list or ['en']
        self.gpu = gpu

    def load(self) -> None:
        """Load the EasyOCR model.

        Raises:
            OCRError: If EasyOCR is not installed or loading fails
        """
        if self.is_loaded:
            logger.debug("EasyOCR model already loaded")
            return

        logger.debug(f"Loading EasyOCR model (languages={self.lang_list}, gpu={self.gpu})...")

        try:
            import easyocr
            self._model = easyocr.Reader(self.lang_list, gpu=self.gpu, verbose=False)
            logger.debug("EasyOCR model loaded successfully")
        except ImportError as e:
            raise OCRError(
                "EasyOCR not installed. Install with: pip install easyocr",
                engine=self.name,
            ) from e
        except Exception as e:
            raise OCRError(f"Failed to load EasyOCR model: {e}", engine=self.name) from e

    def read_text(self, image: ImageArray) -> str:
        # detail=0 returns plain strings, paragraph=True keeps one text block
        results = self._model.readtext(
            image,
            detail=0,
            paragraph=True,
            allowlist=self.whitelist,
        )
        text = " ".join(str(r) for r in results)
        logger.debug(f"EasyOCR read: '{text}'")
        return text

    def unload(self) -> None:
        """Unload the EasyOCR model and free memory."""
        if self._model is not None:
            logger.debug("Unloading EasyOCR model...")
            del self._model
            self._model = None

            import gc
            gc.collect()
