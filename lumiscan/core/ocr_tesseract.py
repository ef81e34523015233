"""Tesseract implementation of text recognition."""

import logging

from ..config import OCR_CHAR_WHITELIST, TESSERACT_PSM
from ..exceptions import OCRError
from .image_ops import ImageArray
from .ocr_base import BaseOCR

logger = logging.getLogger(__name__)


class TesseractOCR(BaseOCR):
    """Text recognition using Tesseract via pytesseract.

    This is the default engine. Each instance carries its own config
    string; Tesseract itself runs as a subprocess per call so instances
    are cheap and can be used from several threads at once.

    Args:
        lang: Tesseract language code
        psm: Page segmentation mode (6 = single uniform block, which suits nameplates)
        whitelist: Allowed characters

    Installation:
        pip install pytesseract  (plus the tesseract binary)
    """

    name = "tesseract"

    def __init__(
        self,
        lang: str = "eng",
        psm: int = TESSERACT_PSM,
        whitelist: str = OCR_CHAR_WHITELIST,
    ):
        super().__init__(whitelist)
        self.lang = lang
        self.psm = psm

    @property
    def tesseract_config(self) -> str:
        # Spaces inside the whitelist are not representable on the command line
        chars = self.whitelist.replace(" ", "")
        return f"--oem 3 --psm {self.psm} -c tessedit_char_whitelist={chars} -c preserve_interword_spaces=1"

    def load(self) -> None:
        """Check that pytesseract and the tesseract binary are available.

        Raises:
            OCRError: If either is missing
        """
        if self.is_loaded:
            return

        try:
            import pytesseract
        except ImportError as e:
            raise OCRError(
                "pytesseract not installed. Install with: pip install pytesseract",
                engine=self.name,
            ) from e

        try:
            version = pytesseract.get_tesseract_version()
        except Exception as e:
            raise OCRError(f"Tesseract binary not available: {e}", engine=self.name) from e

        logger.debug(f"Tesseract {version} ready (psm={self.psm}, lang={self.lang})")
        self._model = pytesseract

    def read_text(self, image: ImageArray) -> str:
        return self._model.image_to_string(image, lang=self.lang, config=self.tesseract_config)

    def unload(self) -> None:
        self._model = None
