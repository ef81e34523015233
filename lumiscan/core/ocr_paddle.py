"""PaddleOCR implementation of text recognition."""

import logging

from ..config import OCR_CHAR_WHITELIST
from ..exceptions import OCRError
from .image_ops import ImageArray
from .ocr_base import BaseOCR

logger = logging.getLogger(__name__)


class PaddleOCRReader(BaseOCR):
    """Text recognition using the PaddleOCR detection + recognition pipeline.

    PaddleOCR has no native character whitelist; output is filtered to the
    whitelist after recognition.

    Args:
        lang: PaddleOCR language code
        whitelist: Allowed characters

    Installation:
        Install PaddlePaddle from https://www.paddlepaddle.org.cn/
        Then run: pip install paddleocr
    """

    name = "paddleocr"

    def __init__(self, lang: str = "en", whitelist: str = OCR_CHAR_WHITELIST):
        super().__init__(whitelist)
        self.lang = lang

    def load(self) -> None:
        """Load the PaddleOCR pipeline.

        Raises:
            OCRError: If PaddleOCR is not installed or loading fails
        """
        if self.is_loaded:
            logger.debug("PaddleOCR model already loaded")
            return

        logger.debug(f"Loading PaddleOCR model (lang={self.lang})...")

        try:
            from paddleocr import PaddleOCR
            self._model = PaddleOCR(
                lang=self.lang,
                use_doc_orientation_classify=False,
                use_doc_unwarping=False,
                use_textline_orientation=False,
            )
            logger.debug("PaddleOCR model loaded successfully")
        except ImportError as e:
            raise OCRError(
                "PaddleOCR not installed. "
                "Install PaddlePaddle from https://www.paddlepaddle.org.cn/ "
                "Then run: pip install paddleocr",
                engine=self.name,
            ) from e
        except Exception as e:
            raise OCRError(f"Failed to load PaddleOCR model: {e}", engine=self.name) from e

    def read_text(self, image: ImageArray) -> str:
        if image.ndim == 2:
            import cv2
            image = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
        result = self._model.predict(image)
        if not result:
            return ""
        return self._parse_result(result[0])

    def _parse_result(self, raw_result: object) -> str:
        """Join recognized lines of one PaddleOCR page result."""
        result_dict = dict(raw_result)
        texts = list(result_dict.get("rec_texts", []))
        scores = list(result_dict.get("rec_scores", []))

        for i, text in enumerate(texts):
            confidence = scores[i] if i < len(scores) else 0.0
            logger.debug(f"PaddleOCR line: '{text}' (confidence: {float(confidence):.2f})")

        return " ".join(str(t).upper() for t in texts)

    def unload(self) -> None:
        """Unload the PaddleOCR model and free memory."""
        if self._model is not None:
            logger.debug("Unloading PaddleOCR model...")
            del self._model
            self._model = None

            import gc
            gc.collect()
