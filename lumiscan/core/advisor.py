"""External vision advisor boundary (Ollama)."""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

import requests

from ..config import DEFAULT_ADVISOR_TIMEOUT, DEFAULT_OLLAMA_HOST, DEFAULT_OLLAMA_MODEL
from ..exceptions import AdvisorError

logger = logging.getLogger(__name__)

# Values a model sometimes copies verbatim from the prompt template
PLACEHOLDER_MODELS = frozenset({"", "NAME", "NULL", "NONE", "UNKNOWN"})

ANALYSIS_PROMPT = """
ROLE: Expert street-lighting inspector.

INPUT DATA:
1. RAW OCR TEXT DETECTED: "{ocr_text}" (may contain typos like '06' instead of '60', 'S0N' instead of 'SON').
2. VISUAL IMAGE: provided.
3. KNOWN MODELS DATABASE: [{known_models}]

TASK:
Identify the luminaire model and its rated power (Watts).

RULES:
1. CROSS-CHECK: compare the OCR text with what you see. If OCR says "150" but the label clearly says "100", trust the image.
2. CORRECTION: if OCR has noise (e.g. "V0LTANA"), fix it ("VOLTANA") using the known models database.
3. POWER RULES:
   - "06" usually means a 60W code.
   - "08" or "09" mean 80W or 90W.
4. REJECTION: if the image is not a luminaire, set model to null.

OUTPUT JSON ONLY:
{{"model": "NAME (UPPERCASE)", "power": NUMBER, "reasoning": "how OCR text and visuals were combined"}}
"""

VIABILITY_PROMPT = """
TASK: Classify this image for technical analysis.

Is this image a CLOSE-UP of a street light fixture (luminaire head) or its label?

Answer NO if it shows a whole pole from a distance, a general street view,
a tiny or far away object, or is completely dark or blurry.
Answer YES only if the luminaire head fills a significant part of the frame
or a label/sticker is visible.

RESPONSE FORMAT JSON ONLY:
{"valid": boolean, "reason": "short explanation"}
"""


@dataclass(frozen=True, slots=True)
class AdvisorResponse:
    """What the advisor answered."""
    model: Optional[str]
    power: Optional[int]
    reasoning: str


@dataclass(frozen=True, slots=True)
class ViabilityVerdict:
    valid: bool
    reason: str


@runtime_checkable
class Advisor(Protocol):
    """Port for optional external vision advisors.

    Implementations must treat every failure as "no answer"; callers still
    guard against exceptions.
    """

    @property
    def name(self) -> str:
        """Advisor identifier used in reasoning trails."""
        ...

    def is_available(self) -> bool:
        """Cheap reachability check."""
        ...

    def analyze(
        self,
        image: bytes,
        ocr_text_hint: str,
        known_models: Sequence[str],
    ) -> Optional[AdvisorResponse]:
        """Ask for model and power; None when no usable answer."""
        ...


class OllamaAdvisor:
    """Vision advisor backed by a local Ollama server.

    Args:
        host: Base URL of the Ollama server
        model: Vision-capable model tag (e.g. 'llava')
        timeout: Hard deadline in seconds for each generate call
        session: Optional requests session (connection reuse, testing)
    """

    def __init__(
        self,
        host: str = DEFAULT_OLLAMA_HOST,
        model: str = DEFAULT_OLLAMA_MODEL,
        timeout: float = DEFAULT_ADVISOR_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.host = host.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def name(self) -> str:
        return f"ollama:{self.model}"

    def is_available(self) -> bool:
        try:
            response = self._session.get(f"{self.host}/api/tags", timeout=min(self.timeout, 5.0))
            return response.ok
        except requests.RequestException as e:
            logger.debug(f"Ollama not reachable at {self.host}: {e}")
            return False

    def analyze(
        self,
        image: bytes,
        ocr_text_hint: str,
        known_models: Sequence[str],
    ) -> Optional[AdvisorResponse]:
        prompt = ANALYSIS_PROMPT.format(
            ocr_text=ocr_text_hint.replace('"', "'"),
            known_models=", ".join(known_models),
        )
        try:
            parsed = self._generate(prompt, image, num_predict=300)
        except AdvisorError as e:
            logger.warning(f"Advisor analysis failed: {e}")
            return None
        return self.parse_analysis(parsed)

    def check_viability(self, image: bytes) -> ViabilityVerdict:
        """Quick close-up check; errors let the photo through."""
        try:
            parsed = self._generate(VIABILITY_PROMPT, image, num_predict=100)
        except AdvisorError as e:
            logger.warning(f"Advisor viability check skipped: {e}")
            return ViabilityVerdict(True, "Check skipped due to error")
        return ViabilityVerdict(parsed.get("valid") is True, str(parsed.get("reason") or "Advisor decision"))

    @staticmethod
    def parse_analysis(parsed: dict[str, Any]) -> AdvisorResponse:
        """Normalise the advisor's JSON answer."""
        raw_model = parsed.get("model")
        model = str(raw_model).strip().upper() if raw_model is not None else ""
        power = parsed.get("power")
        if isinstance(power, bool) or not isinstance(power, (int, float)) or power <= 0:
            power = None
        return AdvisorResponse(
            model=None if model in PLACEHOLDER_MODELS else model,
            power=int(round(power)) if power is not None else None,
            reasoning=str(parsed.get("reasoning") or "Advisor analysis"),
        )

    def _generate(self, prompt: str, image: bytes, num_predict: int) -> dict[str, Any]:
        """POST /api/generate and decode the JSON payload.

        Raises:
            AdvisorError: On network errors, timeouts, HTTP errors or bad JSON
        """
        payload = {
            "model": self.model,
            "prompt": prompt,
            "images": [base64.b64encode(image).decode("ascii")],
            "stream": False,
            "format": "json",
            "options": {"temperature": 0.1, "num_predict": num_predict},
        }
        try:
            response = self._session.post(f"{self.host}/api/generate", json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
            parsed = json.loads(body.get("response") or "{}")
        except requests.Timeout as e:
            raise AdvisorError(f"Timed out after {self.timeout}s", host=self.host) from e
        except requests.RequestException as e:
            raise AdvisorError(f"Request failed: {e}", host=self.host) from e
        except ValueError as e:
            raise AdvisorError(f"Malformed advisor response: {e}", host=self.host) from e

        if not isinstance(parsed, dict):
            raise AdvisorError("Advisor response is not a JSON object", host=self.host)
        return parsed
