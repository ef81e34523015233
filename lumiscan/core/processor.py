"""Vision + OCR + knowledge consensus pipeline."""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from typing import Optional, Sequence

from pydantic import BaseModel, Field, model_validator

from ..config import (
    DEFAULT_ADVISOR_TIMEOUT,
    DEFAULT_OLLAMA_HOST,
    DEFAULT_OLLAMA_MODEL,
    DEFAULT_REVIEW_THRESHOLD,
    EXACT_DUPLICATE_THRESHOLD,
    FUSION_CAP,
    FUSION_FLOOR,
    MAX_OCR_WORKERS,
    MIN_PLAUSIBLE_TEXT_LENGTH,
    RELATED_THRESHOLD,
    ConfidenceTier,
    OCREngineType,
    ResultSource,
)
from ..exceptions import OCRError
from .advisor import Advisor, AdvisorResponse, OllamaAdvisor
from .features import FeatureExtractor
from .knowledge import Interpretation, KnowledgeBase, confidence_for, known_model_hints
from .records import AnalysisResult, PreprocessedImage, TrainingExample
from .worker import OCRWorkerPool, default_worker_count

logger = logging.getLogger(__name__)


class AnalysisConfig(BaseModel):
    """Runtime options for the consensus pipeline with validation."""

    model_config = {"validate_assignment": True}

    # OCR settings
    ocr_engine: OCREngineType = OCREngineType.TESSERACT
    ocr_workers: int = Field(default_factory=default_worker_count, ge=1, le=MAX_OCR_WORKERS)
    min_plausible_text_length: int = Field(default=MIN_PLAUSIBLE_TEXT_LENGTH, ge=1)
    # Advisor settings
    advisor_enabled: bool = False
    ollama_host: str = DEFAULT_OLLAMA_HOST
    ollama_model: str = DEFAULT_OLLAMA_MODEL
    advisor_timeout: float = Field(default=DEFAULT_ADVISOR_TIMEOUT, gt=0, le=300)
    advisor_viability_check: bool = False
    # Visual memory
    exact_duplicate_threshold: float = Field(default=EXACT_DUPLICATE_THRESHOLD, gt=0, le=1)
    related_threshold: float = Field(default=RELATED_THRESHOLD, gt=0, le=1)
    fusion_floor: float = Field(default=FUSION_FLOOR, ge=0, le=1)
    fusion_cap: float = Field(default=FUSION_CAP, ge=0, le=1)
    # Batch
    review_threshold: float = Field(default=DEFAULT_REVIEW_THRESHOLD, ge=0, le=1)
    max_concurrent_jobs: int = Field(default=2, ge=1, le=8)

    @model_validator(mode="after")
    def check_thresholds(self) -> "AnalysisConfig":
        if self.exact_duplicate_threshold > self.related_threshold:
            raise ValueError(
                f"exact_duplicate_threshold ({self.exact_duplicate_threshold}) must not exceed "
                f"related_threshold ({self.related_threshold})"
            )
        return self


class ConsensusEngine:
    """Facade that turns one photo plus confirmed examples into a result.

    Steps run in a fixed order: preprocess (fail fast), visual-memory
    duplicate lookup, OCR + text interpretation, optional advisor, merge,
    visual fusion. analyze() never raises; every internal failure becomes a
    degraded result whose reasoning trail says what went wrong.

    Example:
        >>> with ConsensusEngine(config=AnalysisConfig(ocr_workers=2)) as engine:
        ...     result = engine.analyze(photo_bytes, examples)
        ...     print(result.model, result.power, result.reasoning)
    """

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        extractor: Optional[FeatureExtractor] = None,
        ocr_pool: Optional[OCRWorkerPool] = None,
        knowledge: Optional[KnowledgeBase] = None,
        advisor: Optional[Advisor] = None,
    ):
        self.config = config or AnalysisConfig()
        self.extractor = extractor or FeatureExtractor()
        self.knowledge = knowledge or KnowledgeBase()

        self._owns_pool = ocr_pool is None
        self.ocr_pool = ocr_pool or OCRWorkerPool(
            num_workers=self.config.ocr_workers,
            engine=self.config.ocr_engine,
        )

        if advisor is None and self.config.advisor_enabled:
            advisor = OllamaAdvisor(
                host=self.config.ollama_host,
                model=self.config.ollama_model,
                timeout=self.config.advisor_timeout,
            )
        self.advisor = advisor
        self._advisor_executor: Optional[ThreadPoolExecutor] = None
        if advisor is not None:
            self._advisor_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="Advisor")

    def analyze(self, image: bytes, examples: Sequence[TrainingExample] = ()) -> AnalysisResult:
        """Identify model and power of the fixture in one photo.

        Args:
            image: Raw image bytes
            examples: Confirmed examples, read only

        Returns:
            A valid result, possibly degraded
        """
        try:
            return self._analyze(image, examples)
        except Exception as e:
            logger.exception("Unexpected failure in analysis pipeline")
            return AnalysisResult.rejected(f"Internal error: {e}", tag="internal-error")

    def _analyze(self, image: bytes, examples: Sequence[TrainingExample]) -> AnalysisResult:
        cfg = self.config

        # 1. Vision
        prep = self.extractor.preprocess(image)
        if not prep.is_valid:
            tag = prep.rejection.value if prep.rejection else "rejected"
            logger.info(f"Photo rejected before OCR: {prep.reason}")
            return AnalysisResult.rejected(prep.reason, prep.features, tag=tag)

        # 2. Visual memory (exact duplicate acts as a cache)
        match, distance = self.knowledge.find_visual_match(prep.features, examples)
        if match is not None and distance < cfg.exact_duplicate_threshold:
            logger.info(f"Exact visual duplicate of {match.model} (distance {distance:.3f})")
            result = AnalysisResult(
                model=match.model,
                power=match.power,
                confidence=ConfidenceTier.DUPLICATE.value,
                raw_text="Exact duplicate",
                features=prep.features,
                source=ResultSource.VISUAL_MEMORY,
            )
            result.trail.add("memory:duplicate", "Recognized in visual memory (exact duplicate)")
            return result

        if cfg.advisor_viability_check:
            verdict = self._check_viability(prep)
            if verdict is not None:
                return verdict

        # 3. OCR + interpretation
        try:
            text, used_fallback = self._read_text(prep)
            interpretation = self.knowledge.interpret(text, examples)
            result = interpretation.to_result(prep.features)
            if used_fallback:
                result.trail.add("ocr:fallback", "Crops unreadable, used full frame")
        except OCRError as e:
            logger.warning(f"OCR unavailable, continuing without text: {e}")
            result = Interpretation().to_result(prep.features)
            result.trail.add("ocr:failed", f"OCR unavailable ({e.message})")

        # 4-5. Advisor
        response = self._consult_advisor(prep, result.raw_text or "", examples)
        if response is not None:
            self._merge_advisor(result, response, examples)

        # 6. Visual fusion as last resort
        self._check_ambiguity(result, match, distance)
        if result.confidence < cfg.fusion_floor:
            self._apply_visual_fusion(result, match, distance)

        logger.info(f"Result: model={result.model} power={result.power} "
                    f"confidence={result.confidence:.2f} source={result.source.value}")
        return result

    def _read_text(self, prep: PreprocessedImage) -> tuple[str, bool]:
        """OCR the normal and inverted crops, falling back to the full frame.

        Raises:
            OCRError: When no rendering could be read at all
        """
        futures = [self.ocr_pool.submit(prep.normal), self.ocr_pool.submit(prep.inverted)]
        texts: list[str] = []
        first_error: Optional[OCRError] = None
        for future in futures:
            try:
                texts.append(future.result())
            except OCRError as e:
                logger.debug(f"One OCR rendering failed: {e}")
                first_error = first_error or e

        if not texts and first_error is not None:
            raise first_error

        combined = " ".join(t.strip() for t in texts if t.strip())
        if self._is_plausible(combined):
            return combined, False

        logger.debug("Crop text implausible, trying full frame")
        try:
            full = self.ocr_pool.recognize(prep.full_frame)
        except OCRError as e:
            logger.debug(f"Full-frame OCR failed: {e}")
            return combined, False
        return f"{combined} {full}".strip(), True

    def _is_plausible(self, text: str) -> bool:
        compact = "".join(text.split())
        return len(compact) >= self.config.min_plausible_text_length and any(c.isdigit() for c in compact)

    def _check_viability(self, prep: PreprocessedImage) -> Optional[AnalysisResult]:
        """Let the advisor veto non-close-up photos. None means continue."""
        check = getattr(self.advisor, "check_viability", None)
        if check is None or self._advisor_executor is None:
            return None
        try:
            verdict = self._advisor_executor.submit(check, prep.full_frame).result(
                timeout=self.config.advisor_timeout
            )
        except FuturesTimeout:
            logger.warning("Advisor viability check timed out")
            return None
        except Exception as e:
            logger.warning(f"Advisor viability check failed: {e}")
            return None
        if verdict.valid:
            return None
        return AnalysisResult.rejected(f"Advisor: {verdict.reason}", prep.features, tag="advisor:not-viable")

    def _consult_advisor(
        self,
        prep: PreprocessedImage,
        hint: str,
        examples: Sequence[TrainingExample],
    ) -> Optional[AdvisorResponse]:
        """Ask the advisor under a hard deadline; any failure means no answer."""
        if self.advisor is None or self._advisor_executor is None:
            return None

        advisor = self.advisor
        known = known_model_hints(examples)

        def call() -> Optional[AdvisorResponse]:
            if not advisor.is_available():
                logger.debug(f"Advisor {advisor.name} not available")
                return None
            return advisor.analyze(prep.full_frame, hint, known)

        future = self._advisor_executor.submit(call)
        try:
            return future.result(timeout=self.config.advisor_timeout)
        except FuturesTimeout:
            logger.warning(f"Advisor {advisor.name} timed out after {self.config.advisor_timeout}s")
            future.cancel()
            return None
        except Exception as e:
            logger.warning(f"Advisor {advisor.name} failed: {e}")
            return None

    def _merge_advisor(
        self,
        result: AnalysisResult,
        response: AdvisorResponse,
        examples: Sequence[TrainingExample] = (),
    ) -> None:
        """Fixed precedence: advisor fills gaps and wins model disagreements.

        On a model override the power follows the advisor. A heuristic power
        survives only if it is valid for the advisor's model.
        """
        name = self.advisor.name if self.advisor is not None else "advisor"

        if response.model and not result.model:
            result.model = response.model
            if response.power and not result.power:
                result.power = response.power
            result.confidence = max(result.confidence, ConfidenceTier.ADVISOR.value)
            result.source = ResultSource.EXTERNAL_ADVISOR
            result.trail.add("advisor:model", f"Model via {name}: {response.reasoning}")
        elif response.model and result.model and response.model != result.model:
            previous = result.model
            result.model = response.model
            if response.power:
                result.power = response.power
            elif result.power is not None and result.power not in self.knowledge.valid_set(
                response.model, examples
            ):
                result.trail.add(
                    "advisor:power-dropped",
                    f"{result.power}W is not a known power of {response.model}",
                )
                result.power = None
            result.confidence = min(
                confidence_for(result.model, result.power),
                ConfidenceTier.ADVISOR.value,
            )
            result.source = ResultSource.EXTERNAL_ADVISOR
            result.trail.add(
                "advisor:override",
                f"{name} replaced heuristic model {previous}: {response.reasoning}",
            )
        elif response.power and not result.power:
            result.power = response.power
            floor = ConfidenceTier.ADVISOR if result.model else ConfidenceTier.POWER_ONLY
            result.confidence = max(result.confidence, floor.value)
            result.trail.add("advisor:power", f"Power via {name}: {response.reasoning}")
        elif response.model and response.model == result.model:
            result.trail.add("advisor:agree", f"{name} agrees on {result.model}")

    def _check_ambiguity(
        self,
        result: AnalysisResult,
        match: Optional[TrainingExample],
        distance: float,
    ) -> None:
        """Text and visual memory disagree: lower confidence for review."""
        if match is None or distance >= self.config.related_threshold or not result.model:
            return
        if match.model == result.model:
            return
        if result.confidence > ConfidenceTier.MODEL_ONLY.value:
            result.confidence = ConfidenceTier.MODEL_ONLY.value
        result.trail.add(
            "ambiguous",
            f"Looks like {match.model} ({(1 - distance) * 100:.0f}% similar) but text says {result.model}",
        )

    def _apply_visual_fusion(
        self,
        result: AnalysisResult,
        match: Optional[TrainingExample],
        distance: float,
    ) -> None:
        """Fill missing fields from a related (not duplicate) example."""
        if match is None or distance >= self.config.related_threshold:
            return

        similarity = (1 - distance) * 100
        if not result.model:
            result.model = match.model
            result.confidence = max(result.confidence, min(ConfidenceTier.VISUAL_FUSION.value, self.config.fusion_cap))
            if result.source == ResultSource.HEURISTIC:
                result.source = ResultSource.VISUAL_MEMORY
            result.trail.add("memory:model", f"Model suggested by visual similarity ({similarity:.0f}%)")
        if not result.power:
            result.power = match.power
            result.trail.add("memory:power", "Power estimated from visual memory")

    def close(self) -> None:
        """Release the advisor threads and, if owned, the OCR pool."""
        if self._advisor_executor is not None:
            self._advisor_executor.shutdown(wait=False, cancel_futures=True)
            self._advisor_executor = None
        if self._owns_pool:
            self.ocr_pool.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
