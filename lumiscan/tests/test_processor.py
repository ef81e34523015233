"""Tests for the consensus pipeline."""

import threading
import time
from concurrent.futures import Future
from dataclasses import replace
from typing import Optional
from unittest.mock import Mock

import pytest
from pydantic import ValidationError as PydanticValidationError

from ..config import DEFAULT_REVIEW_THRESHOLD, ConfidenceTier, OCREngineType, ResultSource
from ..core.advisor import AdvisorResponse
from ..core.features import FeatureExtractor
from ..core.processor import AnalysisConfig, ConsensusEngine
from ..core.records import TrainingExample
from ..exceptions import OCRError


class FakePool:
    """Stands in for OCRWorkerPool; returns a fixed text or raises."""

    def __init__(self, text: str = "", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.calls = 0
        self.closed = False

    def recognize(self, image: bytes) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.text

    def submit(self, image: bytes) -> Future:
        future: Future = Future()
        try:
            future.set_result(self.recognize(image))
        except Exception as e:
            future.set_exception(e)
        return future

    def close(self) -> None:
        self.closed = True


class FakeAdvisor:
    """Advisor answering with a canned response."""

    name = "fake-advisor"

    def __init__(self, response: Optional[AdvisorResponse] = None, delay: float = 0.0, available: bool = True):
        self.response = response
        self.delay = delay
        self.available = available
        self.hints: list[str] = []

    def is_available(self) -> bool:
        return self.available

    def analyze(self, image, ocr_text_hint, known_models):
        self.hints.append(ocr_text_hint)
        if self.delay:
            time.sleep(self.delay)
        return self.response


def make_engine(pool: FakePool, advisor=None, **config) -> ConsensusEngine:
    return ConsensusEngine(config=AnalysisConfig(**config), ocr_pool=pool, advisor=advisor)


@pytest.fixture
def fixture_features(fixture_photo: bytes):
    return FeatureExtractor().preprocess(fixture_photo).features


class TestAnalysisConfig:
    """Runtime options."""

    def test_defaults(self) -> None:
        config = AnalysisConfig()
        assert config.ocr_engine == OCREngineType.TESSERACT
        assert 1 <= config.ocr_workers <= 4
        assert config.advisor_enabled is False
        assert config.review_threshold == 0.85
        assert config.max_concurrent_jobs == 2

    def test_validation_ocr_workers_range(self) -> None:
        with pytest.raises(PydanticValidationError):
            AnalysisConfig(ocr_workers=0)
        with pytest.raises(PydanticValidationError):
            AnalysisConfig(ocr_workers=10)

    def test_duplicate_threshold_below_related(self) -> None:
        with pytest.raises(PydanticValidationError):
            AnalysisConfig(exact_duplicate_threshold=0.3, related_threshold=0.2)

    def test_engine_from_string(self) -> None:
        assert AnalysisConfig(ocr_engine="easyocr").ocr_engine == OCREngineType.EASYOCR


def test_invalid_photo_fails_fast(street_photo: bytes) -> None:
    """Rejected photos never reach OCR."""
    pool = FakePool("VOLTANA 60W")
    result = make_engine(pool).analyze(street_photo)

    assert result.confidence == 0.0
    assert result.model is None and result.power is None
    assert result.reasoning.startswith("Skipped:")
    assert pool.calls == 0


def test_garbage_bytes_do_not_raise() -> None:
    result = make_engine(FakePool()).analyze(b"\x00garbage")
    assert result.confidence == 0.0
    assert result.raw_text == ""


def test_text_identifies_model_and_power(fixture_photo: bytes) -> None:
    pool = FakePool("VOLTANA 60W 220V")
    result = make_engine(pool).analyze(fixture_photo)

    assert result.model == "VOLTANA"
    assert result.power == 60
    assert result.confidence == ConfidenceTier.MODEL_AND_POWER.value
    assert result.source == ResultSource.HEURISTIC
    assert pool.calls == 2  # normal + inverted, no full-frame fallback


def test_implausible_crop_text_uses_full_frame(fixture_photo: bytes) -> None:
    pool = FakePool("LED")
    result = make_engine(pool).analyze(fixture_photo)
    assert pool.calls == 3
    assert "ocr:fallback" in result.trail.tags()


def test_exact_duplicate_short_circuits(fixture_photo: bytes, fixture_features) -> None:
    pool = FakePool("VOLTANA 60W")
    advisor = FakeAdvisor(AdvisorResponse("PALLAS", 75, "label"))
    examples = [TrainingExample("ORION", 100, features=fixture_features)]

    result = make_engine(pool, advisor).analyze(fixture_photo, examples)

    assert (result.model, result.power) == ("ORION", 100)
    assert result.confidence == 1.0
    assert result.raw_text == "Exact duplicate"
    assert result.source == ResultSource.VISUAL_MEMORY
    assert pool.calls == 0
    assert advisor.hints == []


def test_ocr_failure_falls_back_to_visual_memory(fixture_photo: bytes, fixture_features) -> None:
    related = replace(fixture_features, aspect_ratio=fixture_features.aspect_ratio * 1.2)
    examples = [TrainingExample("ORION", 100, features=related)]
    pool = FakePool(error=OCRError("no tesseract", engine="tesseract"))

    result = make_engine(pool).analyze(fixture_photo, examples)

    assert result.model == "ORION"
    assert result.power == 100
    assert result.confidence == pytest.approx(0.75)
    assert result.source == ResultSource.VISUAL_MEMORY
    assert result.trail.tags()[:1] == ["ocr:failed"]
    assert {"memory:model", "memory:power"} <= set(result.trail.tags())


def test_fusion_fills_only_missing_power(fixture_photo: bytes, fixture_features) -> None:
    related = replace(fixture_features, aspect_ratio=fixture_features.aspect_ratio * 1.2)
    examples = [TrainingExample("VOLTANA", 80, features=related)]

    result = make_engine(FakePool("VOLTANA 2019 IP66")).analyze(fixture_photo, examples)

    assert result.model == "VOLTANA"
    assert result.power == 80
    assert result.confidence == ConfidenceTier.MODEL_ONLY.value
    assert "memory:model" not in result.trail.tags()


def test_ambiguity_lowers_confidence(fixture_photo: bytes, fixture_features) -> None:
    related = replace(fixture_features, aspect_ratio=fixture_features.aspect_ratio * 1.2)
    examples = [TrainingExample("PALLAS", 75, features=related)]

    result = make_engine(FakePool("VOLTANA 60W")).analyze(fixture_photo, examples)

    assert result.model == "VOLTANA"
    assert result.confidence == ConfidenceTier.MODEL_ONLY.value
    assert "ambiguous" in result.trail.tags()


class TestAdvisorMerge:
    """Fixed precedence between text and advisor answers."""

    def test_advisor_fills_missing_model(self, fixture_photo: bytes) -> None:
        advisor = FakeAdvisor(AdvisorResponse("ORION", 100, "clear label"))
        result = make_engine(FakePool("IP66 CE"), advisor).analyze(fixture_photo)

        assert (result.model, result.power) == ("ORION", 100)
        assert result.confidence == ConfidenceTier.ADVISOR.value
        assert result.source == ResultSource.EXTERNAL_ADVISOR
        assert "advisor:model" in result.trail.tags()

    def test_advisor_wins_disagreement(self, fixture_photo: bytes) -> None:
        advisor = FakeAdvisor(AdvisorResponse("PALLAS", 75, "logo"))
        result = make_engine(FakePool("VOLTANA 60W"), advisor).analyze(fixture_photo)

        assert (result.model, result.power) == ("PALLAS", 75)
        assert result.confidence == ConfidenceTier.ADVISOR.value
        assert result.source == ResultSource.EXTERNAL_ADVISOR
        assert "advisor:override" in result.trail.tags()

    def test_override_drops_power_invalid_for_new_model(self, fixture_photo: bytes) -> None:
        """56 W fits VOLTANA but no PALLAS variant, so it must not survive."""
        advisor = FakeAdvisor(AdvisorResponse("PALLAS", None, "logo"))
        result = make_engine(FakePool("VOLTANA 56W"), advisor).analyze(fixture_photo)

        assert result.model == "PALLAS"
        assert result.power is None
        assert result.confidence == ConfidenceTier.MODEL_ONLY.value
        assert result.needs_review(DEFAULT_REVIEW_THRESHOLD)
        assert "advisor:power-dropped" in result.trail.tags()

    def test_override_keeps_power_valid_for_new_model(self, fixture_photo: bytes) -> None:
        advisor = FakeAdvisor(AdvisorResponse("PALLAS", None, "logo"))
        result = make_engine(FakePool("VOLTANA 60W"), advisor).analyze(fixture_photo)

        assert (result.model, result.power) == ("PALLAS", 60)
        assert result.confidence == ConfidenceTier.ADVISOR.value

    def test_advisor_fills_missing_power(self, fixture_photo: bytes) -> None:
        advisor = FakeAdvisor(AdvisorResponse(None, 80, "sticker"))
        result = make_engine(FakePool("VOLTANA 2019"), advisor).analyze(fixture_photo)

        assert (result.model, result.power) == ("VOLTANA", 80)
        assert result.confidence == ConfidenceTier.ADVISOR.value
        assert result.source == ResultSource.HEURISTIC

    def test_agreement_keeps_result(self, fixture_photo: bytes) -> None:
        advisor = FakeAdvisor(AdvisorResponse("VOLTANA", 60, "same"))
        result = make_engine(FakePool("VOLTANA 60W"), advisor).analyze(fixture_photo)

        assert result.confidence == ConfidenceTier.MODEL_AND_POWER.value
        assert result.source == ResultSource.HEURISTIC
        assert "advisor:agree" in result.trail.tags()

    def test_advisor_receives_ocr_hint(self, fixture_photo: bytes) -> None:
        advisor = FakeAdvisor(None)
        make_engine(FakePool("VOLTANA 60W"), advisor).analyze(fixture_photo)
        assert advisor.hints and advisor.hints[0].startswith("VOLTANA 60W")

    def test_unavailable_advisor_is_skipped(self, fixture_photo: bytes) -> None:
        advisor = FakeAdvisor(AdvisorResponse("PALLAS", 75, "x"), available=False)
        result = make_engine(FakePool("VOLTANA 60W"), advisor).analyze(fixture_photo)
        assert result.model == "VOLTANA"

    def test_timeout_is_silent(self, fixture_photo: bytes) -> None:
        advisor = FakeAdvisor(AdvisorResponse("PALLAS", 75, "late"), delay=1.0)
        engine = make_engine(FakePool("VOLTANA 60W"), advisor, advisor_timeout=0.1)

        started = time.monotonic()
        result = engine.analyze(fixture_photo)

        assert time.monotonic() - started < 0.9
        assert result.model == "VOLTANA"
        assert not any(tag.startswith("advisor") for tag in result.trail.tags())
        engine.close()

    def test_advisor_exception_is_no_answer(self, fixture_photo: bytes) -> None:
        advisor = FakeAdvisor()
        advisor.analyze = Mock(side_effect=RuntimeError("boom"))
        result = make_engine(FakePool("VOLTANA 60W"), advisor).analyze(fixture_photo)
        assert result.model == "VOLTANA"


def test_analysis_is_idempotent(fixture_photo: bytes, fixture_features) -> None:
    related = replace(fixture_features, aspect_ratio=fixture_features.aspect_ratio * 1.2)
    examples = [TrainingExample("PALLAS", 75, features=related)]
    engine = make_engine(FakePool("VOLTANA 60W"))

    first = engine.analyze(fixture_photo, examples)
    second = engine.analyze(fixture_photo, examples)

    assert first.to_dict() == second.to_dict()


def test_concurrent_analyses_do_not_interfere(fixture_photo: bytes) -> None:
    engine = make_engine(FakePool("VOLTANA 60W"))
    results = []

    def worker() -> None:
        results.append(engine.analyze(fixture_photo))

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len({r.reasoning for r in results}) == 1
    assert all(len(r.trail) == len(results[0].trail) for r in results)


def test_close_leaves_injected_pool_open() -> None:
    pool = FakePool()
    with make_engine(pool):
        pass
    assert not pool.closed
