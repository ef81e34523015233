"""Unit tests for pipeline records."""

from lumiscan.config import ConfidenceTier, ResultSource
from lumiscan.core.records import (
    AnalysisResult,
    ProcessingJob,
    ReasoningTrail,
    TrainingExample,
    VisualFeatures,
)


class TestVisualFeatures:
    """Tests for VisualFeatures."""

    def test_from_dict_accepts_both_spellings(self):
        camel = VisualFeatures.from_dict({"aspectRatio": 2.0, "edgeDensity": 0.1, "hue": 10, "saturation": 0.5, "brightness": 90})
        snake = VisualFeatures.from_dict({"aspect_ratio": 2.0, "edge_density": 0.1, "hue": 10, "saturation": 0.5, "brightness": 90})
        assert camel == snake

    def test_round_trip(self):
        features = VisualFeatures(1.2, 0.3, 45.0, 0.2, 130.0)
        assert VisualFeatures.from_dict(features.to_dict()) == features


class TestReasoningTrail:
    """Tests for ReasoningTrail."""

    def test_empty_renders_insufficient_data(self):
        assert ReasoningTrail().render() == "Insufficient data"

    def test_render_in_order(self):
        trail = ReasoningTrail().add("model", "Model identified: ORION").add("power:explicit", "Explicit power: 100W")
        assert trail.render() == "Model identified: ORION | Explicit power: 100W"
        assert trail.tags() == ["model", "power:explicit"]

    def test_copy_is_independent(self):
        trail = ReasoningTrail().add("a", "first")
        clone = trail.copy()
        clone.add("b", "second")
        assert len(trail) == 1
        assert len(clone) == 2


class TestAnalysisResult:
    """Tests for AnalysisResult."""

    def test_rejected(self):
        result = AnalysisResult.rejected("Only background detected")
        assert result.confidence == 0.0
        assert result.raw_text == ""
        assert result.reasoning == "Skipped: Only background detected"
        assert result.source == ResultSource.HEURISTIC

    def test_needs_review(self):
        complete = AnalysisResult(model="ORION", power=100, confidence=0.92)
        partial = AnalysisResult(model="ORION", confidence=0.92)
        weak = AnalysisResult(model="ORION", power=100, confidence=0.7)
        assert not complete.needs_review(0.85)
        assert partial.needs_review(0.85)
        assert weak.needs_review(0.85)

    def test_confidence_tier(self):
        assert AnalysisResult(confidence=0.92).confidence_tier == ConfidenceTier.MODEL_AND_POWER
        assert AnalysisResult(confidence=0.9).confidence_tier == ConfidenceTier.ADVISOR
        assert AnalysisResult(confidence=0.7).confidence_tier == ConfidenceTier.MODEL_ONLY
        assert AnalysisResult(confidence=0.0).confidence_tier == ConfidenceTier.REJECTED
        assert AnalysisResult.rejected("x").confidence_tier == ConfidenceTier.REJECTED

    def test_copy_does_not_share_trail(self):
        original = AnalysisResult(model="ORION")
        changed = original.copy(power=100)
        changed.trail.add("x", "extra")
        assert original.power is None
        assert len(original.trail) == 0

    def test_to_dict(self):
        data = AnalysisResult(model="ORION", power=100, confidence=0.92, raw_text="ORION 100W").to_dict()
        assert data["rawText"] == "ORION 100W"
        assert data["source"] == "heuristic"
        assert data["features"] is None


class TestTrainingExample:
    """Tests for TrainingExample."""

    def test_from_dict_uppercases_model(self):
        example = TrainingExample.from_dict({"model": "voltana", "power": 60})
        assert example.model == "VOLTANA"
        assert example.features is None
        assert example.to_dict() == {"model": "VOLTANA", "power": 60}


def test_job_names_fall_back_to_index():
    job = ProcessingJob("P1", [b"a", b"b"], names=["first.jpg"])
    assert job.name_of(0) == "first.jpg"
    assert job.name_of(1) == "P1[1]"
