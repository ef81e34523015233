"""Data records passed between pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Optional

from ..config import ConfidenceTier, RejectionKind, ResultSource


@dataclass(frozen=True, slots=True)
class VisualFeatures:
    """Visual fingerprint of a fixture."""
    aspect_ratio: float
    edge_density: float
    hue: float
    saturation: float
    brightness: float

    @classmethod
    def degenerate(cls) -> VisualFeatures:
        """Features used when nothing could be measured."""
        return cls(aspect_ratio=1.0, edge_density=0.0, hue=0.0, saturation=0.0, brightness=0.0)

    def to_dict(self) -> dict[str, float]:
        return {
            "aspectRatio": self.aspect_ratio,
            "edgeDensity": self.edge_density,
            "hue": self.hue,
            "saturation": self.saturation,
            "brightness": self.brightness,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VisualFeatures:
        """Build from either camelCase or snake_case keys."""
        def pick(snake: str, camel: str) -> float:
            return float(data.get(snake, data.get(camel, 0.0)))

        return cls(
            aspect_ratio=pick("aspect_ratio", "aspectRatio"),
            edge_density=pick("edge_density", "edgeDensity"),
            hue=pick("hue", "hue"),
            saturation=pick("saturation", "saturation"),
            brightness=pick("brightness", "brightness"),
        )


@dataclass(frozen=True, slots=True)
class DetectionBounds:
    """Bounding box of the dominant foreground blob."""
    x: int
    y: int
    w: int
    h: int
    is_scene_noise: bool = False
    rejection: Optional[RejectionKind] = None
    reason: Optional[str] = None

    @property
    def area(self) -> int:
        return self.w * self.h

    @classmethod
    def rejected(cls, kind: RejectionKind, reason: str) -> DetectionBounds:
        return cls(0, 0, 0, 0, is_scene_noise=True, rejection=kind, reason=reason)


@dataclass(frozen=True, slots=True)
class PreprocessedImage:
    """Output of FeatureExtractor.preprocess()."""
    normal: bytes
    inverted: bytes
    full_frame: bytes
    features: VisualFeatures
    is_valid: bool
    reason: str
    rejection: Optional[RejectionKind] = None


@dataclass(frozen=True, slots=True)
class TrainingExample:
    """A human-confirmed fixture, owned by the caller."""
    model: str
    power: float
    ocr_signature: Optional[str] = None
    features: Optional[VisualFeatures] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TrainingExample:
        features = data.get("features")
        return cls(
            model=str(data["model"]).upper(),
            power=data["power"],
            ocr_signature=data.get("ocrSignature", data.get("ocr_signature")) or None,
            features=VisualFeatures.from_dict(features) if features else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"model": self.model, "power": self.power}
        if self.ocr_signature:
            data["ocrSignature"] = self.ocr_signature
        if self.features is not None:
            data["features"] = self.features.to_dict()
        return data


@dataclass(frozen=True, slots=True)
class ReasoningFragment:
    """One tagged step of the audit trail."""
    tag: str
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass
class ReasoningTrail:
    """Ordered audit trail, rendered to text only at the boundary."""
    fragments: list[ReasoningFragment] = field(default_factory=list)

    def add(self, tag: str, message: str) -> ReasoningTrail:
        self.fragments.append(ReasoningFragment(tag, message))
        return self

    def extend(self, other: ReasoningTrail) -> ReasoningTrail:
        self.fragments.extend(other.fragments)
        return self

    def tags(self) -> list[str]:
        return [f.tag for f in self.fragments]

    def render(self, sep: str = " | ") -> str:
        if not self.fragments:
            return "Insufficient data"
        return sep.join(str(f) for f in self.fragments)

    def copy(self) -> ReasoningTrail:
        return ReasoningTrail(list(self.fragments))

    def __len__(self) -> int:
        return len(self.fragments)


@dataclass
class AnalysisResult:
    """Final answer for one photo."""
    model: Optional[str] = None
    power: Optional[float] = None
    confidence: float = 0.0
    trail: ReasoningTrail = field(default_factory=ReasoningTrail)
    raw_text: Optional[str] = None
    features: Optional[VisualFeatures] = None
    source: ResultSource = ResultSource.HEURISTIC

    @property
    def reasoning(self) -> str:
        return self.trail.render()

    @property
    def is_complete(self) -> bool:
        return self.model is not None and self.power is not None

    @property
    def confidence_tier(self) -> ConfidenceTier:
        """Highest tier the confidence reaches."""
        reached = [tier for tier in ConfidenceTier if tier.value <= self.confidence]
        return max(reached, key=lambda tier: tier.value, default=ConfidenceTier.REJECTED)

    def needs_review(self, threshold: float) -> bool:
        """Low confidence or missing data goes to a human."""
        return self.confidence < threshold or not self.is_complete

    def copy(self, **changes: Any) -> AnalysisResult:
        changes.setdefault("trail", self.trail.copy())
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "power": self.power,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "rawText": self.raw_text,
            "features": self.features.to_dict() if self.features else None,
            "source": self.source.value,
        }

    @classmethod
    def rejected(
        cls,
        reason: str,
        features: Optional[VisualFeatures] = None,
        tag: str = "rejected",
    ) -> AnalysisResult:
        return cls(
            confidence=ConfidenceTier.REJECTED.value,
            trail=ReasoningTrail().add(tag, f"Skipped: {reason}"),
            raw_text="",
            features=features,
        )


@dataclass(frozen=True, slots=True)
class ProcessingJob:
    """Photos of one physical point, analysed as a unit."""
    group_id: str
    images: list[bytes]
    names: Optional[list[str]] = None

    def name_of(self, index: int) -> str:
        if self.names and index < len(self.names):
            return self.names[index]
        return f"{self.group_id}[{index}]"
