"""Domain knowledge: power tables, fuzzy text matching and visual memory."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from rapidfuzz.distance import Levenshtein

from ..config import (
    ADVISOR_KNOWN_MODELS_LIMIT,
    RELATED_THRESHOLD,
    VISUAL_MATCH_WEIGHTS,
    ConfidenceTier,
    ResultSource,
)
from .records import AnalysisResult, ReasoningTrail, TrainingExample, VisualFeatures

logger = logging.getLogger(__name__)


# Rated powers (W) each manufacturer actually ships
MODEL_VALID_POWERS: dict[str, frozenset[int]] = {
    'PALLAS': frozenset({23, 33, 47, 60, 75, 90, 110, 130, 155, 200}),
    'KINGSUN': frozenset({23, 33, 47, 60, 75, 90, 110, 130, 155, 200}),
    'HBMI': frozenset({50, 75, 100, 150, 200}),
    'SCHREDER': frozenset({36, 38, 39, 51, 56, 60, 75, 80, 110, 125, 145, 155, 212, 236}),
    'VOLTANA': frozenset({39, 56, 60, 75, 80, 110, 145, 212}),
    'URBJET': frozenset({40, 65, 130, 150, 213, 230}),
    'BRIGHTLUX': frozenset({40, 50, 65, 130, 150, 213, 230}),
    'ALPER': frozenset({35, 40, 60, 90, 100, 130, 200, 210}),
    'REEME': frozenset({51, 65, 82, 130, 290}),
    'LEDSTAR': frozenset({58, 61, 120, 200, 215}),
    'PHILIPS': frozenset({58, 127}),
    'ORION': frozenset({40, 55, 57, 58, 60, 100, 148, 150}),
    'TECNOWATT': frozenset({54, 60}),
    'MERAK': frozenset({54}),
    'BORA': frozenset({60}),
}

# Line voltages printed on every label; never a rated power
LINE_VOLTAGES = frozenset({110, 127, 220, 380})
MIN_POWER = 10
MAX_POWER = 500

TOKEN_SPLIT = re.compile(r"[\s\-/.:,]+")
NON_LABEL_CHARS = re.compile(r"[^A-Z0-9\-. /:W]")
WHITESPACE = re.compile(r"\s+")
EXPLICIT_POWER = re.compile(r"\b(\d{2,3})\s?(?:W|WATTS)\b")
LOOSE_NUMBER = re.compile(r"\b(\d{2,3})\b")
LEADING_ZERO_CODE = re.compile(r"\b0([1-9])\b")
MIN_SIGNATURE_LENGTH = 4
RAW_TEXT_LIMIT = 80


def clean_label_text(text: str) -> str:
    """Uppercase, keep only label characters, collapse whitespace."""
    cleaned = NON_LABEL_CHARS.sub(" ", text.upper())
    return WHITESPACE.sub(" ", cleaned).strip()


def tolerance_for(target: str, default: int = 2) -> int:
    """Allowed edit distance for a name of this length."""
    if len(target) <= 3:
        return 0
    if len(target) <= 5:
        return 1
    return default


def fuzzy_find(text: str, target: str, default_tolerance: int = 2) -> Optional[str]:
    """Return the piece of text that matches target, or None.

    Exact substring first, then each delimiter-separated token within the
    length-dependent edit distance.
    """
    if len(target) < 2:
        return None
    text = text.upper()
    target = target.upper()
    if target in text:
        return target

    tolerance = tolerance_for(target, default_tolerance)
    for word in TOKEN_SPLIT.split(text):
        if not word or abs(len(word) - len(target)) > default_tolerance:
            continue
        if Levenshtein.distance(word, target) <= tolerance:
            return word
    return None


def fuzzy_contains(text: str, target: str, default_tolerance: int = 2) -> bool:
    """True if target appears in text, allowing OCR-sized typos."""
    return fuzzy_find(text, target, default_tolerance) is not None


def is_plausible_power(value: int) -> bool:
    return MIN_POWER < value < MAX_POWER


def is_denied(value: int) -> bool:
    """Numbers that look like powers but are voltages or years."""
    return value in LINE_VOLTAGES or 1900 <= value <= 2099


@dataclass
class Interpretation:
    """What the text alone says."""
    model: Optional[str] = None
    power: Optional[int] = None
    confidence: float = ConfidenceTier.NOTHING.value
    trail: ReasoningTrail = field(default_factory=ReasoningTrail)
    raw_text: str = ""

    def to_result(self, features: Optional[VisualFeatures] = None) -> AnalysisResult:
        return AnalysisResult(
            model=self.model,
            power=self.power,
            confidence=self.confidence,
            trail=self.trail.copy(),
            raw_text=self.raw_text,
            features=features,
            source=ResultSource.HEURISTIC,
        )


def confidence_for(model: Optional[str], power: Optional[float]) -> float:
    """Map what was found to a confidence tier."""
    if model and power:
        return ConfidenceTier.MODEL_AND_POWER.value
    if model:
        return ConfidenceTier.MODEL_ONLY.value
    if power:
        return ConfidenceTier.POWER_ONLY.value
    return ConfidenceTier.NOTHING.value


class KnowledgeBase:
    """Text interpretation and visual-memory lookups.

    Holds only the static manufacturer table. Training examples are passed
    in on every call and never modified.
    """

    def __init__(self, valid_powers: Optional[dict[str, Iterable[int]]] = None):
        table = MODEL_VALID_POWERS if valid_powers is None else valid_powers
        self.valid_powers: dict[str, frozenset[int]] = {
            name.upper(): frozenset(powers) for name, powers in table.items()
        }

    def valid_set(self, model: str, examples: Sequence[TrainingExample] = ()) -> frozenset[int]:
        """Powers known for a model from the table plus confirmed examples.

        Model names compare case-insensitively.
        """
        model = model.upper()
        powers = set(self.valid_powers.get(model, ()))
        powers.update(int(e.power) for e in examples if e.model.upper() == model)
        return frozenset(powers)

    def candidate_models(self, examples: Sequence[TrainingExample]) -> list[str]:
        """Caller models plus table models, longest first."""
        names = {e.model.upper() for e in examples} | set(self.valid_powers)
        return sorted(names, key=lambda n: (-len(n), n))

    def interpret(self, text: str, examples: Sequence[TrainingExample] = ()) -> Interpretation:
        """Extract model and power from OCR text.

        Power rules, first success wins:
            1. number shortly after the model name, in the model's valid set
            2. explicit number + W unit
            3. any loose 2-3 digit number in the model's valid set
            4. leading-zero code such as "06" meaning 60 W
        """
        clean = clean_label_text(text)
        result = Interpretation(raw_text=clean[:RAW_TEXT_LIMIT])
        trail = result.trail

        matched_as: Optional[str] = None
        for candidate in self.candidate_models(examples):
            matched_as = fuzzy_find(clean, candidate)
            if matched_as:
                result.model = candidate
                trail.add("model", f"Model identified: {candidate}")
                break

        signature_power: Optional[int] = None
        if result.model is None:
            example = self.match_signature(clean, examples)
            if example is not None:
                result.model = example.model
                signature_power = int(example.power)
                trail.add("model:signature", f"Known OCR signature of {example.model}")

        valid = self.valid_set(result.model, examples) if result.model else frozenset()

        if result.model and matched_as:
            pattern = re.compile(re.escape(matched_as) + r"[^0-9]{0,10}(\d{2,3})(?!\d)")
            match = pattern.search(clean)
            if match:
                value = int(match.group(1))
                if is_plausible_power(value) and not is_denied(value) and (not valid or value in valid):
                    result.power = value
                    trail.add("power:model-window", f'"Model + value" pattern ({result.model} {value})')

        if result.power is None:
            explicit = [int(m.group(1)) for m in EXPLICIT_POWER.finditer(clean)]
            explicit = [p for p in explicit if is_plausible_power(p)]
            if explicit:
                result.power = max(explicit)
                trail.add("power:explicit", f"Explicit power: {result.power}W")

        if result.power is None and valid:
            for m in LOOSE_NUMBER.finditer(clean):
                value = int(m.group(1))
                if is_plausible_power(value) and not is_denied(value) and value in valid:
                    result.power = value
                    trail.add("power:table", f"Table power ({result.model}): {value}W")
                    break

        if result.power is None:
            for m in LEADING_ZERO_CODE.finditer(clean):
                value = int(m.group(1)) * 10
                if is_plausible_power(value) and (not valid or value in valid):
                    result.power = value
                    trail.add("power:code", f'Label code "0{m.group(1)}" read as {value}W')
                    break

        if result.power is None and signature_power is not None:
            result.power = signature_power
            trail.add("power:signature", f"Power from confirmed example: {signature_power}W")

        result.confidence = confidence_for(result.model, result.power)
        logger.debug(f"Interpreted '{clean[:40]}' -> {result.model} / {result.power} "
                     f"({result.confidence:.2f})")
        return result

    def match_signature(
        self,
        clean_text: str,
        examples: Sequence[TrainingExample],
    ) -> Optional[TrainingExample]:
        """Example whose recorded misread appears in the text."""
        for example in reversed(examples):
            signature = clean_label_text(example.ocr_signature or "")
            if len(signature) >= MIN_SIGNATURE_LENGTH and signature in clean_text:
                return example
        return None

    def find_visual_match(
        self,
        features: VisualFeatures,
        examples: Sequence[TrainingExample],
    ) -> tuple[Optional[TrainingExample], float]:
        """Closest example by weighted feature difference.

        Returns:
            (best example or None, its distance). Distance is 1.0 when no
            example carries features or none is closer than 1.0.
        """
        best: Optional[TrainingExample] = None
        best_distance = 1.0
        for example in examples:
            if example.features is None:
                continue
            distance = self.feature_distance(features, example.features)
            if distance < best_distance:
                best, best_distance = example, distance
        return best, best_distance

    @staticmethod
    def feature_distance(a: VisualFeatures, b: VisualFeatures) -> float:
        """Weighted difference over normalized feature dimensions."""
        w = VISUAL_MATCH_WEIGHTS
        diff_aspect = abs(a.aspect_ratio - b.aspect_ratio) / max(0.1, b.aspect_ratio)
        diff_edge = abs(a.edge_density - b.edge_density)
        hue_gap = abs(a.hue - b.hue) % 360.0
        diff_hue = min(hue_gap, 360.0 - hue_gap) / 180.0
        diff_bright = abs(a.brightness - b.brightness) / 255.0
        diff_sat = abs(a.saturation - b.saturation)
        return (
            diff_aspect * w["aspect_ratio"]
            + diff_edge * w["edge_density"]
            + diff_hue * w["hue"]
            + diff_bright * w["brightness"]
            + diff_sat * w["saturation"]
        )

    def check_retrospective_match(self, result: AnalysisResult, example: TrainingExample) -> bool:
        """Should a new correction relabel an already produced result?"""
        if result.features is not None and example.features is not None:
            if self.feature_distance(result.features, example.features) < RELATED_THRESHOLD:
                return True

        signature = clean_label_text(example.ocr_signature or "")
        raw = clean_label_text(result.raw_text or "")
        if len(signature) >= MIN_SIGNATURE_LENGTH and raw:
            return signature == raw or signature in raw
        return False

    def relabel(
        self,
        results: Sequence[AnalysisResult],
        example: TrainingExample,
    ) -> list[AnalysisResult]:
        """Apply a fresh correction to earlier results.

        Returns a new list; matching results are copied with the corrected
        model/power at full confidence, everything else is returned as is.
        Results already confirmed by a human are never touched.
        """
        updated: list[AnalysisResult] = []
        for result in results:
            if result.source != ResultSource.USER_CORRECTED and self.check_retrospective_match(result, example):
                relabelled = result.copy(
                    model=example.model,
                    power=example.power,
                    confidence=ConfidenceTier.DUPLICATE.value,
                    source=ResultSource.USER_CORRECTED,
                )
                relabelled.trail.add("retrospective", "Updated automatically after a similar correction")
                updated.append(relabelled)
            else:
                updated.append(result)
        return updated


def known_model_hints(examples: Sequence[TrainingExample], limit: int = ADVISOR_KNOWN_MODELS_LIMIT) -> list[str]:
    """Distinct "MODEL (POWERW)" strings for the advisor prompt."""
    hints: list[str] = []
    for example in examples:
        hint = f"{example.model} ({example.power:g}W)"
        if hint not in hints:
            hints.append(hint)
        if len(hints) >= limit:
            break
    return hints
