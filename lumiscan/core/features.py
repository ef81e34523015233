"""Foreground segmentation and visual feature extraction."""

import logging

import numpy as np

from ..config import DETECTION_CONFIG, DetectionConfig, RejectionKind
from ..exceptions import ImageDecodeError
from .image_ops import (
    ImageArray,
    background_mask,
    binarize,
    center_mean_color,
    decode_image,
    downscale,
    edge_density,
    encode_jpeg,
    invert,
    label_components,
    rgb_to_hsl,
    scale_image,
    sharpen,
)
from .records import DetectionBounds, PreprocessedImage, VisualFeatures

logger = logging.getLogger(__name__)


class FeatureExtractor:
    """Turns a raw photo into OCR-ready crops plus a visual fingerprint.

    The extractor is stateless; one instance can be shared across threads.

    Example:
        >>> extractor = FeatureExtractor()
        >>> prep = extractor.preprocess(photo_bytes)
        >>> if prep.is_valid:
        ...     text = pool.recognize(prep.normal)
    """

    def __init__(self, config: DetectionConfig = DETECTION_CONFIG):
        self.config = config

    def preprocess(self, image: bytes) -> PreprocessedImage:
        """Segment, measure and enhance one photo.

        Never raises. Failures come back as an invalid result carrying a
        degenerate feature vector and a reason.
        """
        try:
            frame = decode_image(image)
        except ImageDecodeError as e:
            logger.warning(f"Decode failed: {e}")
            return self._fallback(image, "Image could not be decoded", RejectionKind.DECODE_FAILURE)

        try:
            return self._preprocess_frame(downscale(frame, self.config.max_dimension))
        except Exception as e:
            logger.exception("Preprocessing failed")
            return self._fallback(image, f"Processing error: {e}", RejectionKind.DECODE_FAILURE)

    def _preprocess_frame(self, frame: ImageArray) -> PreprocessedImage:
        cfg = self.config
        full_frame = encode_jpeg(frame, cfg.full_frame_quality)

        bounds = self.detect_object_bounds(frame)
        if bounds.is_scene_noise:
            logger.debug(f"Scene rejected: {bounds.reason}")
            return PreprocessedImage(
                normal=full_frame,
                inverted=full_frame,
                full_frame=full_frame,
                features=VisualFeatures.degenerate(),
                is_valid=False,
                reason=bounds.reason or "Scene rejected",
                rejection=bounds.rejection,
            )

        features = self.extract_features(frame, bounds)
        normal, inverted, final_width = self.enhance_for_ocr(frame, bounds)

        if final_width < cfg.min_crop_width:
            logger.debug(f"Crop width {final_width}px below {cfg.min_crop_width}px")
            return PreprocessedImage(
                normal=normal,
                inverted=inverted,
                full_frame=full_frame,
                features=features,
                is_valid=False,
                reason="Insufficient resolution (fixture too distant)",
                rejection=RejectionKind.INSUFFICIENT_RESOLUTION,
            )

        return PreprocessedImage(
            normal=normal,
            inverted=inverted,
            full_frame=full_frame,
            features=features,
            is_valid=True,
            reason="OK",
        )

    def detect_object_bounds(self, frame: ImageArray) -> DetectionBounds:
        """Find the dominant non-background blob.

        Returns bounds flagged as scene noise when nothing plausible is left
        after size, ground-contact and shape filters.
        """
        cfg = self.config
        height, width = frame.shape[:2]
        step = cfg.scan_step

        sampled = frame[::step, ::step]
        foreground = ~background_mask(sampled, cfg)
        blobs = label_components(foreground, cfg.max_visited_nodes)

        min_samples = (width * height * cfg.min_blob_area_fraction) / (step * step)
        ground_line = height * (1.0 - cfg.bottom_margin_fraction)

        survivors = []
        for blob in blobs:
            if blob.count < min_samples:
                continue  # distant or noise
            if (blob.max_gy + 1) * step >= ground_line:
                continue  # street bleed-through
            survivors.append(blob)

        if not survivors:
            return DetectionBounds.rejected(
                RejectionKind.SCENE_REJECTED,
                "Only background (sky/street) detected",
            )

        # Largest wins, first seen on ties
        best = max(survivors, key=lambda b: b.count)
        pad = cfg.blob_padding
        x0 = max(0, best.min_gx * step - pad)
        y0 = max(0, best.min_gy * step - pad)
        x1 = min(width, best.max_gx * step + pad)
        y1 = min(height, best.max_gy * step + pad)
        w, h = max(1, x1 - x0), max(1, y1 - y0)

        if h / w > cfg.max_vertical_aspect:
            return DetectionBounds.rejected(
                RejectionKind.POLE_SHAPE,
                "Tall narrow object (pole), not a fixture close-up",
            )

        return DetectionBounds(x=x0, y=y0, w=w, h=h)

    def extract_features(self, frame: ImageArray, bounds: DetectionBounds) -> VisualFeatures:
        """Compute the visual fingerprint.

        Edge density comes from inside the region; colour comes from a fixed
        central window of the whole frame so small framing jitter between
        re-shoots does not move it.
        """
        cfg = self.config
        region = frame[bounds.y:bounds.y + bounds.h, bounds.x:bounds.x + bounds.w]
        density = edge_density(region, cfg.edge_step, cfg.edge_luminance_delta)

        r, g, b = center_mean_color(frame, cfg.center_window_fraction, cfg.center_sample_stride)
        hue, sat, light = rgb_to_hsl(np.array([r, g, b]))

        return VisualFeatures(
            aspect_ratio=bounds.w / bounds.h if bounds.h > 0 else 1.0,
            edge_density=float(np.clip(density, 0.0, 1.0)),
            hue=float(hue) % 360.0,
            saturation=float(np.clip(sat, 0.0, 1.0)),
            brightness=float(np.clip(light * 255.0, 0.0, 255.0)),
        )

    def enhance_for_ocr(self, frame: ImageArray, bounds: DetectionBounds) -> tuple[bytes, bytes, int]:
        """Crop, upscale, sharpen and binarize the region.

        Returns:
            (normal JPEG, inverted JPEG, final crop width in pixels)
        """
        cfg = self.config
        height, width = frame.shape[:2]
        crop = frame[bounds.y:bounds.y + bounds.h, bounds.x:bounds.x + bounds.w]

        # Farther fixtures occupy less of the frame and get a bigger boost
        is_small = bounds.area < width * height * cfg.small_region_fraction
        factor = cfg.small_region_scale if is_small else cfg.large_region_scale
        scaled = scale_image(crop, factor)

        binary = binarize(sharpen(scaled), cfg.binarize_threshold)
        normal = encode_jpeg(binary, cfg.crop_quality)
        inverted = encode_jpeg(invert(binary), cfg.crop_quality)
        return normal, inverted, int(scaled.shape[1])

    def score(self, image: bytes) -> float:
        """Rank a photo for best-of-batch selection.

        Runs segmentation and feature extraction at reduced resolution.
        Rejected or undecodable photos score 0. Never raises.
        """
        cfg = self.config
        try:
            frame = downscale(decode_image(image), cfg.score_dimension)
            bounds = self.detect_object_bounds(frame)
            if bounds.is_scene_noise:
                return 0.0
            height, width = frame.shape[:2]
            features = self.extract_features(frame, bounds)
        except Exception as e:
            logger.debug(f"Scoring failed, treating as 0: {e}")
            return 0.0

        return self.combine_score(bounds.area / float(width * height), features)

    def combine_score(self, area_fraction: float, features: VisualFeatures) -> float:
        """Weighted blend of framing and detail."""
        cfg = self.config
        low, high = cfg.score_brightness_band
        bonus = cfg.score_brightness_bonus if low <= features.brightness <= high else 0.0
        area = float(np.clip(area_fraction, 0.0, 1.0))
        return area * cfg.score_area_weight + features.edge_density * cfg.score_edge_weight + bonus

    def _fallback(self, image: bytes, reason: str, kind: RejectionKind) -> PreprocessedImage:
        return PreprocessedImage(
            normal=image,
            inverted=image,
            full_frame=image,
            features=VisualFeatures.degenerate(),
            is_valid=False,
            reason=reason,
            rejection=kind,
        )
