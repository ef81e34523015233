"""Best-of-batch photo selection."""

import logging
from typing import Optional, Sequence

from ..exceptions import ValidationError
from .features import FeatureExtractor

logger = logging.getLogger(__name__)


def select_best_image(
    images: Sequence[bytes],
    extractor: Optional[FeatureExtractor] = None,
) -> tuple[int, bytes]:
    """Pick the photo most likely to read well.

    A single photo is returned without scoring. Otherwise every photo is
    scored and the first one with the highest score wins.

    Args:
        images: Near-duplicate photos of one fixture
        extractor: Extractor providing score()

    Returns:
        (index, image bytes) of the chosen photo

    Raises:
        ValidationError: If images is empty
    """
    if not images:
        raise ValidationError("Cannot select from an empty batch", field="images")
    if len(images) == 1:
        return 0, images[0]

    extractor = extractor or FeatureExtractor()
    best_index = 0
    best_score = -1.0
    for index, image in enumerate(images):
        score = extractor.score(image)
        logger.debug(f"Photo {index}: score {score:.3f}")
        if score > best_score:
            best_index, best_score = index, score

    logger.debug(f"Selected photo {best_index} of {len(images)} (score {best_score:.3f})")
    return best_index, images[best_index]
