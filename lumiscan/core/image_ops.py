"""Pixel-level operations for nameplate photos."""

import io
import logging
from dataclasses import dataclass

import cv2
import numpy as np
import numpy.typing as npt
from PIL import Image, ImageOps, UnidentifiedImageError

from ..config import DETECTION_CONFIG, DetectionConfig
from ..exceptions import ImageDecodeError

logger = logging.getLogger(__name__)

# Type aliases
ImageArray = npt.NDArray[np.uint8]  # HxWx3 RGB or HxW gray
FloatArray = npt.NDArray[np.float64]
BoolGrid = npt.NDArray[np.bool_]

SHARPEN_KERNEL = np.array([
    [0, -1, 0],
    [-1, 5, -1],
    [0, -1, 0],
], dtype=np.float32)


@dataclass(frozen=True, slots=True)
class Blob:
    """Connected component on the sampling grid (grid coordinates)."""
    min_gx: int
    min_gy: int
    max_gx: int
    max_gy: int
    count: int


def decode_image(data: bytes) -> ImageArray:
    """Decode raw bytes into an RGB array.

    EXIF orientation is applied so portrait field photos stay upright.

    Raises:
        ImageDecodeError: If the bytes are empty or not a supported image
    """
    if not data:
        raise ImageDecodeError("Empty image payload", size=0)
    try:
        with Image.open(io.BytesIO(data)) as img:
            img = ImageOps.exif_transpose(img)
            return np.array(img.convert("RGB"), dtype=np.uint8)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ImageDecodeError(f"Could not decode image: {e}", size=len(data)) from e


def encode_jpeg(image: ImageArray, quality: int = 90) -> bytes:
    """Encode an RGB or gray array as JPEG bytes."""
    buffer = io.BytesIO()
    Image.fromarray(image).save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


def resize_dimensions(width: int, height: int, max_dim: int) -> tuple[int, int]:
    """Fit (width, height) inside max_dim keeping the aspect ratio."""
    if width > max_dim or height > max_dim:
        ratio = min(max_dim / width, max_dim / height)
        return max(1, int(width * ratio)), max(1, int(height * ratio))
    return width, height


def downscale(image: ImageArray, max_dim: int) -> ImageArray:
    """Shrink so the longest side is at most max_dim."""
    height, width = image.shape[:2]
    new_w, new_h = resize_dimensions(width, height, max_dim)
    if (new_w, new_h) == (width, height):
        return image
    return cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_AREA)


def rgb_to_hsl(rgb: npt.ArrayLike) -> tuple[FloatArray, FloatArray, FloatArray]:
    """Vectorised RGB -> HSL.

    Args:
        rgb: (..., 3) array of 0-255 values

    Returns:
        (hue in degrees [0, 360), saturation [0, 1], lightness [0, 1])
    """
    arr = np.asarray(rgb, dtype=np.float64) / 255.0
    r, g, b = arr[..., 0], arr[..., 1], arr[..., 2]
    cmax = np.max(arr, axis=-1)
    cmin = np.min(arr, axis=-1)
    delta = cmax - cmin
    lightness = (cmax + cmin) / 2.0

    chromatic = delta > 0
    safe_delta = np.where(chromatic, delta, 1.0)

    denom = np.where(lightness > 0.5, 2.0 - cmax - cmin, cmax + cmin)
    saturation = np.where(chromatic, delta / np.where(denom > 0, denom, 1.0), 0.0)

    hue = np.zeros_like(cmax)
    red_max = chromatic & (cmax == r)
    green_max = chromatic & (cmax == g) & ~red_max
    blue_max = chromatic & ~red_max & ~green_max
    hue = np.where(red_max, np.mod((g - b) / safe_delta, 6.0), hue)
    hue = np.where(green_max, (b - r) / safe_delta + 2.0, hue)
    hue = np.where(blue_max, (r - g) / safe_delta + 4.0, hue)
    hue = np.mod(hue * 60.0, 360.0)

    return hue, np.clip(saturation, 0.0, 1.0), lightness


def luminance(image: ImageArray) -> FloatArray:
    """Rec. 601 luma of an RGB array."""
    arr = image.astype(np.float64)
    return 0.299 * arr[..., 0] + 0.587 * arr[..., 1] + 0.114 * arr[..., 2]


def background_mask(sampled: ImageArray, config: DetectionConfig = DETECTION_CONFIG) -> BoolGrid:
    """Classify sampled pixels as background.

    Background is either sky (blue hue, moderately saturated, bright) or an
    overexposed backdrop (very bright, almost no saturation).
    """
    hue, sat, light = rgb_to_hsl(sampled)
    sky = (
        (hue > config.sky_hue_min) & (hue < config.sky_hue_max)
        & (sat > config.sky_min_saturation) & (light > config.sky_min_lightness)
    )
    overexposed = (light > config.overexposed_min_lightness) & (sat < config.overexposed_max_saturation)
    return sky | overexposed


def label_components(foreground: BoolGrid, max_visited: int) -> list[Blob]:
    """4-connected component labeling over a boolean grid.

    Iterative with an explicit stack. The total number of visited nodes is
    capped by max_visited; once the budget is spent the pass stops and the
    blobs found so far are returned. This is an approximation over a
    down-sampled grid, not per-pixel segmentation.
    """
    rows, cols = foreground.shape
    visited = np.zeros_like(foreground, dtype=bool)
    blobs: list[Blob] = []
    budget = max_visited

    for gy in range(rows):
        for gx in range(cols):
            if visited[gy, gx] or not foreground[gy, gx]:
                continue

            visited[gy, gx] = True
            stack = [(gx, gy)]
            min_x = max_x = gx
            min_y = max_y = gy
            count = 0

            while stack and budget > 0:
                budget -= 1
                x, y = stack.pop()
                count += 1
                min_x, max_x = min(min_x, x), max(max_x, x)
                min_y, max_y = min(min_y, y), max(max_y, y)

                for nx, ny in ((x + 1, y), (x - 1, y), (x, y + 1), (x, y - 1)):
                    if 0 <= nx < cols and 0 <= ny < rows and not visited[ny, nx] and foreground[ny, nx]:
                        visited[ny, nx] = True
                        stack.append((nx, ny))

            blobs.append(Blob(min_x, min_y, max_x, max_y, count))

            if budget <= 0:
                logger.warning(f"Segmentation budget of {max_visited} nodes exhausted; "
                               f"stopping with {len(blobs)} blobs")
                return blobs

    return blobs


def edge_density(region: ImageArray, step: int, delta: float) -> float:
    """Fraction of sampled points with a luminance jump to the right or below."""
    lum = luminance(region)[::step, ::step]
    if lum.shape[0] < 2 or lum.shape[1] < 2:
        return 0.0
    base = lum[:-1, :-1]
    right = np.abs(base - lum[:-1, 1:]) > delta
    down = np.abs(base - lum[1:, :-1]) > delta
    return float(np.mean(right | down))


def center_mean_color(image: ImageArray, fraction: float, stride: int) -> tuple[float, float, float]:
    """Mean RGB of the central window, sampled every stride pixels."""
    height, width = image.shape[:2]
    win_w = max(1, int(width * fraction))
    win_h = max(1, int(height * fraction))
    x0 = (width - win_w) // 2
    y0 = (height - win_h) // 2
    window = image[y0:y0 + win_h, x0:x0 + win_w][::stride, ::stride].reshape(-1, 3)
    if window.size == 0:
        return 128.0, 128.0, 128.0
    mean = window.astype(np.float64).mean(axis=0)
    return float(mean[0]), float(mean[1]), float(mean[2])


def scale_image(image: ImageArray, factor: float) -> ImageArray:
    """Resize by factor with cubic interpolation."""
    height, width = image.shape[:2]
    new_size = (max(1, int(width * factor)), max(1, int(height * factor)))
    return cv2.resize(image, new_size, interpolation=cv2.INTER_CUBIC)


def sharpen(image: ImageArray) -> ImageArray:
    """3x3 Laplacian sharpening, saturating to uint8."""
    return cv2.filter2D(image, -1, SHARPEN_KERNEL, borderType=cv2.BORDER_REPLICATE)


def binarize(image: ImageArray, threshold: int) -> ImageArray:
    """Gray pixels above threshold become white, the rest black."""
    gray = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY) if image.ndim == 3 else image
    _, binary = cv2.threshold(gray, threshold, 255, cv2.THRESH_BINARY)
    return binary


def invert(image: ImageArray) -> ImageArray:
    """Tone inversion."""
    return cv2.bitwise_not(image)
