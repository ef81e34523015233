"""Shared fixtures: synthetic street-light photos."""

import io
import struct
import zlib

import numpy as np
import pytest
from PIL import Image

SKY = (100, 160, 230)
HOUSING = (60, 60, 60)


def make_photo(
    size: tuple[int, int] = (400, 400),
    box: tuple[int, int, int, int] | None = (100, 140, 300, 260),
    fmt: str = "PNG",
) -> bytes:
    """Sky background with an optional dark rectangle (x0, y0, x1, y1)."""
    width, height = size
    pixels = np.empty((height, width, 3), dtype=np.uint8)
    pixels[:] = SKY
    if box is not None:
        x0, y0, x1, y1 = box
        pixels[y0:y1, x0:x1] = HOUSING
        # Light stripes give the housing some texture
        pixels[y0 + 10:y1 - 10:12, x0 + 10:x1 - 10] = (220, 220, 220)
    buffer = io.BytesIO()
    Image.fromarray(pixels).save(buffer, format=fmt)
    return buffer.getvalue()


def png_chunk(kind: bytes, payload: bytes) -> bytes:
    return struct.pack(">I", len(payload)) + kind + payload + struct.pack(">I", zlib.crc32(kind + payload))


def make_oversized_png(width: int = 20000, height: int = 20000) -> bytes:
    """PNG whose header declares far more pixels than Pillow will open."""
    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + png_chunk(b"IHDR", header)
        + png_chunk(b"IDAT", zlib.compress(b"\x00"))
        + png_chunk(b"IEND", b"")
    )


@pytest.fixture
def fixture_photo() -> bytes:
    """Well-framed fixture in the middle of the sky."""
    return make_photo()


@pytest.fixture
def street_photo() -> bytes:
    """Dark mass touching the bottom edge (street/pole base)."""
    return make_photo(box=(0, 300, 400, 400))


@pytest.fixture
def distant_photo() -> bytes:
    """Fixture too small to be more than noise."""
    return make_photo(box=(190, 190, 210, 210))


@pytest.fixture
def pole_photo() -> bytes:
    """Tall narrow object well above the ground."""
    return make_photo(box=(180, 40, 220, 340))
