"""
Upload image helpers (Pillow): validation and a coarse colour label.
"""

import io
from typing import Dict, List, Tuple

from PIL import Image, UnidentifiedImageError

from airchives.core.exceptions import ValidationError

RGB = Tuple[int, int, int]

NAMED_COLORS: Dict[str, RGB] = {
    "black": (20, 20, 20),
    "white": (245, 245, 245),
    "grey": (128, 128, 128),
    "red": (200, 30, 40),
    "orange": (235, 130, 40),
    "yellow": (235, 215, 60),
    "green": (50, 140, 70),
    "olive": (110, 110, 50),
    "blue": (50, 90, 200),
    "navy": (25, 35, 80),
    "purple": (120, 60, 160),
    "pink": (235, 150, 180),
    "brown": (115, 75, 45),
    "beige": (220, 200, 165),
}

ALLOWED_FORMATS = {"JPEG", "PNG", "WEBP"}
BACKGROUND_DISTANCE = 40


def validate_image(image_bytes: bytes, max_size_bytes: int) -> str:
    """Check size and decodability. Returns the MIME type."""
    if not image_bytes:
        raise ValidationError("Uploaded file is empty")
    if len(image_bytes) > max_size_bytes:
        raise ValidationError(
            f"Image size ({len(image_bytes) / (1024 * 1024):.2f}MB) exceeds maximum allowed size "
            f"({max_size_bytes / (1024 * 1024):.0f}MB)"
        )
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            img.verify()
            image_format = img.format
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationError(f"Uploaded file is not a readable image: {e}") from e

    if image_format not in ALLOWED_FORMATS:
        raise ValidationError(
            f"Unsupported image format {image_format}; use one of {', '.join(sorted(ALLOWED_FORMATS))}"
        )
    return Image.MIME[image_format]


def _distance(a: RGB, b: RGB) -> float:
    return sum((x - y) ** 2 for x, y in zip(a, b)) ** 0.5


def nearest_color_name(rgb: RGB) -> str:
    return min(NAMED_COLORS, key=lambda name: _distance(rgb, NAMED_COLORS[name]))


def dominant_colors(image_bytes: bytes, count: int = 4) -> List[Tuple[int, RGB]]:
    """Most frequent colours after quantizing a thumbnail, most common first."""
    with Image.open(io.BytesIO(image_bytes)) as img:
        thumb = img.convert("RGB")
    thumb.thumbnail((96, 96))
    quantized = thumb.quantize(colors=count)
    palette = quantized.getpalette()

    colors = []
    for pixels, index in sorted(quantized.getcolors(), reverse=True):
        rgb = tuple(palette[index * 3:index * 3 + 3])
        colors.append((pixels, rgb))
    return colors


def detect_color_label(image_bytes: bytes) -> str:
    """Name of the dominant garment colour, skipping the backdrop colour."""
    with Image.open(io.BytesIO(image_bytes)) as img:
        backdrop = img.convert("RGB").getpixel((0, 0))

    colors = dominant_colors(image_bytes)
    for _, rgb in colors:
        if _distance(rgb, backdrop) > BACKGROUND_DISTANCE:
            return nearest_color_name(rgb)
    return nearest_color_name(colors[0][1])
