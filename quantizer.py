from typing import Optional
import logging

import numpy as np
from PIL import Image
from PIL.Image import Image as PILImage

from shared import QuantizationError

MAX_COLORS = 256

ALPHA_MODES = ("RGBA", "LA", "PA", "RGBa", "La")


def has_alpha(image: PILImage) -> bool:
    return image.mode in ALPHA_MODES or "transparency" in image.info


def reduce_wide_gray(image: PILImage) -> PILImage:
    """Scale 16-bit gray (Pillow modes I and I;16*) down to 8-bit L.

    Pillow's own conversion clips these modes at 255 instead of scaling.
    A tRNS gray key is scaled the same way.
    """
    pixels = np.asarray(image).astype(np.uint32) >> 8
    gray = Image.fromarray(np.clip(pixels, 0, 255).astype(np.uint8))

    transparency = image.info.get("transparency")
    if isinstance(transparency, int):
        gray.info["transparency"] = min(transparency >> 8, 255)

    return gray


def quantize(
    image: PILImage,
    colors: int = MAX_COLORS,
    method: Optional[Image.Quantize] = None,
    dither: bool = True,
) -> PILImage:
    """Reduce an image to a palette image with at most ``colors`` entries.

    16-bit gray is scaled to 8 bits first. Opaque images go through median
    cut on RGB. Images with any alpha go through fast octree on RGBA, since
    that is the only built-in Pillow method that keeps the alpha channel in
    the palette.
    """
    if not 1 <= colors <= MAX_COLORS:
        raise QuantizationError(f"colors must be between 1 and {MAX_COLORS}: {colors}")

    dither_flag = Image.Dither.FLOYDSTEINBERG if dither else Image.Dither.NONE

    try:
        if image.mode == "I" or image.mode.startswith("I;16"):
            gray = reduce_wide_gray(image)
            try:
                return quantize(gray, colors, method, dither)
            finally:
                gray.close()

        if has_alpha(image):
            base = image.convert("RGBA")
            if method is None:
                method = Image.Quantize.FASTOCTREE
        else:
            base = image.convert("RGB")
            if method is None:
                method = Image.Quantize.MEDIANCUT

        logging.debug(f"quantizing {image.mode} {image.size} via {method.name}")
        try:
            quantized = base.quantize(colors=colors, method=method, dither=dither_flag)
        finally:
            if base is not image:
                base.close()
    except (ValueError, OSError, MemoryError) as e:
        raise QuantizationError(f"cannot quantize {image.mode} image: {e}") from e

    return quantized
