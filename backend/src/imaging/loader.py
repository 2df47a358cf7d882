"""Still image decoding via Pillow."""

import logging

import numpy as np
from PIL import Image, UnidentifiedImageError

from engine.frame import from_bytes
from security import validate_dimensions

logger = logging.getLogger(__name__)


class ImageLoadError(Exception):
    """Image could not be opened or decoded. Fatal at startup."""


def probe(path: str) -> dict:
    """Read image headers only. Returns {"ok": False, "error": ...} on failure."""
    try:
        with Image.open(path) as img:
            result = {
                "ok": True,
                "width": img.width,
                "height": img.height,
                "mode": img.mode,
                "format": img.format,
            }
    except (FileNotFoundError, UnidentifiedImageError, OSError) as e:
        logger.exception(f"Probe failed for {path}")
        return {"ok": False, "error": f"Failed to open image: {type(e).__name__}"}

    errors = validate_dimensions(result["width"], result["height"])
    if errors:
        return {"ok": False, "error": "; ".join(errors)}
    return result


def load_image(path: str) -> np.ndarray:
    """Decode an image file to an (H, W, 3) uint8 RGB array.

    Pillow hands back a row-major RGB byte buffer; the array is a read-only
    view over it, since the source frame is never modified.

    Raises:
        ImageLoadError: Missing file, unreadable/unsupported format, or an
            image larger than the pixel cap.
    """
    info = probe(path)
    if not info["ok"]:
        raise ImageLoadError(f"{path}: {info['error']}")
    try:
        with Image.open(path) as img:
            rgb = img.convert("RGB")
            frame = from_bytes(rgb.tobytes(), rgb.width, rgb.height)
    except (UnidentifiedImageError, OSError) as e:
        raise ImageLoadError(f"{path}: decode failed ({type(e).__name__})") from e

    logger.info(
        "Loaded %s (%dx%d %s)", path, info["width"], info["height"], info["mode"]
    )
    return frame
