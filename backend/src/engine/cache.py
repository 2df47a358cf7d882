"""JPEG transport for sorted output buffers.

Finished buffers reach two surfaces as JPEG: the shared-memory ring, whose
slots are size-bounded, and the base64 payload of the sidecar ``render``
reply. Alpha is always the constant 255 here, so it is dropped, not blended.
"""

import base64
import io

import numpy as np
from PIL import Image

DEFAULT_SLOT_SIZE = 4 * 1024 * 1024  # 4MB
QUALITY_FALLBACK_CHAIN = (95, 85, 75, 65, 50)


def _rgb_image(frame: np.ndarray) -> Image.Image:
    if frame.ndim != 3 or frame.shape[2] not in (3, 4):
        raise ValueError(
            f"expected (H, W, 3) or (H, W, 4) buffer, got {frame.shape}"
        )
    return Image.fromarray(np.ascontiguousarray(frame[:, :, :3]))


def _save_jpeg(img: Image.Image, quality: int) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def encode_mjpeg(frame: np.ndarray, quality: int = 95) -> bytes:
    """Encode an RGB or RGBA output buffer to JPEG bytes."""
    return _save_jpeg(_rgb_image(frame), quality)


def encode_b64(frame: np.ndarray, quality: int = 95) -> str:
    """JPEG-encode and base64 a buffer for a JSON reply."""
    return base64.b64encode(encode_mjpeg(frame, quality)).decode("ascii")


def fallback_chain(start: int) -> tuple[int, ...]:
    """``start`` followed by the standard fallbacks below it, highest first."""
    return tuple(
        dict.fromkeys(q for q in (start, *QUALITY_FALLBACK_CHAIN) if q <= start)
    )


def encode_mjpeg_fit(
    frame: np.ndarray,
    max_bytes: int = DEFAULT_SLOT_SIZE,
    quality_chain: tuple[int, ...] = QUALITY_FALLBACK_CHAIN,
) -> tuple[bytes, int]:
    """Encode at the first quality in ``quality_chain`` that fits ``max_bytes``.

    The RGB image is built once and re-saved per quality step.

    Returns:
        (jpeg_bytes, quality_used)

    Raises:
        ValueError: Empty chain, or still too large at the last quality.
    """
    if not quality_chain:
        raise ValueError("quality_chain must not be empty")
    img = _rgb_image(frame)
    data = b""
    for q in quality_chain:
        data = _save_jpeg(img, q)
        if len(data) <= max_bytes:
            return data, q
    raise ValueError(
        f"MJPEG frame ({len(data)} bytes) exceeds {max_bytes} bytes "
        f"even at quality {quality_chain[-1]}"
    )


def decode_mjpeg(data: bytes) -> np.ndarray:
    """Decode JPEG bytes back to an (H, W, 3) array."""
    with Image.open(io.BytesIO(data)) as img:
        return np.array(img.convert("RGB"))
