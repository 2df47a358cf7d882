"""Image buffer helpers — layout checks and channel extraction."""

import numpy as np

from engine.config import Channel

PIXEL_CHANNELS = 3

# Rec. 709 weights
LUMA_WEIGHTS = (0.2126, 0.7152, 0.0722)


class ChannelLayoutError(AssertionError):
    """Frame does not carry exactly 3 uint8 channels per pixel.

    Means the decoder and the sort engine disagree on pixel layout, which is
    a programming error rather than bad input.
    """


def check_frame(frame: np.ndarray) -> np.ndarray:
    """Assert the (H, W, 3) uint8 layout and return the frame."""
    if frame.ndim != 3 or frame.shape[2] != PIXEL_CHANNELS:
        raise ChannelLayoutError(
            f"expected (H, W, {PIXEL_CHANNELS}) frame, got shape {frame.shape}"
        )
    if frame.dtype != np.uint8:
        raise ChannelLayoutError(f"expected uint8 frame, got {frame.dtype}")
    return frame


def from_bytes(data: bytes, width: int, height: int) -> np.ndarray:
    """View a row-major RGB byte buffer as an (H, W, 3) read-only array."""
    expected = width * height * PIXEL_CHANNELS
    if len(data) != expected:
        raise ChannelLayoutError(
            f"buffer length {len(data)} != {width}x{height}x{PIXEL_CHANNELS}"
        )
    frame = np.frombuffer(data, dtype=np.uint8).reshape(height, width, 3)
    return frame


def luma(pixels: np.ndarray) -> np.ndarray:
    """Weighted luma, truncated to uint8. Works on (..., 3) arrays."""
    wr, wg, wb = LUMA_WEIGHTS
    values = (
        wr * pixels[..., 0].astype(np.float32)
        + wg * pixels[..., 1].astype(np.float32)
        + wb * pixels[..., 2].astype(np.float32)
    )
    return values.astype(np.uint8)


def channel_values(pixels: np.ndarray, channel: Channel) -> np.ndarray:
    """Per-pixel key for masking and sorting."""
    if channel == Channel.LUMA:
        return luma(pixels)
    return pixels[..., int(channel)]
