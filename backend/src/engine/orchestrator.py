"""Frame orchestrator — fans row bands out across a thread pool.

The mask is built once per recompute. Rows are split into contiguous bands;
each band runs on a worker with its own RNG and writes only its own slice of
the freshly allocated output buffer. Results are collected in submission
order so failures surface deterministically.

Includes rolling render timing stats and a slow-render warning.
"""

import logging
import os
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from engine.config import SortConfig
from engine.determinism import spawn_rngs
from engine.frame import check_frame
from engine.mask import build_mask
from engine.rows import process_row

logger = logging.getLogger(__name__)

# Renders slower than this are logged as warnings (milliseconds)
RENDER_WARN_MS = 100

# Bands per worker; more bands smooth out uneven row costs
BANDS_PER_WORKER = 4

_render_timing: deque = deque(maxlen=100)


def record_timing(elapsed_ms: float):
    _render_timing.append(elapsed_ms)


def get_render_stats() -> dict:
    """Return p50/p95/max over the last 100 renders."""
    s = sorted(_render_timing)
    return {
        "p50": s[len(s) // 2] if s else 0,
        "p95": s[int(len(s) * 0.95)] if len(s) >= 20 else None,
        "max": max(s) if s else 0,
        "samples": len(s),
    }


def flush_timing():
    _render_timing.clear()


def _band_bounds(height: int, bands: int) -> list[tuple[int, int]]:
    edges = np.linspace(0, height, bands + 1).astype(int)
    return [(int(a), int(b)) for a, b in zip(edges[:-1], edges[1:]) if b > a]


def _render_band(
    frame: np.ndarray,
    mask: np.ndarray,
    out: np.ndarray,
    start: int,
    stop: int,
    config: SortConfig,
    rng: np.random.Generator,
) -> int:
    """Process rows [start, stop). Reads shared frame/mask, writes out[start:stop]."""
    for row_idx in range(start, stop):
        process_row(frame[row_idx], mask[row_idx], config, rng, out=out[row_idx])
    return stop - start


class FrameOrchestrator:
    """Owns the worker pool used for every recompute of a session."""

    def __init__(self, max_workers: int | None = None):
        self.max_workers = max(1, max_workers or os.cpu_count() or 1)
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="pixelsort-band"
        )

    def render(
        self, frame: np.ndarray, config: SortConfig, seed: int | None = None
    ) -> np.ndarray:
        """Produce a new output buffer for ``frame`` under ``config``.

        Args:
            frame:  (H, W, 3) uint8 source. Never modified.
            config: Resolved sort configuration.
            seed:   Optional seed; same seed + same inputs = identical output.

        Returns:
            (H, W, config.output_channels) uint8 array.

        Raises:
            ChannelLayoutError: If the frame is not (H, W, 3) uint8.
        """
        check_frame(frame)
        t0 = time.monotonic()
        height, width, _ = frame.shape
        out = np.empty((height, width, config.output_channels), dtype=np.uint8)
        if height == 0 or width == 0:
            return out

        mask = build_mask(frame, config)
        bands = _band_bounds(height, min(height, self.max_workers * BANDS_PER_WORKER))
        rngs = spawn_rngs(len(bands), seed)

        futures = [
            self._executor.submit(
                _render_band, frame, mask, out, start, stop, config, rng
            )
            for (start, stop), rng in zip(bands, rngs)
        ]
        # Re-raises the first worker exception in row order
        for future in futures:
            future.result()

        elapsed_ms = (time.monotonic() - t0) * 1000
        record_timing(elapsed_ms)
        if elapsed_ms > RENDER_WARN_MS:
            logger.warning(
                "Render of %dx%d took %.0fms (>%dms warn threshold)",
                width,
                height,
                elapsed_ms,
                RENDER_WARN_MS,
            )
        else:
            logger.debug("Render of %dx%d took %.1fms", width, height, elapsed_ms)
        return out

    def close(self):
        self._executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def render_frame(
    frame: np.ndarray,
    config: SortConfig,
    seed: int | None = None,
    max_workers: int | None = None,
) -> np.ndarray:
    """One-shot render with a temporary pool."""
    with FrameOrchestrator(max_workers=max_workers) as orchestrator:
        return orchestrator.render(frame, config, seed=seed)
