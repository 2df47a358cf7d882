"""Row segmenter and assembler.

A row is scanned left to right; every maximal run of sortable pixels is a
segment, boundary pixels pass through untouched. Segmentation and assembly
happen in the same pass: segment pixels are gathered, sorted/shuffled
together, and scattered back to their original columns.
"""

import numpy as np

from engine.config import SortConfig
from engine.sorter import sort_segments

ALPHA_OPAQUE = 255


def find_segments(mask_row: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Return (starts, ends) of every True run, ends exclusive."""
    padded = np.concatenate(([False], mask_row, [False])).astype(np.int8)
    edges = np.diff(padded)
    return np.flatnonzero(edges == 1), np.flatnonzero(edges == -1)


def process_row(
    row: np.ndarray,
    mask_row: np.ndarray,
    config: SortConfig,
    rng: np.random.Generator,
    out: np.ndarray | None = None,
) -> np.ndarray:
    """Sort/shuffle the segments of one row and assemble its output.

    Args:
        row:      (W, 3) uint8 source pixels. Not modified.
        mask_row: (W,) bool.
        config:   Channel, direction and output layout.
        rng:      Generator owned by the calling worker.
        out:      Optional (W, C) destination, C == config.output_channels.

    Returns:
        The (W, C) assembled row (``out`` when given).
    """
    width = row.shape[0]
    if out is None:
        out = np.empty((width, config.output_channels), dtype=np.uint8)
    out[:, :3] = row
    if config.output_channels == 4:
        out[:, 3] = ALPHA_OPAQUE

    starts, ends = find_segments(mask_row)
    if starts.size == 0:
        return out

    columns = np.flatnonzero(mask_row)
    out[columns, :3] = sort_segments(
        row[columns], ends - starts, config.channel, rng, config.descending
    )
    return out
