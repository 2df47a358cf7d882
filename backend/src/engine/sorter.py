"""Segment sorter/shuffler.

Each segment is stably sorted by one channel, then the slice between 30% and
70% of its length is randomly permuted. Head and tail keep a clean gradient,
the middle turns noisy.

All segments of a row are handled in one vectorized pass:
  1. ``np.lexsort`` on (key, segment_id) sorts within segments, never across.
  2. A second key equal to each element's position, except inside the shuffle
     window where it is replaced by a uniform random value spanning the
     window. ``argsort`` of that key permutes only window elements.
"""

import math

import numpy as np

from engine.config import Channel
from engine.determinism import make_rng
from engine.frame import channel_values

SHUFFLE_START = 0.3
SHUFFLE_END = 0.7


def shuffle_bounds(n: int) -> tuple[int, int]:
    """Shuffle window [start, end) for a segment of length n.

    Rounds half away from zero: n=5 -> (2, 4), n=10 -> (3, 7).
    """
    return math.floor(n * SHUFFLE_START + 0.5), math.floor(n * SHUFFLE_END + 0.5)


def _window_bounds(lengths: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    lengths = lengths.astype(np.float64)
    start = np.floor(lengths * SHUFFLE_START + 0.5).astype(np.intp)
    end = np.floor(lengths * SHUFFLE_END + 0.5).astype(np.intp)
    return start, end


def sort_segments(
    pixels: np.ndarray,
    lengths: np.ndarray,
    channel: Channel,
    rng: np.random.Generator,
    descending: bool = False,
) -> np.ndarray:
    """Sort and shuffle consecutive segments packed into one array.

    Args:
        pixels:     (M, 3) uint8, segments laid end to end.
        lengths:    Segment lengths, summing to M.
        channel:    Sort key channel.
        rng:        Generator owned by the caller.
        descending: Sort direction.

    Returns:
        New (M, 3) array with every segment sorted then shuffled in place.
    """
    total = pixels.shape[0]
    if total == 0:
        return pixels.copy()
    lengths = np.asarray(lengths, dtype=np.intp)
    if int(lengths.sum()) != total:
        raise ValueError(f"segment lengths sum to {lengths.sum()}, expected {total}")

    seg_ids = np.repeat(np.arange(lengths.size), lengths)
    keys = channel_values(pixels, channel).astype(np.int16)
    if descending:
        keys = -keys

    # lexsort is stable; last key is primary
    order = np.lexsort((keys, seg_ids))
    ordered = pixels[order]

    offsets = np.zeros(lengths.size, dtype=np.intp)
    np.cumsum(lengths[:-1], out=offsets[1:])
    win_start, win_end = _window_bounds(lengths)

    positions = np.arange(total)
    local = positions - offsets[seg_ids]
    in_window = (local >= win_start[seg_ids]) & (local < win_end[seg_ids])
    n_window = int(np.count_nonzero(in_window))
    if n_window == 0:
        return ordered

    placement = positions.astype(np.float64)
    window_ids = seg_ids[in_window]
    window_len = (win_end - win_start)[window_ids]
    placement[in_window] = (offsets + win_start)[window_ids] + rng.random(
        n_window
    ) * window_len
    return ordered[np.argsort(placement, kind="stable")]


def sort_segment(
    segment: np.ndarray,
    channel: Channel,
    rng: np.random.Generator | None = None,
    descending: bool = False,
) -> np.ndarray:
    """Sort and shuffle a single (n, 3) segment. Returns a new array.

    Without ``rng`` a freshly seeded generator is used.
    """
    if rng is None:
        rng = make_rng()
    return sort_segments(
        segment, np.array([segment.shape[0]]), channel, rng, descending
    )
