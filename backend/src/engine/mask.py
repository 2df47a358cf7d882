"""Mask builder — flags each pixel as sortable from the threshold predicate."""

import numpy as np

from engine.config import DualThreshold, SortConfig
from engine.frame import channel_values, check_frame


def build_mask(frame: np.ndarray, config: SortConfig) -> np.ndarray:
    """Return an (H, W) bool mask, True where the pixel belongs to a sortable run.

    Single threshold: value > cutoff.
    Dual threshold:   value < low or value > high.
    """
    values = channel_values(check_frame(frame), config.channel)
    threshold = config.threshold
    if isinstance(threshold, DualThreshold):
        return (values < threshold.low) | (values > threshold.high)
    return values > threshold.cutoff
