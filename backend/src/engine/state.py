"""Threshold state and control events.

The state is an immutable value: every control event yields a new state,
which the session hands to the orchestrator. Adjustments saturate at 0/255
and never raise.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum

from engine.config import (
    CHANNEL_MAX,
    CHANNEL_MIN,
    DualThreshold,
    SingleThreshold,
    SortConfig,
)

logger = logging.getLogger(__name__)


class ControlEvent(Enum):
    INCREASE = "increase"
    DECREASE = "decrease"
    INCREASE_LOW = "increase_low"
    DECREASE_LOW = "decrease_low"
    INCREASE_HIGH = "increase_high"
    DECREASE_HIGH = "decrease_high"
    EXIT = "exit"

    @classmethod
    def parse(cls, value: str) -> "ControlEvent":
        """Look up an event by value ("increase_low") or name ("INCREASE_LOW")."""
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"unknown control event: {value!r}") from None


def saturating_add(value: int, delta: int) -> int:
    """Add and clamp to the byte range."""
    return max(CHANNEL_MIN, min(CHANNEL_MAX, value + delta))


@dataclass(frozen=True)
class ThresholdState:
    config: SortConfig

    def apply(self, event: ControlEvent, step: int = 1) -> "ThresholdState":
        """Return the state after ``event``. Events that don't apply are no-ops."""
        threshold = self.config.threshold
        if event is ControlEvent.EXIT:
            return self

        if isinstance(threshold, SingleThreshold):
            if event is ControlEvent.INCREASE:
                new = SingleThreshold(saturating_add(threshold.cutoff, step))
            elif event is ControlEvent.DECREASE:
                new = SingleThreshold(saturating_add(threshold.cutoff, -step))
            else:
                return self
        else:
            low, high = threshold.low, threshold.high
            if event is ControlEvent.INCREASE:
                low, high = saturating_add(low, step), saturating_add(high, step)
            elif event is ControlEvent.DECREASE:
                low, high = saturating_add(low, -step), saturating_add(high, -step)
            elif event is ControlEvent.INCREASE_LOW:
                low = saturating_add(low, step)
            elif event is ControlEvent.DECREASE_LOW:
                low = saturating_add(low, -step)
            elif event is ControlEvent.INCREASE_HIGH:
                high = saturating_add(high, step)
            elif event is ControlEvent.DECREASE_HIGH:
                high = saturating_add(high, -step)
            new = DualThreshold(low, high)
            if new.degenerate:
                logger.debug("Threshold window inverted (low=%d > high=%d)", low, high)

        if new == threshold:
            return self
        return replace(self, config=self.config.with_threshold(new))

    def describe(self) -> dict:
        return self.config.describe()
