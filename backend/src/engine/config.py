"""Sort configuration — channel selection and threshold predicate.

One ``SortConfig`` is resolved per recompute. It names the channel used for
both masking and sorting, the threshold form (single cutoff or low/high
window), the sort direction and the output pixel layout.
"""

from dataclasses import dataclass, field, replace
from enum import IntEnum

DEFAULT_CHANNEL = 2  # blue
DEFAULT_THRESHOLD = 100
CHANNEL_MIN = 0
CHANNEL_MAX = 255


class ConfigError(ValueError):
    """Raised when a sort configuration is invalid."""


class Channel(IntEnum):
    RED = 0
    GREEN = 1
    BLUE = 2
    LUMA = 3

    @classmethod
    def parse(cls, value) -> "Channel":
        """Accept an index (0-3) or a name ("red", "blue", "luma", ...)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ConfigError(f"unknown channel: {value!r}") from None
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"channel must be an int or name, got {value!r}")
        try:
            return cls(value)
        except ValueError:
            raise ConfigError(
                f"channel index {value} out of range (0-{max(cls)})"
            ) from None


def _check_byte(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an int, got {value!r}")
    if not CHANNEL_MIN <= value <= CHANNEL_MAX:
        raise ConfigError(f"{name} {value} outside {CHANNEL_MIN}-{CHANNEL_MAX}")
    return value


@dataclass(frozen=True)
class SingleThreshold:
    """Sortable iff channel value > cutoff."""

    cutoff: int = DEFAULT_THRESHOLD

    def __post_init__(self):
        _check_byte("cutoff", self.cutoff)


@dataclass(frozen=True)
class DualThreshold:
    """Sortable iff channel value < low or > high.

    ``low <= high`` is not enforced. With ``low > high`` the excluded window
    is empty and every pixel is sortable.
    """

    low: int
    high: int

    def __post_init__(self):
        _check_byte("low", self.low)
        _check_byte("high", self.high)

    @property
    def degenerate(self) -> bool:
        return self.low > self.high


Threshold = SingleThreshold | DualThreshold


@dataclass(frozen=True)
class SortConfig:
    channel: Channel = Channel(DEFAULT_CHANNEL)
    threshold: Threshold = field(default_factory=SingleThreshold)
    descending: bool = False
    output_channels: int = 3

    def __post_init__(self):
        object.__setattr__(self, "channel", Channel.parse(self.channel))
        if not isinstance(self.threshold, (SingleThreshold, DualThreshold)):
            raise ConfigError(f"unsupported threshold: {self.threshold!r}")
        if self.output_channels not in (3, 4):
            raise ConfigError(
                f"output_channels must be 3 or 4, got {self.output_channels}"
            )

    def with_threshold(self, threshold: Threshold) -> "SortConfig":
        return replace(self, threshold=threshold)

    def describe(self) -> dict:
        """JSON-friendly view, used by the sidecar and log lines."""
        info = {
            "channel": self.channel.name.lower(),
            "descending": self.descending,
            "output_channels": self.output_channels,
        }
        if isinstance(self.threshold, DualThreshold):
            info["low"] = self.threshold.low
            info["high"] = self.threshold.high
        else:
            info["threshold"] = self.threshold.cutoff
        return info

    @classmethod
    def from_params(cls, params: dict) -> "SortConfig":
        """Build a config from sidecar/CLI params.

        Keys: ``channel``, ``threshold`` or ``low``+``high``, ``descending``,
        ``alpha``. Missing keys fall back to module defaults.

        Raises:
            ConfigError: On any out-of-range or malformed value.
        """
        has_low = params.get("low") is not None
        has_high = params.get("high") is not None
        if has_low != has_high:
            raise ConfigError("low and high must be given together")
        if has_low:
            threshold: Threshold = DualThreshold(
                _as_int("low", params["low"]), _as_int("high", params["high"])
            )
        else:
            threshold = SingleThreshold(
                _as_int("threshold", params.get("threshold", DEFAULT_THRESHOLD))
            )
        return cls(
            channel=Channel.parse(params.get("channel", DEFAULT_CHANNEL)),
            threshold=threshold,
            descending=bool(params.get("descending", False)),
            output_channels=4 if params.get("alpha", False) else 3,
        )


def _as_int(name: str, value) -> int:
    # JSON transports numbers as floats sometimes; accept integral floats only
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an int, got {value!r}")
    return value
