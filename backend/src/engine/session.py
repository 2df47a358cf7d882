"""Interactive sort session — control events in, output buffers out.

Holds the immutable source frame and the current ThresholdState. Each
accepted control event produces a new state and a synchronous recompute.
Events arriving inside the debounce window are dropped, and a lock keeps
recomputes strictly serial.
"""

import logging
import threading
from dataclasses import dataclass

import numpy as np

from engine.config import SortConfig
from engine.debounce import DEFAULT_DEBOUNCE_MS, Debouncer
from engine.frame import check_frame
from engine.orchestrator import FrameOrchestrator
from engine.state import ControlEvent, ThresholdState

logger = logging.getLogger(__name__)

_EVENT_LOG = {
    ControlEvent.INCREASE: "Increasing threshold",
    ControlEvent.DECREASE: "Reducing threshold",
    ControlEvent.INCREASE_LOW: "Increasing low bound",
    ControlEvent.DECREASE_LOW: "Reducing low bound",
    ControlEvent.INCREASE_HIGH: "Increasing high bound",
    ControlEvent.DECREASE_HIGH: "Reducing high bound",
}


@dataclass
class SessionUpdate:
    state: ThresholdState
    frame: np.ndarray | None
    changed: bool
    closed: bool = False


class SortSession:
    def __init__(
        self,
        source: np.ndarray,
        config: SortConfig,
        orchestrator: FrameOrchestrator | None = None,
        debounce_ms: float = DEFAULT_DEBOUNCE_MS,
        seed: int | None = None,
    ):
        # Read-only view; the caller's array keeps its own flags
        self.source = check_frame(source).view()
        self.source.setflags(write=False)
        self.state = ThresholdState(config)
        self.debouncer = Debouncer(debounce_ms)
        self.seed = seed
        self.closed = False
        self.frame: np.ndarray | None = None
        self.render_count = 0
        self._owns_orchestrator = orchestrator is None
        self.orchestrator = orchestrator or FrameOrchestrator()
        self._render_lock = threading.Lock()

    @property
    def width(self) -> int:
        return self.source.shape[1]

    @property
    def height(self) -> int:
        return self.source.shape[0]

    def render(self) -> np.ndarray:
        """Recompute the output for the current state (blocking)."""
        with self._render_lock:
            self.frame = self.orchestrator.render(
                self.source, self.state.config, seed=self.seed
            )
            self.render_count += 1
            return self.frame

    def handle(self, event: ControlEvent) -> SessionUpdate:
        """Apply a control event; recompute if it changed the threshold."""
        if event is ControlEvent.EXIT:
            self.closed = True
            return SessionUpdate(self.state, self.frame, changed=False, closed=True)

        new_state = self.state.apply(event)
        if new_state == self.state:
            logger.debug("Event %s saturated, nothing to do", event.value)
            return SessionUpdate(self.state, self.frame, changed=False)

        if not self.debouncer.should_fire():
            logger.debug("Event %s debounced", event.value)
            return SessionUpdate(self.state, self.frame, changed=False)

        logger.info(_EVENT_LOG[event])
        self.state = new_state
        frame = self.render()
        logger.info("Threshold: %s", self.state.describe())
        return SessionUpdate(self.state, frame, changed=True)

    def close(self):
        self.closed = True
        if self._owns_orchestrator:
            self.orchestrator.close()
