#!/usr/bin/env python3
"""
Pixelsort — interactive viewer

Opens the image in a pygame window and re-sorts it live as the threshold
moves.

Keys:
    Left / Right   threshold down / up (dual mode: slide the window)
    [ / ]          low bound down / up (dual mode)
    - / =          high bound down / up (dual mode)
    Esc / Q        quit

Usage:
    python viewer.py birds.png
    python viewer.py birds.png --channel red --threshold 80
    python viewer.py birds.png --low 40 --high 200 --descending
"""

import argparse
import logging
import sys

import numpy as np

try:
    import pygame
except ImportError:
    pygame = None

from diagnostics import setup_console_logging
from engine.config import DEFAULT_THRESHOLD, Channel, ConfigError, SortConfig
from engine.debounce import DEFAULT_DEBOUNCE_MS
from engine.orchestrator import FrameOrchestrator
from engine.session import SortSession
from engine.state import ControlEvent
from imaging.loader import ImageLoadError, load_image

logger = logging.getLogger(__name__)

KEY_BINDINGS = {
    "left": ControlEvent.DECREASE,
    "right": ControlEvent.INCREASE,
    "[": ControlEvent.DECREASE_LOW,
    "]": ControlEvent.INCREASE_LOW,
    "-": ControlEvent.DECREASE_HIGH,
    "=": ControlEvent.INCREASE_HIGH,
    "escape": ControlEvent.EXIT,
    "q": ControlEvent.EXIT,
}

# Held keys repeat; the session debounce coalesces the extra triggers
KEY_REPEAT_DELAY_MS = 250
KEY_REPEAT_INTERVAL_MS = 15

HUD_COLOR = (230, 230, 230)


def event_for_key(key_name: str) -> ControlEvent | None:
    """Map a pygame key name to a control event (None = unbound)."""
    return KEY_BINDINGS.get(key_name.lower())


def hud_text(state: dict) -> str:
    if "threshold" in state:
        bounds = f"threshold {state['threshold']}"
    else:
        bounds = f"low {state['low']}  high {state['high']}"
    return f"{state['channel']}  {bounds}"


class Viewer:
    """pygame display surface driven by a SortSession."""

    def __init__(self, session: SortSession, title: str = "Pixelsort"):
        if pygame is None:
            raise RuntimeError(
                "pygame required for the viewer. Install: pip install pygame"
            )
        self.session = session
        self.title = title
        self.running = False
        self._screen = None
        self._font = None

    def init_display(self):
        pygame.init()
        self._screen = pygame.display.set_mode(
            (self.session.width, self.session.height)
        )
        pygame.display.set_caption(self.title)
        pygame.key.set_repeat(KEY_REPEAT_DELAY_MS, KEY_REPEAT_INTERVAL_MS)
        self._font = pygame.font.SysFont("monospace", 14)

    def present(self, frame: np.ndarray):
        """Blit an output buffer (RGB or RGBA) and flip."""
        surface = pygame.surfarray.make_surface(
            np.ascontiguousarray(frame[:, :, :3].swapaxes(0, 1))
        )
        self._screen.blit(surface, (0, 0))
        text = hud_text(self.session.state.describe())
        label = self._font.render(text, True, HUD_COLOR)
        self._screen.blit(label, (10, 10))
        pygame.display.flip()

    def _handle_event(self, event) -> bool:
        """Returns True when the frame changed and needs presenting."""
        if event.type == pygame.QUIT:
            self.running = False
            return False
        if event.type != pygame.KEYDOWN:
            return False
        control = event_for_key(pygame.key.name(event.key))
        if control is None:
            return False
        update = self.session.handle(control)
        if update.closed:
            self.running = False
        return update.changed

    def run(self) -> int:
        self.init_display()
        self.running = True
        try:
            self.present(self.session.render())
            while self.running:
                if self._handle_event(pygame.event.wait()):
                    self.present(self.session.frame)
        except pygame.error as e:
            logger.error("Display failure, ending session: %s", e)
            return 1
        except KeyboardInterrupt:
            pass
        finally:
            self.session.close()
            if pygame.get_init():
                pygame.quit()
        return 0


def build_config(args: argparse.Namespace) -> SortConfig:
    return SortConfig.from_params(
        {
            "channel": args.channel,
            "threshold": args.threshold,
            "low": args.low,
            "high": args.high,
            "descending": args.descending,
        }
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Interactive pixel-sort viewer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("image", help="Image file (png, jpg, ...)")
    parser.add_argument(
        "--channel",
        default="blue",
        choices=[c.name.lower() for c in Channel],
        help="Channel used for masking and sorting (default: blue)",
    )
    parser.add_argument("--threshold", type=int, default=DEFAULT_THRESHOLD)
    parser.add_argument("--low", type=int, help="Dual mode low bound (needs --high)")
    parser.add_argument("--high", type=int, help="Dual mode high bound (needs --low)")
    parser.add_argument("--descending", action="store_true")
    parser.add_argument("--debounce-ms", type=float, default=DEFAULT_DEBOUNCE_MS)
    parser.add_argument(
        "--workers", type=int, help="Worker threads (default: CPU count)"
    )
    parser.add_argument("--seed", type=int, help="Fix the shuffle RNG")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_console_logging(verbose=args.verbose)

    try:
        config = build_config(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    # Load before any window exists; a bad image is fatal
    try:
        frame = load_image(args.image)
    except ImageLoadError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    session = SortSession(
        frame,
        config,
        orchestrator=FrameOrchestrator(max_workers=args.workers),
        debounce_ms=args.debounce_ms,
        seed=args.seed,
    )
    # Session was handed an orchestrator, so it won't close the pool itself
    try:
        return Viewer(session, title=f"Pixelsort: {args.image}").run()
    finally:
        session.orchestrator.close()


if __name__ == "__main__":
    sys.exit(main())
