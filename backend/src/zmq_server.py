import json
import logging
import time
import uuid

import sentry_sdk
import zmq

from engine.cache import encode_b64
from engine.config import ConfigError, SortConfig
from engine.debounce import DEFAULT_DEBOUNCE_MS
from engine.orchestrator import FrameOrchestrator, flush_timing, get_render_stats
from engine.session import SortSession
from engine.state import ControlEvent
from imaging.loader import ImageLoadError, load_image
from memory.writer import SharedMemoryWriter
from security import validate_image_path

logger = logging.getLogger(__name__)


def _parse_seed(value) -> int | None:
    """Shuffle seed from a request: absent, or a non-negative int."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"seed must be a non-negative int, got {value!r}")
    return value


class ZMQServer:
    def __init__(self, max_workers: int | None = None):
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.REP)
        self.socket.setsockopt(zmq.MAXMSGSIZE, 1_048_576)  # 1 MB limit
        self.port = self.socket.bind_to_random_port("tcp://127.0.0.1")
        # Dedicated ping socket — never blocked by heavy recomputes
        self.ping_socket = self.context.socket(zmq.REP)
        self.ping_socket.setsockopt(zmq.MAXMSGSIZE, 4096)  # 4 KB limit (pings only)
        self.ping_port = self.ping_socket.bind_to_random_port("tcp://127.0.0.1")
        # Auth token — prevents unauthorized ZMQ access from other local processes
        self.token = str(uuid.uuid4())
        self.start_time = time.time()
        self.running = False
        self.shm_writer: SharedMemoryWriter | None = None
        self.orchestrator = FrameOrchestrator(max_workers=max_workers)
        self.session: SortSession | None = None
        self.image_path: str | None = None
        self.last_frame_ms = 0.0

    def reset_state(self):
        """Clear accumulated state without closing sockets/context.

        Used by session-scoped test fixtures to reset between tests
        while keeping the server running.
        """
        self._close_session()

        if self.shm_writer is not None:
            self.shm_writer.close()
            self.shm_writer = None

        flush_timing()
        self.last_frame_ms = 0.0

    def _close_session(self):
        if self.session is not None:
            self.session.close()
        self.session = None
        self.image_path = None

    def _ensure_shm(self) -> SharedMemoryWriter:
        if self.shm_writer is None:
            self.shm_writer = SharedMemoryWriter()
        return self.shm_writer

    def _validate_token(self, message: dict) -> str | None:
        """Validate auth token. Returns error message or None if valid."""
        msg_token = message.get("_token")
        if msg_token != self.token:
            return "invalid or missing auth token"
        return None

    def _make_ping_response(self, msg_id: str | None) -> dict:
        return {
            "id": msg_id,
            "status": "alive",
            "uptime_s": round(time.time() - self.start_time, 1),
            "last_frame_ms": self.last_frame_ms,
        }

    def handle_message(self, message: dict) -> dict:
        cmd = message.get("cmd")
        msg_id = message.get("id")

        # Auth token required on all commands
        token_err = self._validate_token(message)
        if token_err:
            return {"id": msg_id, "ok": False, "error": token_err}

        if cmd == "ping":
            return self._make_ping_response(msg_id)
        elif cmd == "shutdown":
            self.running = False
            return {"id": msg_id, "ok": True}
        elif cmd == "load_image":
            return self._handle_load_image(message, msg_id)
        elif cmd == "control":
            return self._handle_control(message, msg_id)
        elif cmd == "render":
            return self._handle_render(msg_id)
        elif cmd == "get_state":
            return self._handle_get_state(msg_id)
        elif cmd == "render_stats":
            return {"id": msg_id, "ok": True, "stats": get_render_stats()}
        elif cmd == "flush_state":
            flush_timing()
            return {"id": msg_id, "ok": True}
        else:
            return {"id": msg_id, "ok": False, "error": f"unknown: {cmd}"}

    def _no_session(self, msg_id: str | None) -> dict:
        return {"id": msg_id, "ok": False, "error": "no image loaded"}

    def _publish(self, frame) -> int:
        """Hand a finished buffer to the display surface (shared memory)."""
        return self._ensure_shm().write_frame(frame)

    def _handle_load_image(self, message: dict, msg_id: str | None) -> dict:
        path = message.get("path")
        if not path:
            return {"id": msg_id, "ok": False, "error": "missing path"}

        # SEC-5: Validate path
        errors = validate_image_path(path)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        try:
            config = SortConfig.from_params(message.get("params", {}))
            debounce_ms = float(message.get("debounce_ms", DEFAULT_DEBOUNCE_MS))
            if debounce_ms < 0:
                raise ValueError(f"debounce_ms must be >= 0, got {debounce_ms}")
            seed = _parse_seed(message.get("seed"))
        except (ConfigError, TypeError, ValueError) as e:
            return {"id": msg_id, "ok": False, "error": str(e)}

        try:
            frame = load_image(path)
        except ImageLoadError as e:
            logger.warning("Image load failed: %s", e)
            return {"id": msg_id, "ok": False, "error": "Failed to load image"}

        # The previous image stays gone on failure; the new one is only
        # installed once its first frame has been published
        self._close_session()
        session = SortSession(
            frame,
            config,
            orchestrator=self.orchestrator,
            debounce_ms=debounce_ms,
            seed=seed,
        )
        try:
            t0 = time.time()
            frame_index = self._publish(session.render())
            self.last_frame_ms = round((time.time() - t0) * 1000, 2)
        except Exception as e:
            session.close()
            sentry_sdk.capture_exception(e)
            logger.error("Load image handler error: %s", type(e).__name__)
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}

        self.session = session
        self.image_path = path
        return {
            "id": msg_id,
            "ok": True,
            "width": session.width,
            "height": session.height,
            "frame_index": frame_index,
            "state": session.state.describe(),
        }

    def _handle_control(self, message: dict, msg_id: str | None) -> dict:
        if self.session is None:
            return self._no_session(msg_id)

        try:
            event = ControlEvent.parse(str(message.get("event", "")))
        except ValueError as e:
            return {"id": msg_id, "ok": False, "error": str(e)}

        try:
            t0 = time.time()
            update = self.session.handle(event)
            response = {
                "id": msg_id,
                "ok": True,
                "changed": update.changed,
                "closed": update.closed,
                "state": update.state.describe(),
            }
            if update.changed:
                response["frame_index"] = self._publish(update.frame)
                self.last_frame_ms = round((time.time() - t0) * 1000, 2)
                response["render_ms"] = self.last_frame_ms
            if update.closed:
                self._close_session()
            return response
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("Control handler error: %s", type(e).__name__)
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}

    def _handle_render(self, msg_id: str | None) -> dict:
        if self.session is None:
            return self._no_session(msg_id)

        try:
            t0 = time.time()
            output = self.session.render()
            frame_b64 = encode_b64(output)
            self.last_frame_ms = round((time.time() - t0) * 1000, 2)
            return {
                "id": msg_id,
                "ok": True,
                "frame_data": frame_b64,
                "width": self.session.width,
                "height": self.session.height,
                "state": self.session.state.describe(),
            }
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("Render handler error: %s", type(e).__name__)
            return {"id": msg_id, "ok": False, "error": "Internal processing error"}

    def _handle_get_state(self, msg_id: str | None) -> dict:
        if self.session is None:
            return self._no_session(msg_id)
        return {
            "id": msg_id,
            "ok": True,
            "path": self.image_path,
            "width": self.session.width,
            "height": self.session.height,
            "state": self.session.state.describe(),
            "render_count": self.session.render_count,
            "debounced": self.session.debouncer.suppressed,
        }

    def run(self):
        self.running = True
        poller = zmq.Poller()
        poller.register(self.socket, zmq.POLLIN)
        poller.register(self.ping_socket, zmq.POLLIN)
        while self.running:
            events = dict(poller.poll(timeout=500))

            # Handle ping socket first (lightweight, never blocked)
            if self.ping_socket in events:
                try:
                    raw = self.ping_socket.recv()
                    message = json.loads(raw)
                    msg_id = message.get("id")
                    token_err = self._validate_token(message)
                    if token_err:
                        self.ping_socket.send_json(
                            {"id": msg_id, "ok": False, "error": token_err}
                        )
                    else:
                        self.ping_socket.send_json(self._make_ping_response(msg_id))
                except json.JSONDecodeError:
                    self.ping_socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                except zmq.ZMQError:
                    logger.error("ZMQ error on ping socket")
                    break  # socket state is unrecoverable

            # Handle main command socket
            if self.socket in events:
                try:
                    raw = self.socket.recv()
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    # MUST send reply before next recv (REP protocol)
                    self.socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                    continue
                except zmq.ZMQError:
                    logger.error("ZMQ error on main socket")
                    break

                try:
                    response = self.handle_message(message)
                except Exception as e:
                    sentry_sdk.capture_exception(e)
                    logger.error("Unhandled handler error: %s", type(e).__name__)
                    response = {"ok": False, "error": "Internal processing error"}

                self.socket.send_json(response)
        self.close()

    def close(self):
        self._close_session()
        self.orchestrator.close()
        if self.shm_writer is not None:
            self.shm_writer.close()
        self.ping_socket.close()
        self.socket.close()
        self.context.term()
