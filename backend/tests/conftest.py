import os
import shutil
import threading
import time
import uuid
from pathlib import Path

import numpy as np
import pytest
import zmq
from PIL import Image

from memory.writer import SharedMemoryWriter
from zmq_server import ZMQServer

FIXTURE_ROOT = Path.home() / ".cache" / "pixelsort"


def make_frame(h=64, w=96, seed=42):
    """Random RGB frame (worst case for segment count)."""
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, (h, w, 3), dtype=np.uint8)


def make_gradient(h=48, w=64):
    """Smooth frame: R ramps across, B ramps down, G constant."""
    frame = np.zeros((h, w, 3), dtype=np.uint8)
    frame[:, :, 0] = np.linspace(0, 255, w, dtype=np.uint8)
    frame[:, :, 1] = 128
    frame[:, :, 2] = np.linspace(255, 0, w, dtype=np.uint8)
    return frame


def _wait_for_server(srv: ZMQServer, timeout: float = 2.0) -> bool:
    """Ping the server until it responds or timeout expires."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.setsockopt(zmq.LINGER, 0)
    sock.setsockopt(zmq.RCVTIMEO, 500)
    sock.connect(f"tcp://127.0.0.1:{srv.port}")
    deadline = time.monotonic() + timeout
    alive = False
    while time.monotonic() < deadline:
        try:
            sock.send_json({"cmd": "ping", "id": "health", "_token": srv.token})
            resp = sock.recv_json()
            if resp.get("status") == "alive":
                alive = True
                break
        except zmq.Again:
            time.sleep(0.05)
    sock.close()
    ctx.term()
    return alive


@pytest.fixture(scope="session")
def _shm_dir(tmp_path_factory):
    """Keep shared-memory frame files out of the real cache dir."""
    d = tmp_path_factory.mktemp("shm")
    previous = os.environ.get("PIXELSORT_SHM_PATH")
    os.environ["PIXELSORT_SHM_PATH"] = str(d / "frames")
    yield d
    if previous is None:
        os.environ.pop("PIXELSORT_SHM_PATH", None)
    else:
        os.environ["PIXELSORT_SHM_PATH"] = previous


@pytest.fixture(scope="session")
def _zmq_server_session(_shm_dir):
    """Start ONE ZMQ server per session."""
    srv = ZMQServer(max_workers=2)
    thread = threading.Thread(target=srv.run, daemon=True)
    thread.start()
    if not _wait_for_server(srv):
        pytest.skip("ZMQ server failed to start within 2s")
    yield srv
    srv.running = False
    # Wait for poller timeout cycle to complete
    time.sleep(0.6)


@pytest.fixture
def zmq_server(_zmq_server_session):
    """Function-scoped wrapper: resets state between tests, shares session server."""
    _zmq_server_session.reset_state()
    _zmq_server_session.running = True
    yield _zmq_server_session


@pytest.fixture
def zmq_server_disposable(tmp_path):
    """Fresh server for shutdown tests that tear down sockets/context."""
    srv = ZMQServer(max_workers=1)
    srv.shm_writer = SharedMemoryWriter(path=str(tmp_path / "frames"))
    thread = threading.Thread(target=srv.run, daemon=True)
    thread.start()
    if not _wait_for_server(srv):
        pytest.skip("ZMQ server failed to start within 2s")
    yield srv
    srv.running = False
    time.sleep(0.6)


class AuthenticatedZmqClient:
    """Wraps a ZMQ REQ socket and auto-injects the auth token."""

    def __init__(self, sock: zmq.Socket, token: str):
        self._sock = sock
        self._token = token

    def send_json(self, msg: dict) -> None:
        msg["_token"] = self._token
        self._sock.send_json(msg)

    def recv_json(self) -> dict:
        return self._sock.recv_json()

    def request(self, msg: dict) -> dict:
        self.send_json(msg)
        return self.recv_json()

    def close(self) -> None:
        self._sock.close()


@pytest.fixture
def zmq_client(zmq_server):
    """REQ socket connected to the test server (auto-injects auth token)."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.connect(f"tcp://127.0.0.1:{zmq_server.port}")
    client = AuthenticatedZmqClient(sock, zmq_server.token)
    yield client
    sock.close()
    ctx.term()


@pytest.fixture
def zmq_ping_client(zmq_server):
    """REQ socket connected to the test server's ping port."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.connect(f"tcp://127.0.0.1:{zmq_server.ping_port}")
    client = AuthenticatedZmqClient(sock, zmq_server.token)
    yield client
    sock.close()
    ctx.term()


@pytest.fixture
def home_tmp_path():
    """tmp_path equivalent under ~/ for tests that go through validate_image_path."""
    base = FIXTURE_ROOT / "test-tmp"
    base.mkdir(parents=True, exist_ok=True)
    d = base / f"test_{uuid.uuid4().hex[:8]}"
    d.mkdir()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture(scope="session")
def synthetic_image_path():
    """A 96x64 PNG under ~/ (required by validate_image_path)."""
    fixture_dir = FIXTURE_ROOT / "test-fixtures"
    fixture_dir.mkdir(parents=True, exist_ok=True)
    path = fixture_dir / f"test_{uuid.uuid4().hex[:8]}.png"
    Image.fromarray(make_frame(64, 96)).save(path)
    yield str(path)
    path.unlink(missing_ok=True)
