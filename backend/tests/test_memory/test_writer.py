"""Tests for the shared memory ring buffer display surface."""

import os
import struct
import tempfile

import numpy as np
import pytest

from conftest import make_frame
from engine.cache import decode_mjpeg, encode_mjpeg
from engine.config import SortConfig
from engine.orchestrator import render_frame
from memory.writer import HEADER_SIZE, SharedMemoryWriter, default_shm_path


@pytest.fixture
def shm_path():
    path = os.path.join(tempfile.mkdtemp(), "test_frames")
    yield path
    if os.path.exists(path):
        os.unlink(path)


def _solid(r=128, g=64, b=32, h=120, w=160):
    frame = np.zeros((h, w, 3), dtype=np.uint8)
    frame[:, :, 0] = r
    frame[:, :, 1] = g
    frame[:, :, 2] = b
    return frame


def test_slots_hold_jpeg(shm_path):
    w = SharedMemoryWriter(path=shm_path, ring_size=4)
    for i in range(4):
        w.write_frame(_solid(r=i * 60))

    with open(shm_path, "rb") as f:
        raw = f.read()

    for slot in range(4):
        offset = HEADER_SIZE + (slot * w.slot_size)
        size = struct.unpack_from("<I", raw, offset)[0]
        assert size > 0
        assert raw[offset + 4 : offset + 6] == b"\xff\xd8", f"Slot {slot} missing JPEG header"
    w.close()


def test_header_tracks_index_and_dimensions(shm_path):
    w = SharedMemoryWriter(path=shm_path, ring_size=4)
    for _ in range(10):
        w.write_frame(_solid(h=30, w=50))
    header = struct.unpack_from("<IIIIII", w.buf, 0)
    assert header[0] == 10  # write_index
    assert header[1] == 10  # frame_count
    assert header[3] == 4  # ring_size
    assert header[4:] == (50, 30)  # width, height
    w.close()


def test_stale_file_replaced(shm_path):
    os.makedirs(os.path.dirname(shm_path), exist_ok=True)
    with open(shm_path, "wb") as f:
        f.write(b"stale data" * 100)

    w = SharedMemoryWriter(path=shm_path, ring_size=4)
    header = struct.unpack_from("<IIIIII", w.buf, 0)
    assert header[0] == 0
    assert header[1] == 0
    assert w.read_latest() is None
    w.close()


def test_sorted_frame_roundtrip(shm_path):
    out = render_frame(make_frame(), SortConfig(output_channels=4), seed=0)
    w = SharedMemoryWriter(path=shm_path, ring_size=2)
    index = w.write_frame(out)
    assert index == 0
    decoded = decode_mjpeg(w.read_latest())
    assert decoded.shape == out.shape[:2] + (3,)
    w.close()


def test_quality_steps_down_to_fit(shm_path):
    rng = np.random.default_rng(1)
    noise = rng.integers(0, 256, size=(256, 256, 3), dtype=np.uint8)
    q95 = len(encode_mjpeg(noise, quality=95))
    w = SharedMemoryWriter(path=shm_path, ring_size=1, slot_size=q95)
    w.write_frame(noise)
    assert w.last_quality is not None and w.last_quality < 95
    w.close()


def test_oversized_frame_raises(shm_path):
    w = SharedMemoryWriter(path=shm_path, ring_size=2, slot_size=1024)
    noise = np.random.default_rng(2).integers(0, 256, (480, 640, 3), dtype=np.uint8)
    with pytest.raises(ValueError, match="exceeds"):
        w.write_frame(noise)
    w.close()


def test_default_path_env_override(monkeypatch, tmp_path):
    monkeypatch.setenv("PIXELSORT_SHM_PATH", str(tmp_path / "frames"))
    assert default_shm_path() == str(tmp_path / "frames")
