"""Ring buffer shared memory writer — the display surface for sorted frames.

Layout: a 64-byte header followed by ``ring_size`` slots. Header is
``<IIIIII`` (write_index, frame_count, slot_size, ring_size, width, height).
Each slot holds a little-endian u32 length then the JPEG bytes.
"""

import logging
import mmap
import os
import struct
from pathlib import Path

import numpy as np

from engine.cache import DEFAULT_SLOT_SIZE, encode_mjpeg_fit, fallback_chain

logger = logging.getLogger(__name__)

HEADER_SIZE = 64
DEFAULT_RING_SIZE = 4


def default_shm_path() -> str:
    return os.environ.get(
        "PIXELSORT_SHM_PATH",
        str(Path.home() / ".cache" / "pixelsort" / "frames"),
    )


class SharedMemoryWriter:
    def __init__(
        self,
        path: str | None = None,
        ring_size: int = DEFAULT_RING_SIZE,
        slot_size: int = DEFAULT_SLOT_SIZE,
    ):
        self.path = path or default_shm_path()
        self.ring_size = ring_size
        self.slot_size = slot_size
        self.total_size = HEADER_SIZE + (ring_size * slot_size)
        self.write_index = 0
        self.frame_count = 0
        self.last_quality: int | None = None
        # Stale files from a previous run are truncated
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self.fd = os.open(self.path, os.O_RDWR | os.O_CREAT | os.O_TRUNC)
        os.ftruncate(self.fd, self.total_size)
        self.buf = mmap.mmap(self.fd, self.total_size)
        self._write_header(0, 0)

    def _write_header(self, width: int, height: int):
        struct.pack_into(
            "<IIIIII",
            self.buf,
            0,
            self.write_index,
            self.frame_count,
            self.slot_size,
            self.ring_size,
            width,
            height,
        )

    def write_frame(self, frame: np.ndarray, quality: int = 95) -> int:
        """Encode an RGB/RGBA frame into the next slot. Returns its write index.

        Quality steps down from ``quality`` until the JPEG fits the slot.

        Raises:
            ValueError: Frame does not fit even at the lowest quality.
        """
        data, used = encode_mjpeg_fit(
            frame, self.slot_size - 4, fallback_chain(quality)
        )
        if used != quality:
            logger.debug("Frame encoded at quality %d to fit slot", used)
        self.last_quality = used

        slot = self.write_index % self.ring_size
        offset = HEADER_SIZE + (slot * self.slot_size)
        struct.pack_into("<I", self.buf, offset, len(data))
        self.buf[offset + 4 : offset + 4 + len(data)] = data
        self.write_index += 1
        self.frame_count += 1
        h, w = frame.shape[:2]
        self._write_header(w, h)
        return self.write_index - 1

    def read_latest(self) -> bytes | None:
        """Return the JPEG bytes of the most recent frame, or None if empty."""
        write_index = struct.unpack_from("<I", self.buf, 0)[0]
        if write_index == 0:
            return None
        slot = (write_index - 1) % self.ring_size
        offset = HEADER_SIZE + (slot * self.slot_size)
        size = struct.unpack_from("<I", self.buf, offset)[0]
        return bytes(self.buf[offset + 4 : offset + 4 + size])

    def close(self):
        self.buf.close()
        os.close(self.fd)
