"""Pixelsort sidecar entry point.

Prints the ports and auth token for the parent process, then serves
control requests until ``shutdown``.
"""

import logging
import os
import platform
from pathlib import Path

import sentry_sdk

from _version import __version__
from diagnostics import init_diagnostics
from security import MAX_PIXELS, strip_pii
from zmq_server import ZMQServer

logger = logging.getLogger(__name__)

CONSENT_PATH = Path("~/.pixelsort/telemetry_consent").expanduser()

# Source RGB + RGBA output + mask + decode copies, with headroom for sort
# temporaries. Sized so the largest accepted image still fits.
BYTES_PER_PIXEL_BUDGET = 32
ADDRESS_SPACE_FLOOR = 1024 * 1024 * 1024  # 1 GB


def _telemetry_consented() -> bool:
    try:
        return CONSENT_PATH.read_text().strip() == "yes"
    except OSError:
        return False


def init_sentry():
    """Errors are reported only after the user opted in."""
    dsn = os.environ.get("SENTRY_DSN", "") if _telemetry_consented() else ""
    sentry_sdk.init(
        dsn=dsn,
        release=f"pixelsort@{__version__}",
        environment=os.environ.get("SENTRY_ENV", "development"),
        traces_sample_rate=0.1,
        before_send=strip_pii,
        max_breadcrumbs=50,
    )


def memory_limit_bytes() -> int:
    return ADDRESS_SPACE_FLOOR + MAX_PIXELS * BYTES_PER_PIXEL_BUDGET


def _cap_address_space():
    """Bound RLIMIT_AS to what one maximum-size session needs. POSIX only."""
    if platform.system() == "Windows":
        return
    try:
        import resource

        _, hard = resource.getrlimit(resource.RLIMIT_AS)
        limit = memory_limit_bytes()
        if hard != resource.RLIM_INFINITY:
            limit = min(limit, hard)
        resource.setrlimit(resource.RLIMIT_AS, (limit, hard))
    except (ImportError, ValueError, OSError) as e:
        logger.warning("Could not cap address space: %s", e)


def _workers_from_env() -> int | None:
    value = os.environ.get("PIXELSORT_WORKERS", "")
    return int(value) if value.isdigit() and int(value) > 0 else None


def main():
    init_sentry()
    init_diagnostics()
    _cap_address_space()
    server = ZMQServer(max_workers=_workers_from_env())
    print(f"ZMQ_PORT={server.port}", flush=True)
    print(f"ZMQ_PING_PORT={server.ping_port}", flush=True)
    print(f"ZMQ_TOKEN={server.token}", flush=True)
    server.run()


if __name__ == "__main__":
    main()
