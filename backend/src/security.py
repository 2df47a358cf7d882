"""Security validation gates for the pixelsort sidecar."""

import json
import os
import re
from pathlib import Path

# SEC-5: Image path validation
MAX_IMAGE_SIZE = 200 * 1024 * 1024  # 200 MB
ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".bmp", ".gif", ".tif", ".tiff", ".webp"}

# SEC-6: Pixel count cap (100 MP) — bounds working-copy memory per recompute
MAX_PIXELS = 100_000_000


def validate_image_path(path: str) -> list[str]:
    """Validate an image path. Returns list of errors (empty = valid).

    Checks (SEC-5):
    - Resolved path is under the user home
    - File exists
    - Not a symlink
    - Extension in whitelist
    - File size <= 200 MB
    - Filename is safe (no path traversal)
    """
    errors: list[str] = []
    p = Path(path)

    resolved = str(p.resolve())
    if not resolved.startswith(str(Path.home())):
        errors.append("Path must be within user home directory")
        return errors

    if not p.exists():
        errors.append(f"File not found: {path}")
        return errors

    if p.is_symlink():
        errors.append("Symlinks are not allowed")
        return errors

    ext = p.suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        errors.append(
            f"Extension '{ext}' not allowed. Allowed: {sorted(ALLOWED_EXTENSIONS)}"
        )

    size = p.stat().st_size
    if size > MAX_IMAGE_SIZE:
        size_mb = size / (1024 * 1024)
        errors.append(
            f"File too large: {size_mb:.1f} MB (max {MAX_IMAGE_SIZE // (1024 * 1024)} MB)"
        )

    name = p.name
    if ".." in name or "/" in name or "\\" in name or "\x00" in name:
        errors.append(f"Unsafe filename: {name}")

    return errors


def validate_dimensions(width: int, height: int) -> list[str]:
    """Validate image size against the SEC-6 pixel cap. Returns list of errors."""
    errors: list[str] = []
    if width <= 0 or height <= 0:
        errors.append(f"Invalid dimensions {width}x{height}")
    elif width * height > MAX_PIXELS:
        errors.append(
            f"Image {width}x{height} exceeds maximum {MAX_PIXELS} pixels (SEC-6)"
        )
    return errors


# --- PII stripping for Sentry and crash dumps ---

_HOME = os.path.expanduser("~")
_USERNAME = os.path.basename(_HOME)
_PATH_PATTERN = re.compile(r"/Users/[^/\s]+|/home/[^/\s]+|C:\\Users\\[^\\\s]+")
_SENSITIVE_KEYS = {"_token", "token", "auth", "key", "secret", "password", "dsn"}


def _scrub_dict(d: dict):
    """Redact values for keys that look sensitive."""
    for key in list(d.keys()):
        if any(s in key.lower() for s in _SENSITIVE_KEYS):
            d[key] = "<REDACTED>"


def strip_pii(event: dict, hint: dict) -> dict:
    """Sentry before_send hook. Strips file paths and auth tokens.

    Also used on crash dumps.
    """
    event_str = json.dumps(event)
    event_str = event_str.replace(_HOME, "<HOME>")
    if _USERNAME:
        event_str = event_str.replace(_USERNAME, "<USER>")
    event_str = _PATH_PATTERN.sub("<REDACTED_PATH>", event_str)
    event = json.loads(event_str)

    _scrub_dict(event.get("extra", {}))
    for ctx in event.get("contexts", {}).values():
        if isinstance(ctx, dict):
            _scrub_dict(ctx)
    return event
