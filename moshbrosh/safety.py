"""
MoshBrosh — Safety & Resource Guards
Checks the batch tool runs on a clip before decoding it, plus a wall-clock
limit for the whole run. The batch pass holds every frame in memory as float
RGBA, so frame count and resolution are capped up front.
"""

import os
import signal
from contextlib import contextmanager
from pathlib import Path

from .errors import MoshError

# --- Configurable Limits ---
MAX_FILE_MB = 500          # Maximum input file size
MAX_FRAMES = 3000          # Whole clip is decoded into memory
MAX_PIXELS = 3840 * 2160   # Per frame
TIMEOUT_SEC = 600          # Whole batch run
VIDEO_SUFFIXES = frozenset({".mp4", ".mov", ".avi", ".mkv", ".webm", ".m4v"})


class ClipRejected(MoshError):
    """The clip is unsuitable for a batch mosh; nothing has been decoded."""


def preflight(input_path: str) -> dict:
    """Resolve the input clip and check its size and container suffix.

    Returns:
        dict with path, size_mb and extension.

    Raises:
        FileNotFoundError: Nothing (or a directory) at that path.
        ClipRejected: File too big to mosh or not a video container.
    """
    path = Path(os.path.realpath(str(input_path)))
    if not path.is_file():
        raise FileNotFoundError(f"No clip at {input_path}")

    suffix = path.suffix.lower()
    if suffix not in VIDEO_SUFFIXES:
        raise ClipRejected(
            f"'{path.name}' is not a video container ({suffix or 'no suffix'}); "
            f"expected one of {' '.join(sorted(VIDEO_SUFFIXES))}"
        )

    size_mb = path.stat().st_size / (1024 * 1024)
    if size_mb > MAX_FILE_MB:
        raise ClipRejected(f"{path.name} is {size_mb:.0f}MB, over the {MAX_FILE_MB}MB input limit")

    return {"path": str(path), "size_mb": size_mb, "extension": suffix}


def validate_clip(info: dict) -> None:
    """Reject clips the in-memory batch pass can't hold.

    Args:
        info: probe_video() result. A missing frame count is not checked.
    """
    width, height = info["width"], info["height"]
    if width * height > MAX_PIXELS:
        raise ClipRejected(f"Resolution {width}x{height} is over the {MAX_PIXELS} pixel frame limit")
    frames = info.get("total_frames", 0)
    if frames > MAX_FRAMES:
        raise ClipRejected(f"Clip has {frames} frames, over the {MAX_FRAMES} frame limit for one pass")


@contextmanager
def processing_timeout(seconds: int = TIMEOUT_SEC):
    """Raise TimeoutError inside the block once `seconds` of wall time pass.

    Uses SIGALRM, so it only arms on Unix and only from the main thread.
    The previous SIGALRM handler is restored on exit.
    """
    if not hasattr(signal, "SIGALRM"):
        yield
        return

    def _expired(signum, frame):
        raise TimeoutError(f"Mosh run passed the {seconds}s limit; use a shorter window or search range")

    previous = signal.signal(signal.SIGALRM, _expired)
    signal.alarm(int(seconds))
    try:
        yield
    finally:
        signal.alarm(0)
        signal.signal(signal.SIGALRM, previous)
