"""
MoshBrosh — Blender
Linear mix of the moshed image with the untouched frame, plus the tinted
passthrough shown while a window is still collecting frames.
"""

import numpy as np

from .errors import InvalidInput
from .frame import FrameBuffer, require_same_size, require_valid

# Interim indicator: magenta wash (RGBA)
INTERIM_TINT = (1.0, 0.0, 1.0, 1.0)
INTERIM_AMOUNT = 0.25


def _check_factor(factor: float, name: str = "factor") -> float:
    try:
        factor = float(factor)
    except (TypeError, ValueError):
        raise InvalidInput(f"{name} must be a number, got {factor!r}")
    if not 0.0 <= factor <= 1.0:  # also rejects NaN
        raise InvalidInput(f"{name} must be in [0, 1], got {factor}")
    return factor


def blend(original: FrameBuffer, warped: FrameBuffer, factor: float) -> FrameBuffer:
    """original * (1 - factor) + warped * factor, per channel.

    factor 0 returns the original's pixels exactly, factor 1 the warped
    pixels exactly. No clamping: for factor in [0, 1] the result is a convex
    combination of the inputs.

    Raises:
        InvalidInput: Size mismatch or factor outside [0, 1].
    """
    require_same_size(original, warped)
    factor = _check_factor(factor)

    # Short-circuit the endpoints so non-finite samples survive untouched
    if factor == 0.0:
        return FrameBuffer.adopt(original.pixels.copy())
    if factor == 1.0:
        return FrameBuffer.adopt(warped.pixels.copy())

    f = np.float32(factor)
    mixed = original.pixels * (np.float32(1.0) - f) + warped.pixels * f
    return FrameBuffer.adopt(mixed.astype(np.float32, copy=False))


def tint(frame: FrameBuffer, color=INTERIM_TINT, amount: float = INTERIM_AMOUNT) -> FrameBuffer:
    """Tinted passthrough: frame mixed toward a flat color. Alpha is kept."""
    require_valid(frame)
    amount = _check_factor(amount, "amount")
    overlay = FrameBuffer.filled(frame.width, frame.height, color)
    out = blend(frame, overlay, amount).pixels.copy()
    out[:, :, 3] = frame.pixels[:, :, 3]
    return FrameBuffer.adopt(out)
