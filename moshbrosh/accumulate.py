"""
MoshBrosh — Accumulator
Applies displacement fields to the running warped image.

step() gathers each output block from the previous accumulated image at the
block's position offset by its vector. fold() chains steps left to right,
seeded with the frozen reference frame. The fold is order-dependent: step t
needs the whole output of step t-1, so it never runs in parallel.
"""

import logging

import numpy as np

from .errors import InvalidInput
from .frame import FrameBuffer, require_valid
from .motion import CLAMP_BLOCK, CLAMP_PIXEL, CLAMP_POLICIES, DisplacementField

logger = logging.getLogger(__name__)


def _per_pixel(values: np.ndarray, block_size: int, height: int, width: int) -> np.ndarray:
    """Expand a (blocks_y, blocks_x) grid to (H, W), cropping edge blocks."""
    expanded = np.repeat(np.repeat(values.astype(np.int64), block_size, axis=0), block_size, axis=1)
    return expanded[:height, :width]


def source_coordinates(field: DisplacementField, clamp: str) -> tuple[np.ndarray, np.ndarray]:
    """Per-pixel (src_y, src_x) index maps for a field under a clamp policy.

    pixel: every source coordinate clamped on its own to the frame.
    block: each block's source origin clamped so the whole block rectangle
           (edge blocks at their truncated size) stays inside the frame.
    """
    h, w, bs = field.height, field.width, field.block_size
    ys, xs = np.mgrid[0:h, 0:w]
    dx = _per_pixel(field.dx, bs, h, w)
    dy = _per_pixel(field.dy, bs, h, w)

    if clamp == CLAMP_PIXEL:
        src_x = np.clip(xs + dx, 0, w - 1)
        src_y = np.clip(ys + dy, 0, h - 1)
        return src_y, src_x

    # Block origin and its real (possibly truncated) extent
    x1 = (xs // bs) * bs
    y1 = (ys // bs) * bs
    bw = np.minimum(bs, w - x1)
    bh = np.minimum(bs, h - y1)
    origin_x = np.clip(x1 + dx, 0, w - bw)
    origin_y = np.clip(y1 + dy, 0, h - bh)
    return origin_y + (ys - y1), origin_x + (xs - x1)


def step(
    accumulated: FrameBuffer,
    displacement: DisplacementField,
    block_size: int | None = None,
    clamp: str | None = None,
) -> FrameBuffer:
    """One accumulation step.

    Args:
        accumulated: Previous accumulated image (never modified).
        displacement: Field for this step. Must match the frame size.
        block_size: Optional check against the field's block size.
        clamp: 'block' or 'pixel'. Defaults to the policy tagged on the field.

    Returns:
        Newly allocated FrameBuffer.

    Raises:
        InvalidInput: Size or block size mismatch, unknown clamp policy.
    """
    require_valid(accumulated, "accumulated")
    if (displacement.width, displacement.height) != (accumulated.width, accumulated.height):
        raise InvalidInput(
            f"Field is for {displacement.width}x{displacement.height}, "
            f"frame is {accumulated.width}x{accumulated.height}"
        )
    if block_size is not None and int(block_size) != displacement.block_size:
        raise InvalidInput(
            f"block_size {block_size} does not match field block size {displacement.block_size}"
        )
    clamp = clamp or displacement.clamp
    if clamp not in CLAMP_POLICIES:
        raise InvalidInput(f"Unknown clamp policy '{clamp}'. Use one of {CLAMP_POLICIES}")

    src_y, src_x = source_coordinates(displacement, clamp)
    # Fancy indexing allocates a new array; the source stays untouched
    return FrameBuffer.adopt(accumulated.pixels[src_y, src_x])


def fold_iter(seed: FrameBuffer, fields, clamp: str | None = None):
    """Yield accumulated[t] for each field, in order.

    accumulated[0] = step(seed, fields[0]), accumulated[t] = step(accumulated[t-1], fields[t]).
    """
    accumulated = seed
    for i, field in enumerate(fields):
        accumulated = step(accumulated, field, clamp=clamp)
        logger.debug("fold step %d done (%s clamp)", i, clamp or field.clamp)
        yield accumulated


def fold(seed: FrameBuffer, fields, clamp: str | None = None) -> FrameBuffer:
    """Final image of a strict left fold. With no fields, returns the seed."""
    result = seed
    for result in fold_iter(seed, fields, clamp=clamp):
        pass
    return result


class Accumulator:
    """Holds the running warped image for one mosh window.

    Thin stateful wrapper over step() for callers that feed fields one at
    a time, such as the cache precompute.
    """

    def __init__(self, reference: FrameBuffer, clamp: str | None = None):
        require_valid(reference, "reference")
        self.reference = reference
        self.current = reference
        self.clamp = clamp
        self.steps = 0

    def step(self, displacement: DisplacementField) -> FrameBuffer:
        self.current = step(self.current, displacement, clamp=self.clamp)
        self.steps += 1
        return self.current

    def reset(self):
        self.current = self.reference
        self.steps = 0


__all__ = ["Accumulator", "step", "fold", "fold_iter", "source_coordinates", "CLAMP_BLOCK", "CLAMP_PIXEL"]
