"""
MoshBrosh — Motion Estimation
Per-block displacement fields between two frames.

Three interchangeable estimators share one interface:

    block_match    — brute-force SAD search over a stepped displacement grid.
    gradient_flow  — Lucas-Kanade style least squares per block.
    synthetic_hash — deterministic pseudo-random vectors, ignores pixels.

Every field is stored in "source offset" form: (dx, dy) says where in the
previous image the block's new content is read from. Gradient flow solves
for forward flow (u, v) and stores (-u, -v). Each field is tagged with the
clamp policy the accumulator should use for it.
"""

import logging
from dataclasses import dataclass, field

import numpy as np

from .errors import InvalidInput
from .frame import FrameBuffer, require_same_size
from .params import EstimatorKind, WindowParameters

logger = logging.getLogger(__name__)

# --- Configurable Limits ---
SAD_STEP = 2             # Block-match grid step (every other displacement)
DEGENERATE_DET = 1e-6    # Below this |det| a block is texture-less
MAX_FLOW_VECTOR = 32     # Gradient-flow axis clamp

CLAMP_BLOCK = "block"
CLAMP_PIXEL = "pixel"
CLAMP_POLICIES = (CLAMP_BLOCK, CLAMP_PIXEL)


def block_grid(width: int, height: int, block_size: int) -> tuple[int, int]:
    """(blocks_x, blocks_y) covering the frame, edge blocks truncated."""
    return (width + block_size - 1) // block_size, (height + block_size - 1) // block_size


@dataclass(frozen=True, eq=False)
class DisplacementField:
    """Per-block integer vectors, row-major (blocks_y, blocks_x).

    Attributes:
        dx, dy: int16 arrays of shape (blocks_y, blocks_x).
        block_size: Block edge in pixels.
        width, height: Frame size the field was computed for.
        clamp: Accumulator clamp policy that goes with this field.
        quality: Optional per-block match score (SAD or determinant).
    """
    dx: np.ndarray
    dy: np.ndarray
    block_size: int
    width: int
    height: int
    clamp: str = CLAMP_PIXEL
    quality: np.ndarray | None = field(default=None)

    def __post_init__(self):
        if self.clamp not in CLAMP_POLICIES:
            raise InvalidInput(f"Unknown clamp policy '{self.clamp}'. Use one of {CLAMP_POLICIES}")
        bx, by = block_grid(self.width, self.height, self.block_size)
        for name in ("dx", "dy"):
            arr = np.asarray(getattr(self, name), dtype=np.int16)
            if arr.shape != (by, bx):
                raise InvalidInput(f"{name} has shape {arr.shape}, expected {(by, bx)}")
            arr = arr.copy()
            arr.flags.writeable = False
            object.__setattr__(self, name, arr)

    @classmethod
    def zeros(cls, width: int, height: int, block_size: int, clamp: str = CLAMP_PIXEL):
        bx, by = block_grid(width, height, block_size)
        z = np.zeros((by, bx), dtype=np.int16)
        return cls(dx=z, dy=z, block_size=block_size, width=width, height=height, clamp=clamp)

    @classmethod
    def uniform(cls, width: int, height: int, block_size: int, dx: int, dy: int,
                clamp: str = CLAMP_PIXEL):
        """Same vector for every block. Handy for global pans."""
        bx, by = block_grid(width, height, block_size)
        return cls(
            dx=np.full((by, bx), dx, dtype=np.int16),
            dy=np.full((by, bx), dy, dtype=np.int16),
            block_size=block_size, width=width, height=height, clamp=clamp,
        )

    @property
    def blocks_x(self) -> int:
        return self.dx.shape[1]

    @property
    def blocks_y(self) -> int:
        return self.dx.shape[0]

    def vector(self, bx: int, by: int) -> tuple[int, int]:
        return int(self.dx[by, bx]), int(self.dy[by, bx])

    def vectors(self) -> np.ndarray:
        """Row-major (blocks_x * blocks_y, 2) array of (dx, dy)."""
        return np.stack([self.dx.reshape(-1), self.dy.reshape(-1)], axis=1)

    def is_zero(self) -> bool:
        return not self.dx.any() and not self.dy.any()

    def __eq__(self, other):
        if not isinstance(other, DisplacementField):
            return NotImplemented
        return (
            self.block_size == other.block_size
            and self.width == other.width
            and self.height == other.height
            and self.clamp == other.clamp
            and np.array_equal(self.dx, other.dx)
            and np.array_equal(self.dy, other.dy)
        )

    __hash__ = None


def _block_sums(image: np.ndarray, block_size: int) -> np.ndarray:
    """Sum an (H, W) image over each block. Edge blocks sum only real pixels."""
    h, w = image.shape
    bx, by = block_grid(w, h, block_size)
    padded = np.zeros((by * block_size, bx * block_size), dtype=np.float64)
    padded[:h, :w] = image
    return padded.reshape(by, block_size, bx, block_size).sum(axis=(1, 3))


class MotionEstimator:
    """Base class for displacement estimators.

    Subclasses implement _estimate(); estimate() validates inputs first so
    malformed requests never reach the numeric code.
    """
    name = "base"
    clamp = CLAMP_PIXEL
    stateless = False  # True when vectors don't depend on frame content

    def estimate(
        self,
        prev: FrameBuffer,
        curr: FrameBuffer,
        block_size: int,
        search_range: int,
        frame_offset: int = 0,
    ) -> DisplacementField:
        """Displacement field taking `prev` to `curr`.

        Args:
            prev: Earlier frame.
            curr: Later frame, same size as prev.
            block_size: Block edge in pixels (> 0).
            search_range: Max displacement per axis (> 0).
            frame_offset: Frames into the mosh window for `curr`. Only the
                          synthetic estimator uses it.

        Raises:
            InvalidInput: Size mismatch or non-positive block size / range.
        """
        require_same_size(prev, curr)
        if int(block_size) <= 0:
            raise InvalidInput(f"block_size must be positive, got {block_size}")
        if int(search_range) <= 0:
            raise InvalidInput(f"search_range must be positive, got {search_range}")
        result = self._estimate(prev, curr, int(block_size), int(search_range), int(frame_offset))
        logger.debug(
            "%s: %dx%d blocks, mean |v| = %.2f",
            self.name, result.blocks_x, result.blocks_y,
            float(np.abs(result.vectors()).mean()) if result.vectors().size else 0.0,
        )
        return result

    def _estimate(self, prev, curr, block_size, search_range, frame_offset):
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}()"


class BlockMatchEstimator(MotionEstimator):
    """Sum-of-absolute-differences block search.

    For each block, tries displacements on a grid stepping by 2 from
    -search_range to +search_range on both axes (dy outer, dx inner). The
    block in `curr` stays put; `prev` is sampled at the shifted position.
    Samples that land outside `prev` are skipped, so edge candidates compare
    fewer pixels. A candidate with no samples at all is never chosen. The
    first candidate with the strictly lowest SAD wins.

    Note the grid only contains (0, 0) when search_range is even.
    """
    name = EstimatorKind.BLOCK_MATCH.value
    clamp = CLAMP_PIXEL

    def _estimate(self, prev, curr, block_size, search_range, frame_offset):
        h, w = curr.height, curr.width
        luma_c = curr.luma()
        luma_p = prev.luma()
        bx, by = block_grid(w, h, block_size)

        best_sad = np.full((by, bx), np.inf, dtype=np.float64)
        best_dx = np.zeros((by, bx), dtype=np.int16)
        best_dy = np.zeros((by, bx), dtype=np.int16)

        offsets = range(-search_range, search_range + 1, SAD_STEP)
        for dy in offsets:
            # Rows of curr whose shifted row stays inside prev
            y0, y1 = max(0, -dy), min(h, h - dy)
            if y0 >= y1:
                continue
            for dx in offsets:
                x0, x1 = max(0, -dx), min(w, w - dx)
                if x0 >= x1:
                    continue
                diff = np.zeros((h, w), dtype=np.float32)
                count = np.zeros((h, w), dtype=np.float32)
                diff[y0:y1, x0:x1] = np.abs(
                    luma_c[y0:y1, x0:x1] - luma_p[y0 + dy:y1 + dy, x0 + dx:x1 + dx]
                )
                count[y0:y1, x0:x1] = 1.0

                sad = _block_sums(diff, block_size)
                sad[_block_sums(count, block_size) == 0] = np.inf

                better = sad < best_sad
                best_sad[better] = sad[better]
                best_dx[better] = dx
                best_dy[better] = dy

        return DisplacementField(
            dx=best_dx, dy=best_dy, block_size=block_size,
            width=w, height=h, clamp=self.clamp,
            quality=best_sad.astype(np.float32),
        )


class GradientFlowEstimator(MotionEstimator):
    """Lucas-Kanade per block.

    Spatial gradients of prev's luma by central differences, temporal
    difference curr - prev. Each block solves the 2x2 normal equations in
    closed form. Texture-less blocks (|det| < DEGENERATE_DET) get (0, 0).
    The flow (u, v) is negated into a source offset, rounded half away from
    zero and clamped to +-MAX_FLOW_VECTOR per axis.
    """
    name = EstimatorKind.GRADIENT_FLOW.value
    clamp = CLAMP_BLOCK

    def _estimate(self, prev, curr, block_size, search_range, frame_offset):
        h, w = curr.height, curr.width
        luma_p = prev.luma().astype(np.float64)
        luma_c = curr.luma().astype(np.float64)

        ix = np.zeros_like(luma_p)
        iy = np.zeros_like(luma_p)
        # np.gradient needs 2 samples along an axis; 1-pixel frames have no gradient
        if w > 1:
            ix = np.gradient(luma_p, axis=1)
        if h > 1:
            iy = np.gradient(luma_p, axis=0)
        it = luma_c - luma_p

        sxx = _block_sums(ix * ix, block_size)
        sxy = _block_sums(ix * iy, block_size)
        syy = _block_sums(iy * iy, block_size)
        bx_ = -_block_sums(ix * it, block_size)
        by_ = -_block_sums(iy * it, block_size)

        det = sxx * syy - sxy * sxy
        degenerate = np.abs(det) < DEGENERATE_DET
        safe_det = np.where(degenerate, 1.0, det)

        u = (syy * bx_ - sxy * by_) / safe_det
        v = (sxx * by_ - sxy * bx_) / safe_det
        u[degenerate] = 0.0
        v[degenerate] = 0.0

        # Content moved by +u, so it is read from -u in prev
        dx = np.clip(_round_half_away(-u), -MAX_FLOW_VECTOR, MAX_FLOW_VECTOR)
        dy = np.clip(_round_half_away(-v), -MAX_FLOW_VECTOR, MAX_FLOW_VECTOR)

        if degenerate.any():
            logger.debug("gradient_flow: %d degenerate blocks", int(degenerate.sum()))

        return DisplacementField(
            dx=dx.astype(np.int16), dy=dy.astype(np.int16), block_size=block_size,
            width=w, height=h, clamp=self.clamp,
            quality=det.astype(np.float32),
        )


def _round_half_away(values: np.ndarray) -> np.ndarray:
    """Round to nearest integer, .5 away from zero (np.rint rounds to even)."""
    return np.trunc(values + np.copysign(0.5, values))


def _mix32(x: np.ndarray) -> np.ndarray:
    """32-bit integer hash (two multiply-xorshift rounds)."""
    mask = np.uint64(0xFFFFFFFF)
    mult = np.uint64(0x45D9F3B)
    s16 = np.uint64(16)
    x = x.astype(np.uint64) & mask
    x = (((x >> s16) ^ x) * mult) & mask
    x = (((x >> s16) ^ x) * mult) & mask
    return (x >> s16) ^ x


class SyntheticHashEstimator(MotionEstimator):
    """Deterministic block displacement with no motion analysis.

    Each block gets a fixed direction from a hash of its grid position and
    `seed` (the window start). The magnitude grows with frame_offset / 10,
    truncated toward zero, so frame_offset == 0 is always a zero field.
    Pixel content is ignored apart from the frame size.
    """
    name = EstimatorKind.SYNTHETIC_HASH.value
    clamp = CLAMP_PIXEL
    stateless = True

    def __init__(self, seed: int = 0):
        self.seed = int(seed)

    def _estimate(self, prev, curr, block_size, search_range, frame_offset):
        w, h = curr.width, curr.height
        bx, by = block_grid(w, h, block_size)
        gy, gx = np.mgrid[0:by, 0:bx]
        key = gx.astype(np.int64) + gy.astype(np.int64) * 1000 + self.seed * 100000
        hashed = _mix32(key.astype(np.uint64) & np.uint64(0xFFFFFFFF))

        span = np.uint64(search_range * 2 + 1)
        base_dx = (hashed & np.uint64(0xFF)) % span
        base_dy = ((hashed >> np.uint64(8)) & np.uint64(0xFF)) % span
        base_dx = base_dx.astype(np.int64) - search_range
        base_dy = base_dy.astype(np.int64) - search_range

        # float32 factor, truncated toward zero
        factor = np.float32(frame_offset) / np.float32(10.0)
        dx = np.trunc(base_dx.astype(np.float32) * factor)
        dy = np.trunc(base_dy.astype(np.float32) * factor)

        return DisplacementField(
            dx=dx.astype(np.int16), dy=dy.astype(np.int16), block_size=block_size,
            width=w, height=h, clamp=self.clamp,
        )

    def __repr__(self):
        return f"SyntheticHashEstimator(seed={self.seed})"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

ESTIMATORS = {
    EstimatorKind.BLOCK_MATCH.value: {
        "cls": BlockMatchEstimator,
        "description": "SAD block search, step 2, pixel-level clamp",
    },
    EstimatorKind.GRADIENT_FLOW.value: {
        "cls": GradientFlowEstimator,
        "description": "Per-block Lucas-Kanade, block-level clamp",
    },
    EstimatorKind.SYNTHETIC_HASH.value: {
        "cls": SyntheticHashEstimator,
        "description": "Deterministic hashed vectors, no motion analysis",
    },
}


def get_estimator(name, **kwargs) -> MotionEstimator:
    """Instantiate an estimator by name (str or EstimatorKind).

    Raises InvalidInput if the name is unknown.
    """
    key = name.value if isinstance(name, EstimatorKind) else str(name)
    if key not in ESTIMATORS:
        available = ", ".join(sorted(ESTIMATORS.keys()))
        raise InvalidInput(f"Unknown estimator: {key}. Available: {available}")
    return ESTIMATORS[key]["cls"](**kwargs)


def estimator_for(params: WindowParameters) -> MotionEstimator:
    """Estimator configured for a window (the hash is seeded by window start)."""
    if params.estimator == EstimatorKind.SYNTHETIC_HASH:
        return get_estimator(params.estimator, seed=params.window_start)
    return get_estimator(params.estimator)


def list_estimators() -> list[dict]:
    return [
        {"name": name, "description": entry["description"], "clamp": entry["cls"].clamp}
        for name, entry in ESTIMATORS.items()
    ]
