"""
MoshBrosh — Frame Buffers
One decoded image as float32 RGBA, row-major (H, W, 4).

Buffers are immutable: the pixel array is flagged read-only, and every warp
or blend allocates a new buffer. Consumers holding an older buffer never see
it change underneath them.
"""

from dataclasses import dataclass

import cv2
import numpy as np

from .errors import InvalidInput

CHANNELS = 4  # R, G, B, A


@dataclass(frozen=True, eq=False)
class FrameBuffer:
    """Decoded frame as float RGBA samples.

    Attributes:
        width: Pixels per row.
        height: Number of rows.
        pixels: (height, width, 4) float32 array, read-only.
        valid: False only for the empty placeholder buffer.
    """
    width: int
    height: int
    pixels: np.ndarray
    valid: bool = True

    def __post_init__(self):
        if not self.valid:
            return
        if self.width <= 0 or self.height <= 0:
            raise InvalidInput(f"Frame dimensions must be positive, got {self.width}x{self.height}")
        if self.pixels.shape != (self.height, self.width, CHANNELS):
            raise InvalidInput(
                f"Pixel array shape {self.pixels.shape} does not match "
                f"{self.width}x{self.height}x{CHANNELS}"
            )
        if self.pixels.dtype != np.float32:
            object.__setattr__(self, "pixels", self.pixels.astype(np.float32))
        if self.pixels.flags.writeable:
            # Own the memory before freezing it, so the caller's array stays writable
            frozen = self.pixels.copy()
            frozen.flags.writeable = False
            object.__setattr__(self, "pixels", frozen)

    # --- Constructors ---

    @classmethod
    def from_array(cls, array: np.ndarray) -> "FrameBuffer":
        """Wrap an (H, W, 4) float array. The array is copied."""
        array = np.asarray(array)
        if array.ndim != 3 or array.shape[2] != CHANNELS:
            raise InvalidInput(f"Expected (H, W, {CHANNELS}) array, got shape {array.shape}")
        h, w = array.shape[:2]
        return cls(width=w, height=h, pixels=np.array(array, dtype=np.float32))

    @classmethod
    def adopt(cls, array: np.ndarray) -> "FrameBuffer":
        """Take ownership of a freshly computed (H, W, 4) float32 array without copying.

        The caller must not keep writing to `array` afterwards.
        """
        array.flags.writeable = False
        h, w = array.shape[:2]
        return cls(width=w, height=h, pixels=array)

    @classmethod
    def from_buffer(cls, data, width: int, height: int, stride: int | None = None) -> "FrameBuffer":
        """Build a frame from a flat float buffer with optional row padding.

        Args:
            data: Flat sequence of floats (list, array, bytes-like of float32).
            width: Pixels per row.
            height: Number of rows.
            stride: Floats per row in `data`. None means tightly packed
                    (width * 4). Negative means rows are stored bottom-up,
                    with abs(stride) floats between rows.

        Returns:
            FrameBuffer with padding dropped and rows in top-down order.
        """
        if width <= 0 or height <= 0:
            raise InvalidInput(f"Frame dimensions must be positive, got {width}x{height}")
        if isinstance(data, (bytes, bytearray, memoryview)):
            flat = np.frombuffer(data, dtype=np.float32)
        else:
            flat = np.asarray(data, dtype=np.float32).reshape(-1)

        row_floats = width * CHANNELS
        if stride is None:
            stride = row_floats
        bottom_up = stride < 0
        stride = abs(stride)
        if stride < row_floats:
            raise InvalidInput(f"Stride {stride} is smaller than row size {row_floats}")

        needed = stride * (height - 1) + row_floats
        if flat.size < needed:
            raise InvalidInput(f"Buffer holds {flat.size} floats, need at least {needed}")

        # Pad the tail so the last row can be viewed at full stride
        if flat.size < stride * height:
            flat = np.concatenate([flat, np.zeros(stride * height - flat.size, dtype=np.float32)])
        rows = flat[:stride * height].reshape(height, stride)[:, :row_floats]
        if bottom_up:
            rows = rows[::-1]
        return cls(width=width, height=height, pixels=rows.reshape(height, width, CHANNELS).copy())

    @classmethod
    def from_uint8(cls, array: np.ndarray) -> "FrameBuffer":
        """Convert a decoded (H, W, 3) RGB or (H, W, 4) RGBA uint8 frame to float [0, 1]."""
        array = np.asarray(array)
        if array.ndim != 3 or array.shape[2] not in (3, 4):
            raise InvalidInput(f"Expected (H, W, 3|4) uint8 frame, got shape {array.shape}")
        h, w = array.shape[:2]
        rgba = np.ones((h, w, CHANNELS), dtype=np.float32)
        rgba[:, :, :array.shape[2]] = array.astype(np.float32) / 255.0
        return cls(width=w, height=h, pixels=rgba)

    @classmethod
    def filled(cls, width: int, height: int, color=(0.0, 0.0, 0.0, 1.0)) -> "FrameBuffer":
        """Constant-color frame."""
        if width <= 0 or height <= 0:
            raise InvalidInput(f"Frame dimensions must be positive, got {width}x{height}")
        pixels = np.empty((height, width, CHANNELS), dtype=np.float32)
        pixels[:] = np.asarray(color, dtype=np.float32)
        return cls(width=width, height=height, pixels=pixels)

    @classmethod
    def empty(cls) -> "FrameBuffer":
        """Invalid placeholder (no pixels)."""
        return cls(width=0, height=0, pixels=np.zeros((0, 0, CHANNELS), dtype=np.float32), valid=False)

    # --- Accessors ---

    @property
    def shape(self) -> tuple[int, int]:
        return (self.height, self.width)

    @property
    def flat(self) -> np.ndarray:
        """Row-major flat view: width * height * 4 floats."""
        return self.pixels.reshape(-1)

    def luma(self) -> np.ndarray:
        """(H, W) float32 luminance: 0.299 R + 0.587 G + 0.114 B."""
        # OpenCV's RGB->gray uses the same Rec.601 weights
        return cv2.cvtColor(self.pixels, cv2.COLOR_RGBA2GRAY)

    def to_uint8(self, alpha: bool = False) -> np.ndarray:
        """Back to 8-bit for encoding. Rounds and clamps to [0, 255]."""
        out = np.clip(np.rint(self.pixels * 255.0), 0, 255).astype(np.uint8)
        return out if alpha else out[:, :, :3].copy()

    def same_size(self, other: "FrameBuffer") -> bool:
        return self.width == other.width and self.height == other.height

    def __eq__(self, other):
        if not isinstance(other, FrameBuffer):
            return NotImplemented
        return (
            self.valid == other.valid
            and self.same_size(other)
            and np.array_equal(self.pixels, other.pixels)
        )

    __hash__ = None


def require_valid(frame: FrameBuffer, name: str = "frame") -> None:
    """Raise InvalidInput if `frame` is not a usable buffer."""
    if not isinstance(frame, FrameBuffer):
        raise InvalidInput(f"{name} must be a FrameBuffer, got {type(frame).__name__}")
    if not frame.valid:
        raise InvalidInput(f"{name} is not a valid frame")


def require_same_size(a: FrameBuffer, b: FrameBuffer) -> None:
    """Raise InvalidInput unless both frames are valid and the same size."""
    require_valid(a, "first frame")
    require_valid(b, "second frame")
    if not a.same_size(b):
        raise InvalidInput(
            f"Frame dimensions differ: {a.width}x{a.height} vs {b.width}x{b.height}"
        )
