"""
MoshBrosh — Window Parameters

Pydantic model for the mosh window. Defaults match the plugin
sliders. The model is frozen so it can serve as the cache-invalidation key:
two parameter sets are "the same configuration" exactly when they compare
equal.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InvalidInput

# --- Configurable Limits ---
BLOCK_SIZES = (8, 16, 32)
WINDOW_START_MAX = 10000
DURATION_MAX = 1000
SEARCH_RANGE_MAX = 64


class EstimatorKind(str, Enum):
    """Which motion estimator drives the window."""
    BLOCK_MATCH = "block_match"        # SAD search, pixel-level clamp
    GRADIENT_FLOW = "gradient_flow"    # Lucas-Kanade per block, block-level clamp
    SYNTHETIC_HASH = "synthetic_hash"  # Deterministic hash, no real motion


class WindowParameters(BaseModel):
    """Everything that determines the moshed output of a window.

    Any field change invalidates every cached frame and warped result.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    window_start: int = Field(
        default=10,
        ge=1,
        le=WINDOW_START_MAX,
        description="First moshed frame. The frame before it is the frozen reference.",
    )
    duration: int = Field(
        default=30,
        ge=1,
        le=DURATION_MAX,
        description="Number of moshed frames.",
    )
    block_size: Literal[8, 16, 32] = Field(
        default=16,
        description="Macroblock edge in pixels.",
    )
    search_range: int = Field(
        default=16,
        ge=1,
        le=SEARCH_RANGE_MAX,
        description="Max displacement searched per axis (block matching), or hash spread.",
    )
    blend: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        description="0 = original frame, 1 = fully moshed.",
    )
    estimator: EstimatorKind = Field(
        default=EstimatorKind.BLOCK_MATCH,
        description="Motion estimator strategy.",
    )

    @property
    def reference_index(self) -> int:
        """Frame frozen as the accumulation seed."""
        return self.window_start - 1

    @property
    def window_end(self) -> int:
        """One past the last moshed frame."""
        return self.window_start + self.duration

    def in_window(self, frame_index: int) -> bool:
        return self.window_start <= frame_index < self.window_end

    def required_indices(self) -> range:
        """Raw frames needed before precompute: reference through last moshed frame."""
        return range(self.reference_index, self.window_end)


def validate_params(params: WindowParameters | dict | None = None, **overrides) -> WindowParameters:
    """Coerce a dict / model / kwargs into WindowParameters.

    Raises:
        InvalidInput: If any value is out of range. The pydantic error is
            chained as __cause__.
    """
    if isinstance(params, WindowParameters) and not overrides:
        return params
    data = params.model_dump() if isinstance(params, WindowParameters) else dict(params or {})
    data.update(overrides)
    try:
        return WindowParameters(**data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'params'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidInput(f"Invalid window parameters: {problems}") from e
