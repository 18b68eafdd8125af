"""
MoshBrosh — Datamosh Engine
Simulates a deleted keyframe: content frozen at the frame before the mosh
window is dragged along by each later frame's block motion, then mixed back
with the real footage.

Interactive renderers use Compositor + SequenceCache; the offline tool uses
moshbrosh.batch directly.
"""

from .accumulate import Accumulator, fold, fold_iter, step
from .blend import blend, tint
from .cache import CacheState, SequenceCache
from .compositor import Compositor
from .errors import InvalidInput, MissingPrerequisite, MoshError, StateCorruption
from .frame import FrameBuffer
from .motion import (
    BlockMatchEstimator,
    DisplacementField,
    ESTIMATORS,
    GradientFlowEstimator,
    MotionEstimator,
    SyntheticHashEstimator,
    estimator_for,
    get_estimator,
)
from .params import EstimatorKind, WindowParameters, validate_params

__version__ = "1.0.0"

__all__ = [
    "Accumulator",
    "BlockMatchEstimator",
    "CacheState",
    "Compositor",
    "DisplacementField",
    "ESTIMATORS",
    "EstimatorKind",
    "FrameBuffer",
    "GradientFlowEstimator",
    "InvalidInput",
    "MissingPrerequisite",
    "MoshError",
    "MotionEstimator",
    "SequenceCache",
    "StateCorruption",
    "SyntheticHashEstimator",
    "WindowParameters",
    "blend",
    "estimator_for",
    "fold",
    "fold_iter",
    "get_estimator",
    "step",
    "tint",
    "validate_params",
]
