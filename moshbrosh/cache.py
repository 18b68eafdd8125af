"""
MoshBrosh — Sequence Cache
Frame store and precompute state machine for the incremental renderer.

    NOT_STARTED ──observe──▶ COLLECTING ──last input──▶ READY
         ▲                        │                        │
         └──── INVALID ◀──────────┴──── params change ─────┘

Three namespaces live side by side and never share keys:
    raw       frame index -> decoded input frame
    reference the frame at window_start - 1, captured once
    warped    frame index -> accumulated result for the mosh window

The host may render frames out of order from several threads. A single
re-entrant lock guards every read and write, and the precompute fold runs
inside it, so exactly one thread ever decides to precompute.
"""

import logging
import threading
from enum import Enum

from .accumulate import Accumulator
from .errors import InvalidInput, MissingPrerequisite, StateCorruption
from .frame import FrameBuffer, require_valid
from .motion import estimator_for
from .params import WindowParameters, validate_params

logger = logging.getLogger(__name__)


class CacheState(str, Enum):
    NOT_STARTED = "not_started"  # Nothing cached
    COLLECTING = "collecting"    # Some inputs seen, reference or others missing
    READY = "ready"              # Precompute done, warped frames available
    INVALID = "invalid"          # Being reset after a parameter change


class SequenceCache:
    """Owned, explicitly scoped cache for one effect instance.

    Args:
        estimator_factory: params -> MotionEstimator. Defaults to the
                           estimator named in the params.
        evict_raw: Drop raw frames once precompute has consumed them.
                   The reference and warped results are kept either way.
    """

    def __init__(self, estimator_factory=estimator_for, evict_raw: bool = False):
        self.lock = threading.RLock()
        self._estimator_factory = estimator_factory
        self._evict_raw = evict_raw

        self._params: WindowParameters | None = None
        self._frame_size: tuple[int, int] | None = None
        self._raw: dict[int, FrameBuffer] = {}
        self._reference: FrameBuffer | None = None
        self._warped: dict[int, FrameBuffer] = {}
        self._state = CacheState.NOT_STARTED

        self.precompute_count = 0
        self.invalidation_count = 0

    # --- Parameter tracking ---

    def sync(self, params) -> bool:
        """Adopt `params`, resetting everything if they differ from the cached set.

        Returns True if a reset happened.
        """
        params = validate_params(params)
        with self.lock:
            if self._params is None:
                self._params = params
                return False
            if params == self._params:
                return False
            logger.info("Window parameters changed, discarding cache")
            self._reset(params)
            return True

    def invalidate(self, params=None) -> None:
        """Unconditionally discard raw frames, reference and warped results."""
        params = validate_params(params) if params is not None else None
        with self.lock:
            self._reset(params)

    def _reset(self, params):
        self._state = CacheState.INVALID
        self._raw.clear()
        self._warped.clear()
        self._reference = None
        self._frame_size = None
        self._params = params
        self.invalidation_count += 1
        self._state = CacheState.NOT_STARTED

    # --- Queries ---

    @property
    def params(self) -> WindowParameters | None:
        with self.lock:
            return self._params

    def state(self, params=None) -> CacheState:
        """Current state. Passing params counts as observing them."""
        if params is not None:
            self.sync(params)
        with self.lock:
            return self._state

    def is_ready(self, params=None) -> bool:
        return self.state(params) == CacheState.READY

    def missing(self, params=None) -> list[int]:
        """Raw indices still needed before precompute can run."""
        if params is not None:
            self.sync(params)
        with self.lock:
            if self._params is None:
                return []
            if self._state == CacheState.READY:
                return []
            missing = [i for i in self._params.required_indices() if i not in self._raw]
            if self._reference is None and self._params.reference_index not in missing:
                missing.insert(0, self._params.reference_index)
            return missing

    @property
    def reference(self) -> FrameBuffer | None:
        with self.lock:
            return self._reference

    def raw_indices(self) -> list[int]:
        with self.lock:
            return sorted(self._raw)

    def warped_indices(self) -> list[int]:
        with self.lock:
            return sorted(self._warped)

    def raw(self, frame_index: int) -> FrameBuffer | None:
        with self.lock:
            return self._raw.get(frame_index)

    def stats(self) -> dict:
        with self.lock:
            return {
                "state": self._state.value,
                "raw": len(self._raw),
                "reference": self._reference is not None,
                "warped": len(self._warped),
                "precompute_count": self.precompute_count,
                "invalidation_count": self.invalidation_count,
            }

    # --- Mutation ---

    def observe(self, frame_index: int, frame: FrameBuffer, params) -> CacheState:
        """Record a decoded frame the first time it is seen.

        Frames outside [window_start - 1, window_end) are not needed and are
        not stored. A frame whose size differs from earlier ones means the
        source changed, which resets the cache like a parameter change, even
        after the precompute has run.
        Completing the inputs triggers the precompute before returning.

        Returns:
            State after the observation.
        """
        require_valid(frame)
        frame_index = int(frame_index)
        with self.lock:
            self.sync(params)
            params = self._params

            size = (frame.width, frame.height)
            if self._frame_size is not None and size != self._frame_size:
                logger.info(
                    "Frame size changed %s -> %s, discarding cache", self._frame_size, size
                )
                self._reset(params)

            if self._state == CacheState.READY:
                return self._state
            if frame_index not in params.required_indices():
                return self._state

            self._frame_size = size

            if frame_index not in self._raw:
                self._raw[frame_index] = frame
            if frame_index == params.reference_index and self._reference is None:
                self._reference = frame
                logger.debug("Captured reference frame %d", frame_index)

            self._state = CacheState.COLLECTING
            if self._reference is not None and all(i in self._raw for i in params.required_indices()):
                self._precompute()
            return self._state

    def _precompute(self):
        """Run the whole accumulation fold once. Caller holds the lock.

        Results are built aside and published only after the fold finishes,
        so a failure leaves no partial warped set behind.
        """
        snapshot = self._params
        estimator = self._estimator_factory(snapshot)
        logger.info(
            "Precomputing window %d..%d with %s",
            snapshot.window_start, snapshot.window_end - 1, estimator,
        )

        results = {}
        accumulator = Accumulator(self._reference)
        for index in range(snapshot.window_start, snapshot.window_end):
            field = estimator.estimate(
                self._raw[index - 1], self._raw[index],
                snapshot.block_size, snapshot.search_range,
                frame_offset=index - snapshot.window_start,
            )
            results[index] = accumulator.step(field)

        if self._params != snapshot:
            raise StateCorruption(
                "Window parameters changed during precompute; refusing to publish results"
            )
        if len(results) != snapshot.duration:
            raise StateCorruption(
                f"Precompute produced {len(results)} frames for a {snapshot.duration}-frame window"
            )

        self._warped = results
        self._state = CacheState.READY
        self.precompute_count += 1
        if self._evict_raw:
            self._raw.clear()
        logger.info("Precompute done (%d frames)", len(results))

    def warped(self, frame_index: int, params=None) -> FrameBuffer:
        """Precomputed accumulated frame for an in-window index.

        Raises:
            InvalidInput: Index outside the mosh window.
            MissingPrerequisite: Inputs still being collected.
            StateCorruption: READY but the result is missing.
        """
        if params is not None:
            self.sync(params)
        with self.lock:
            if self._params is None:
                raise MissingPrerequisite("No window parameters observed yet")
            if not self._params.in_window(frame_index):
                raise InvalidInput(
                    f"Frame {frame_index} is outside the mosh window "
                    f"[{self._params.window_start}, {self._params.window_end})"
                )
            if self._state != CacheState.READY:
                missing = self.missing()
                raise MissingPrerequisite(
                    f"Frame {frame_index} not ready, waiting on {len(missing)} frame(s)",
                    missing=missing,
                )
            try:
                return self._warped[frame_index]
            except KeyError:
                raise StateCorruption(f"Cache is READY but frame {frame_index} has no warped result")
