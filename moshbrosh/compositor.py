"""
MoshBrosh — Compositor
Entry point for the frame-at-a-time renderer.

    render(frame_index, params) -> FrameBuffer

Outside the mosh window frames pass through. Inside it, the frame is fed to
the SequenceCache; once the window's inputs are complete the precomputed
accumulation is blended with the current frame. Until then a tinted
passthrough marks the frame as not yet moshed.

Estimators without motion semantics (synthetic_hash) need no history: their
frames are displaced directly from the current input, like the single-frame
plugin render.
"""

import logging

from .accumulate import step
from .blend import blend, tint
from .cache import CacheState, SequenceCache
from .errors import InvalidInput, MissingPrerequisite
from .frame import FrameBuffer, require_valid
from .motion import estimator_for
from .params import validate_params

logger = logging.getLogger(__name__)


class Compositor:
    """Routes render requests through cache, estimator, accumulator and blender.

    Args:
        cache: SequenceCache owned by the caller. One per effect instance;
               share it between render threads.
        source: Optional callable frame_index -> FrameBuffer (the decode
                collaborator). Used when render() is called without a frame.
    """

    def __init__(self, cache: SequenceCache | None = None, source=None):
        self.cache = cache if cache is not None else SequenceCache()
        self.source = source

    def _frame(self, frame_index: int, frame: FrameBuffer | None) -> FrameBuffer:
        if frame is None:
            if self.source is None:
                raise InvalidInput(f"No frame given for index {frame_index} and no source attached")
            frame = self.source(frame_index)
        require_valid(frame)
        return frame

    def render(self, frame_index: int, params, frame: FrameBuffer | None = None) -> FrameBuffer:
        """Output frame for `frame_index` under `params`.

        Args:
            frame_index: Position in the sequence.
            params: WindowParameters or a dict of its fields.
            frame: Decoded input for this index. Fetched from `source` if None.

        Returns:
            The input itself outside the window, otherwise a new buffer
            (interim tint or moshed blend).
        """
        params = validate_params(params)
        frame = self._frame(frame_index, frame)
        estimator = estimator_for(params)

        if estimator.stateless:
            self.cache.sync(params)
            if not params.in_window(frame_index):
                return frame
            field = estimator.estimate(
                frame, frame, params.block_size, params.search_range,
                frame_offset=frame_index - params.window_start,
            )
            return blend(frame, step(frame, field), params.blend)

        with self.cache.lock:
            self.cache.observe(frame_index, frame, params)
            if not params.in_window(frame_index):
                return frame
            try:
                warped = self.cache.warped(frame_index)
            except MissingPrerequisite as e:
                logger.debug("Frame %d interim: missing %s", frame_index, e.missing)
                return tint(frame)

        return blend(frame, warped, params.blend)

    def prime(self, frames: dict, params) -> CacheState:
        """Feed several decoded frames at once (e.g. host prefetch)."""
        params = validate_params(params)
        with self.cache.lock:
            for index in sorted(frames):
                self.cache.observe(index, frames[index], params)
            return self.cache.state()

    def invalidate(self, params=None) -> None:
        self.cache.invalidate(params)

    def state(self, params) -> CacheState:
        return self.cache.state(params)
