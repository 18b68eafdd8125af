"""
MoshBrosh — Offline Batch Pipeline
Multi-pass datamosh over a fully decoded clip. No cache, no locking: the
whole sequence is in memory before the fold starts.

    Pass 1  read      decode every frame to float RGBA
    Pass 2  estimate  one displacement field per moshed frame
    Pass 3  fold      accumulate fields onto the frozen reference
    Pass 4  write     blend with the original and encode

Frames outside the mosh window are written untouched.
"""

import logging
from pathlib import Path

from .accumulate import fold_iter, step
from .blend import blend
from .errors import InvalidInput
from .frame import FrameBuffer, require_same_size
from .motion import estimator_for
from .params import WindowParameters, validate_params
from .video_io import (
    close_output_pipe,
    open_output_pipe,
    probe_video,
    stream_frames,
    write_frame,
)

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 30  # frames between progress callbacks


def adjust_window(params: WindowParameters, total_frames: int) -> WindowParameters:
    """Fit the window inside a clip of `total_frames` frames.

    A window starting past the end is moved back to leave room for its
    duration; a window running past the end is shortened.

    Raises:
        InvalidInput: Clip too short for any moshed frame (needs 2 frames).
    """
    window_start, duration = params.window_start, params.duration
    if window_start >= total_frames:
        window_start = max(1, total_frames - duration - 1)
        logger.warning(
            "window_start (%d) >= total frames (%d), moved to %d",
            params.window_start, total_frames, window_start,
        )
    if window_start + duration > total_frames:
        duration = total_frames - window_start
        logger.info("Adjusted duration to %d frames", duration)
    if duration < 1:
        raise InvalidInput(f"Clip has {total_frames} frame(s); need at least 2 to mosh")
    if (window_start, duration) == (params.window_start, params.duration):
        return params
    return validate_params(params, window_start=window_start, duration=duration)


def _report(progress, stage, done, total):
    if progress is not None and (done % PROGRESS_EVERY == 0 or done == total):
        progress(stage, done, total)


def estimate_all(frames: list[FrameBuffer], params: WindowParameters, estimator=None, progress=None):
    """Pass 2: displacement field for every moshed frame, in window order.

    Field i describes frames[window_start + i - 1] -> frames[window_start + i].
    """
    estimator = estimator or estimator_for(params)
    fields = []
    for i, index in enumerate(range(params.window_start, params.window_end)):
        fields.append(estimator.estimate(
            frames[index - 1], frames[index],
            params.block_size, params.search_range,
            frame_offset=index - params.window_start,
        ))
        _report(progress, "estimate", i + 1, params.duration)
    return fields


def mosh_frames(frames: list[FrameBuffer], params, progress=None) -> list[FrameBuffer]:
    """Datamosh an in-memory sequence.

    Args:
        frames: Every decoded frame of the clip, same size.
        params: WindowParameters or dict. Adjusted to fit the clip.
        progress: Optional fn(stage, done, total).

    Returns:
        One output frame per input frame.
    """
    if not frames:
        raise InvalidInput("No frames to process")
    for other in frames[1:]:
        require_same_size(frames[0], other)
    params = adjust_window(validate_params(params), len(frames))
    estimator = estimator_for(params)

    fields = estimate_all(frames, params, estimator, progress=progress)

    warped = {}
    if estimator.stateless:
        # No motion history: displace each frame on its own
        for index, field in zip(range(params.window_start, params.window_end), fields):
            warped[index] = step(frames[index], field)
    else:
        reference = frames[params.reference_index]
        for i, accumulated in enumerate(fold_iter(reference, fields)):
            warped[params.window_start + i] = accumulated
            _report(progress, "fold", i + 1, params.duration)

    output = []
    for index, frame in enumerate(frames):
        if index in warped:
            output.append(blend(frame, warped[index], params.blend))
        else:
            output.append(frame)
    return output


def mosh_video(input_path: str, output_path: str, params, crf: int = 18, progress=None) -> Path:
    """Datamosh a video file into a new H.264 file.

    Returns:
        Path to the written video.
    """
    info = probe_video(input_path)
    width, height = info["width"], info["height"]

    frames = []
    for rgba in stream_frames(input_path, width, height):
        frames.append(FrameBuffer.from_uint8(rgba))
        _report(progress, "read", len(frames), info["total_frames"] or len(frames))
    if not frames:
        raise RuntimeError(f"No frames decoded from {input_path}")
    logger.info("Read %d frames (%dx%d)", len(frames), width, height)

    output = mosh_frames(frames, params, progress=progress)

    proc = open_output_pipe(output_path, width, height, info["fps"], crf=crf)
    try:
        for i, frame in enumerate(output):
            write_frame(proc, frame.to_uint8(alpha=True))
            _report(progress, "write", i + 1, len(output))
    except BrokenPipeError:
        # Encoder died; close_output_pipe surfaces its stderr
        pass
    return close_output_pipe(proc, output_path)
