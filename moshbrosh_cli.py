#!/usr/bin/env python3
"""
MoshBrosh — Datamosh CLI
Same engine as the interactive plugin, run offline over a whole clip.

Usage:
    # Classic mosh: freeze frame 29, drag it along frames 30-89
    python moshbrosh_cli.py mosh -i video.mp4 -o moshed.mp4 -f 30 -d 60 -b 16

    # Half-strength mosh with gradient flow
    python moshbrosh_cli.py mosh -i video.mp4 -o moshed.mp4 -e gradient_flow -m 50

    # Preview the vectors between frame 29 and 30 as a PNG
    python moshbrosh_cli.py vectors -i video.mp4 -o vectors.png -f 30

    # List motion estimators
    python moshbrosh_cli.py estimators
"""

import argparse
import logging
import subprocess
import sys
import time
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from moshbrosh.batch import mosh_video
from moshbrosh.errors import MoshError
from moshbrosh.frame import FrameBuffer
from moshbrosh.motion import estimator_for, list_estimators
from moshbrosh.params import EstimatorKind, validate_params
from moshbrosh.safety import ClipRejected, preflight, processing_timeout, validate_clip
from moshbrosh.video_io import probe_video, save_frame, stream_frames
from moshbrosh.visualize import draw_vectors


def _params_from_args(args):
    """Window parameters from CLI flags. Blend is given in percent."""
    return validate_params(
        window_start=args.frame,
        duration=args.duration,
        block_size=args.block_size,
        search_range=args.search_range,
        blend=args.blend / 100.0,
        estimator=args.estimator,
    )


def _print_progress(stage, done, total):
    print(f"  {stage}: {done}/{total}", end="\r", flush=True)
    if done == total:
        print()


def cmd_mosh(args):
    """Datamosh a whole clip."""
    params = _params_from_args(args)
    preflight(args.input)
    info = probe_video(args.input)
    validate_clip(info)

    print("MoshBrosh CLI")
    print(f"Input:  {args.input}")
    print(f"Output: {args.output}")
    print(f"Mosh frame: {params.window_start}, Duration: {params.duration} frames")
    print(f"Block size: {params.block_size}, Search range: {params.search_range}")
    print(f"Estimator: {params.estimator.value}")
    print(f"Blend: {params.blend * 100:.0f}%")
    print(f"Video: {info['width']}x{info['height']} @ {info['fps']:.1f}fps\n")

    t0 = time.time()
    with processing_timeout():
        output = mosh_video(args.input, args.output, params, crf=args.crf, progress=_print_progress)
    elapsed = time.time() - t0

    print(f"Output: {output} ({output.stat().st_size / 1024:.0f} KB)")
    print(f"Time: {elapsed:.1f}s")


def cmd_vectors(args):
    """Draw the displacement field between frame f-1 and f."""
    params = _params_from_args(args)
    preflight(args.input)
    info = probe_video(args.input)

    prev = curr = None
    for i, rgba in enumerate(stream_frames(args.input, info["width"], info["height"])):
        if i == params.window_start - 1:
            prev = FrameBuffer.from_uint8(rgba)
        elif i == params.window_start:
            curr = FrameBuffer.from_uint8(rgba)
            break
    if prev is None or curr is None:
        raise ClipRejected(f"Frame {params.window_start} is past the end of {args.input}")

    field = estimator_for(params).estimate(
        prev, curr, params.block_size, params.search_range, frame_offset=args.offset,
    )
    output = save_frame(draw_vectors(curr, field, scale=args.scale), args.output)
    moving = int((field.dx != 0).sum() + (field.dy != 0).sum())
    print(f"Vectors: {field.blocks_x}x{field.blocks_y} blocks, {moving} non-zero components")
    print(f"Output: {output}")


def cmd_estimators(args):
    """List available motion estimators."""
    for entry in list_estimators():
        print(f"  {entry['name']:<16} {entry['description']} ({entry['clamp']} clamp)")


def _add_window_args(p):
    p.add_argument("-i", "--input", required=True, help="Input video file")
    p.add_argument("-o", "--output", required=True, help="Output path")
    p.add_argument("-f", "--frame", type=int, default=10, help="Mosh start frame (default: 10)")
    p.add_argument("-d", "--duration", type=int, default=30, help="Duration in frames (default: 30)")
    p.add_argument("-b", "--block-size", type=int, default=16, choices=[8, 16, 32],
                   help="Block size (default: 16)")
    p.add_argument("-s", "--search-range", type=int, default=16, help="Search range (default: 16)")
    p.add_argument("-m", "--blend", type=float, default=100.0, help="Blend amount 0-100 (default: 100)")
    p.add_argument("-e", "--estimator", default=EstimatorKind.BLOCK_MATCH.value,
                   choices=[k.value for k in EstimatorKind], help="Motion estimator")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="MoshBrosh — keyframe-deletion datamosh",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", help="Command")

    p = sub.add_parser("mosh", help="Datamosh a clip")
    _add_window_args(p)
    p.add_argument("--crf", type=int, default=18, help="H.264 quality (default: 18)")

    p = sub.add_parser("vectors", help="Draw motion vectors for one frame pair as an image")
    _add_window_args(p)
    p.add_argument("--offset", type=int, default=1, help="Frames into the window (synthetic_hash only)")
    p.add_argument("--scale", type=float, default=1.0, help="Arrow length multiplier")

    sub.add_parser("estimators", help="List motion estimators")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "mosh": cmd_mosh,
        "vectors": cmd_vectors,
        "estimators": cmd_estimators,
    }

    try:
        commands[args.command](args)
    except (MoshError, OSError, ValueError, RuntimeError, subprocess.CalledProcessError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
