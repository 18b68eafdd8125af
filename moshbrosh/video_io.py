"""
MoshBrosh — Video I/O
Decode/encode collaborator for the batch tool. FFmpeg subprocess pipes carry
raw RGBA frames in and out; stills go through Pillow.
"""

import json
import logging
import shutil
import subprocess
from pathlib import Path

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)


def find_tool(name: str) -> str:
    """Absolute path of an FFmpeg suite binary ("ffmpeg" or "ffprobe") on PATH."""
    path = shutil.which(name)
    if path is None:
        raise RuntimeError(f"'{name}' is not on PATH; moshing video files needs the FFmpeg command-line tools")
    return path


def probe_video(video_path: str) -> dict:
    """Resolution, fps, duration, frame count and audio presence of a video."""
    cmd = [
        find_tool("ffprobe"),
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(video_path),
    ]
    result = subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=30)
    data = json.loads(result.stdout)

    streams = data.get("streams", [])
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video is None:
        raise ValueError(f"No video stream found in {video_path}")

    num, _, den = video.get("r_frame_rate", "30/1").partition("/")
    fps = float(num) / float(den) if den and float(den) else 30.0
    duration = float(data.get("format", {}).get("duration", 0))

    return {
        "width": int(video["width"]),
        "height": int(video["height"]),
        "fps": fps,
        "duration": duration,
        "has_audio": any(s.get("codec_type") == "audio" for s in streams),
        "codec": video.get("codec_name", "unknown"),
        "total_frames": int(video.get("nb_frames") or int(duration * fps)),
    }


def stream_frames(video_path: str, width: int, height: int):
    """Decode a video to (H, W, 4) uint8 RGBA frames, one at a time."""
    cmd = [
        find_tool("ffmpeg"),
        "-v", "error",
        "-i", str(video_path),
        "-f", "rawvideo",
        "-pix_fmt", "rgba",
        "-vsync", "0",
        "-",
    ]
    frame_bytes = width * height * 4
    proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    try:
        while True:
            buf = proc.stdout.read(frame_bytes)
            if len(buf) < frame_bytes:
                break
            yield np.frombuffer(buf, dtype=np.uint8).reshape(height, width, 4)
    finally:
        proc.stdout.close()
        stderr = proc.stderr.read().decode(errors="replace")
        proc.stderr.close()
        returncode = proc.wait()
        if returncode not in (0, None) and stderr:
            logger.warning("FFmpeg decode exited with %d: %s", returncode, stderr[-500:])


def open_output_pipe(output_path: str, width: int, height: int, fps: float, crf: int = 18):
    """Start an H.264 encoder reading raw RGBA frames from stdin.

    Write frames with write_frame(), finish with close_output_pipe().
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    cmd = [
        find_tool("ffmpeg"), "-y",
        "-v", "error",
        "-f", "rawvideo",
        "-vcodec", "rawvideo",
        "-s", f"{width}x{height}",
        "-pix_fmt", "rgba",
        "-r", str(fps),
        "-i", "-",
        "-c:v", "libx264",
        "-crf", str(crf),
        "-preset", "medium",
        "-pix_fmt", "yuv420p",
        str(output_path),
    ]
    return subprocess.Popen(cmd, stdin=subprocess.PIPE, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE)


def write_frame(proc, rgba: np.ndarray) -> None:
    """Send one (H, W, 4) uint8 frame to an encoder pipe."""
    proc.stdin.write(np.ascontiguousarray(rgba, dtype=np.uint8).tobytes())


def close_output_pipe(proc, output_path: str) -> Path:
    """Flush the encoder and check it produced a file."""
    proc.stdin.close()
    stderr = proc.stderr.read().decode(errors="replace")
    proc.stderr.close()
    if proc.wait() != 0:
        raise RuntimeError(f"FFmpeg encoding failed: {stderr[-500:]}")
    output_path = Path(output_path)
    if not output_path.exists() or output_path.stat().st_size == 0:
        raise RuntimeError(f"Encoding produced empty file: {output_path}")
    return output_path


def save_frame(array: np.ndarray, output_path: str):
    """Save an (H, W, 3|4) uint8 array as an image (format from extension)."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(np.clip(array, 0, 255).astype(np.uint8)).save(str(output_path))
    return output_path
