"""
MoshBrosh — CLI Tests
Argument handling and exit codes; the video pipeline itself is mocked.

Run with: pytest tests/test_cli.py -v
"""

import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import moshbrosh_cli
from moshbrosh.params import EstimatorKind
from conftest import make_texture


@pytest.fixture
def clip(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"\x00" * 1024)
    return path


INFO = {"width": 64, "height": 48, "fps": 30.0, "duration": 2.0,
        "has_audio": False, "codec": "h264", "total_frames": 60}


class TestCommands:

    def test_no_command(self, capsys):
        assert moshbrosh_cli.main([]) == 1

    def test_estimators_lists_all(self, capsys):
        assert moshbrosh_cli.main(["estimators"]) == 0
        out = capsys.readouterr().out
        for kind in EstimatorKind:
            assert kind.value in out

    def test_missing_input(self, tmp_path, capsys):
        code = moshbrosh_cli.main(["mosh", "-i", str(tmp_path / "nope.mp4"), "-o", str(tmp_path / "o.mp4")])
        assert code == 1
        assert "Error:" in capsys.readouterr().err

    def test_blend_out_of_range(self, clip, tmp_path, capsys):
        code = moshbrosh_cli.main(["mosh", "-i", str(clip), "-o", str(tmp_path / "o.mp4"), "-m", "150"])
        assert code == 1
        assert "blend" in capsys.readouterr().err

    def test_bad_block_size_is_usage_error(self, clip, tmp_path):
        with pytest.raises(SystemExit):
            moshbrosh_cli.main(["mosh", "-i", str(clip), "-o", str(tmp_path / "o.mp4"), "-b", "12"])


class TestMosh:

    def test_passes_window_params(self, clip, tmp_path):
        out = tmp_path / "o.mp4"
        out.write_bytes(b"\x00" * 10)
        with patch("moshbrosh_cli.probe_video", return_value=INFO), \
             patch("moshbrosh_cli.mosh_video", return_value=out) as mosh:
            code = moshbrosh_cli.main([
                "mosh", "-i", str(clip), "-o", str(out),
                "-f", "20", "-d", "15", "-b", "8", "-s", "6", "-m", "40", "-e", "gradient_flow",
            ])
        assert code == 0
        params = mosh.call_args.args[2]
        assert (params.window_start, params.duration, params.block_size, params.search_range) == (20, 15, 8, 6)
        assert params.blend == pytest.approx(0.4)
        assert params.estimator == EstimatorKind.GRADIENT_FLOW

    def test_oversized_clip_rejected(self, clip, tmp_path, capsys):
        big = dict(INFO, total_frames=100000)
        with patch("moshbrosh_cli.probe_video", return_value=big), \
             patch("moshbrosh_cli.mosh_video") as mosh:
            code = moshbrosh_cli.main(["mosh", "-i", str(clip), "-o", str(tmp_path / "o.mp4")])
        assert code == 1
        mosh.assert_not_called()

    def test_encoder_failure_exit_code(self, clip, tmp_path, capsys):
        with patch("moshbrosh_cli.probe_video", return_value=INFO), \
             patch("moshbrosh_cli.mosh_video", side_effect=RuntimeError("FFmpeg encoding failed")):
            code = moshbrosh_cli.main(["mosh", "-i", str(clip), "-o", str(tmp_path / "o.mp4")])
        assert code == 1
        assert "FFmpeg encoding failed" in capsys.readouterr().err

    def test_timeout_exit_code(self, clip, tmp_path, capsys):
        with patch("moshbrosh_cli.probe_video", return_value=INFO), \
             patch("moshbrosh_cli.mosh_video", side_effect=TimeoutError("Mosh run passed the 600s limit")):
            code = moshbrosh_cli.main(["mosh", "-i", str(clip), "-o", str(tmp_path / "o.mp4")])
        assert code == 1
        assert "600s limit" in capsys.readouterr().err


class TestVectors:

    def test_writes_preview(self, clip, tmp_path):
        decoded = [make_texture(64, 48, seed=i).to_uint8(alpha=True) for i in range(4)]
        with patch("moshbrosh_cli.probe_video", return_value=INFO), \
             patch("moshbrosh_cli.stream_frames", return_value=iter(decoded)):
            code = moshbrosh_cli.main([
                "vectors", "-i", str(clip), "-o", str(tmp_path / "v.png"), "-f", "2", "-s", "4",
            ])
        assert code == 0
        assert Path(tmp_path / "v.png").exists()

    def test_frame_past_end(self, clip, tmp_path, capsys):
        decoded = [make_texture(64, 48).to_uint8(alpha=True)]
        with patch("moshbrosh_cli.probe_video", return_value=INFO), \
             patch("moshbrosh_cli.stream_frames", return_value=iter(decoded)):
            code = moshbrosh_cli.main(["vectors", "-i", str(clip), "-o", str(tmp_path / "v.png"), "-f", "5"])
        assert code == 1
        assert "past the end" in capsys.readouterr().err
