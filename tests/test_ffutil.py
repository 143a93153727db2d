"""Unit tests for ffutil: probing, decoding and encoder invocation."""

import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from clipsync.ffutil import (
    DecodeError,
    FFmpegNotFoundError,
    NoAudioStreamError,
    check_ffmpeg,
    decode_to_mono,
    parse_progress,
    probe,
    run_ffmpeg,
)

VIDEO_STREAM = {
    "codec_type": "video",
    "codec_name": "h264",
    "width": 1920,
    "height": 1080,
    "r_frame_rate": "30/1",
}
AUDIO_STREAM = {
    "codec_type": "audio",
    "codec_name": "aac",
    "sample_rate": "44100",
}


def _probe_output(*streams) -> MagicMock:
    data = {"format": {"duration": "60.0"}, "streams": list(streams)}
    return MagicMock(returncode=0, stdout=json.dumps(data))


# ---------------------------------------------------------------------------
# check_ffmpeg
# ---------------------------------------------------------------------------

class TestCheckFFmpeg:
    @patch("clipsync.ffutil.shutil.which", return_value=None)
    def test_missing(self, mock_which):
        with pytest.raises(FFmpegNotFoundError, match="ffmpeg not found"):
            check_ffmpeg()

    @patch("clipsync.ffutil.shutil.which", return_value="/usr/bin/ffmpeg")
    def test_present(self, mock_which):
        check_ffmpeg()


# ---------------------------------------------------------------------------
# probe (mocked subprocess)
# ---------------------------------------------------------------------------

class TestProbe:
    @patch("clipsync.ffutil.subprocess.run")
    def test_basic(self, mock_run):
        mock_run.return_value = _probe_output(VIDEO_STREAM, AUDIO_STREAM)
        result = probe(Path("video.mp4"))
        assert result.duration == 60.0
        assert result.width == 1920
        assert result.fps == 30.0
        assert result.codec_audio == "aac"
        assert result.has_video and result.has_audio

    @patch("clipsync.ffutil.subprocess.run")
    def test_video_without_audio(self, mock_run):
        mock_run.return_value = _probe_output(VIDEO_STREAM)
        result = probe(Path("video.mp4"))
        assert not result.has_audio
        assert result.audio_sample_rate is None

    @patch("clipsync.ffutil.subprocess.run")
    def test_no_video_stream(self, mock_run):
        mock_run.return_value = _probe_output(AUDIO_STREAM)
        with pytest.raises(ValueError, match="No video stream"):
            probe(Path("video.mp4"))

    @patch("clipsync.ffutil.subprocess.run")
    def test_audio_only(self, mock_run):
        mock_run.return_value = _probe_output(AUDIO_STREAM)
        result = probe(Path("mic.wav"), require_video=False)
        assert result.audio_sample_rate == 44100
        assert not result.has_video

    @patch("clipsync.ffutil.subprocess.run")
    def test_audio_only_without_audio(self, mock_run):
        mock_run.return_value = _probe_output()
        with pytest.raises(NoAudioStreamError, match="No audio stream"):
            probe(Path("mic.wav"), require_video=False)


# ---------------------------------------------------------------------------
# decode_to_mono (mocked subprocess)
# ---------------------------------------------------------------------------

class TestDecodeToMono:
    @patch("clipsync.ffutil.subprocess.run")
    def test_wraps_pcm(self, mock_run):
        pcm = np.array([0.0, 0.5, -0.25], dtype=np.float32)
        mock_run.return_value = MagicMock(returncode=0, stdout=pcm.tobytes())

        signal = decode_to_mono(Path("mic.wav"), 8000)

        np.testing.assert_array_equal(signal.samples, pcm)
        assert signal.sample_rate == 8000
        cmd = mock_run.call_args[0][0]
        assert cmd[cmd.index("-ar") + 1] == "8000"
        assert cmd[cmd.index("-ac") + 1] == "1"
        assert "f32le" in cmd
        assert "-t" not in cmd

    @patch("clipsync.ffutil.subprocess.run")
    def test_max_duration(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout=b"")
        decode_to_mono(Path("mic.wav"), 8000, max_duration=60)
        cmd = mock_run.call_args[0][0]
        assert cmd[cmd.index("-t") + 1] == "60"
        assert cmd.index("-t") > cmd.index("-i")

    @patch("clipsync.ffutil.subprocess.run")
    def test_failure_raises_decode_error(self, mock_run):
        mock_run.side_effect = subprocess.CalledProcessError(
            1, ["ffmpeg"], stderr=b"Invalid data found when processing input"
        )
        with pytest.raises(DecodeError, match="Invalid data") as excinfo:
            decode_to_mono(Path("broken.mp3"), 8000)
        assert excinfo.value.path == Path("broken.mp3")
        assert isinstance(excinfo.value.__cause__, subprocess.CalledProcessError)

    @patch("clipsync.ffutil.subprocess.run", side_effect=FileNotFoundError("ffmpeg"))
    def test_missing_binary_raises_decode_error(self, mock_run):
        with pytest.raises(DecodeError):
            decode_to_mono(Path("mic.wav"), 8000)


# ---------------------------------------------------------------------------
# progress parsing and run_ffmpeg
# ---------------------------------------------------------------------------

class TestParseProgress:
    def test_out_time_us(self):
        assert parse_progress("out_time_us=5000000\n", 10.0) == 0.5

    def test_clamped(self):
        assert parse_progress("out_time_ms=20000000", 10.0) == 1.0

    def test_other_lines(self):
        assert parse_progress("frame=120", 10.0) is None
        assert parse_progress("progress=continue", 10.0) is None

    def test_unknown_duration(self):
        assert parse_progress("out_time_us=5000000", 0.0) is None


class TestRunFFmpeg:
    @patch("clipsync.ffutil.subprocess.Popen")
    def test_reports_progress(self, mock_popen):
        proc = MagicMock()
        proc.stdout = iter(["out_time_us=1000000\n", "out_time_us=2000000\n", "progress=end\n"])
        proc.stderr.read.return_value = ""
        proc.wait.return_value = 0
        mock_popen.return_value = proc

        seen = []
        run_ffmpeg(["-i", "in.mp4", "out.mp4"], duration=4.0, on_progress=seen.append)

        assert seen == [0.25, 0.5]
        cmd = mock_popen.call_args[0][0]
        assert cmd[0] == "ffmpeg"
        assert cmd[-3:] == ["-i", "in.mp4", "out.mp4"]

    @patch("clipsync.ffutil.subprocess.Popen")
    def test_failure_raises(self, mock_popen):
        proc = MagicMock()
        proc.stdout = iter([])
        proc.stderr.read.return_value = "Unknown encoder"
        proc.wait.return_value = 1
        mock_popen.return_value = proc

        with pytest.raises(subprocess.CalledProcessError) as excinfo:
            run_ffmpeg(["-i", "in.mp4", "out.mp4"])
        assert excinfo.value.stderr == "Unknown encoder"
