"""FFmpeg/ffprobe subprocess helpers."""

import json
import logging
import re
import shutil
import subprocess
from pathlib import Path
from typing import Callable

import numpy as np

from clipsync.models import ProbeResult, Signal

logger = logging.getLogger(__name__)


class FFmpegNotFoundError(RuntimeError):
    pass


class NoAudioStreamError(ValueError):
    """Raised when the input file has no audio stream."""
    pass


class DecodeError(RuntimeError):
    """Raised when ffmpeg cannot decode a file to PCM."""

    def __init__(self, path: Path, cause: BaseException | str):
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"Could not decode {self.path.name}: {cause}")


def check_ffmpeg() -> None:
    """Raise FFmpegNotFoundError if ffmpeg/ffprobe are not on PATH."""
    for cmd in ("ffmpeg", "ffprobe"):
        if shutil.which(cmd) is None:
            raise FFmpegNotFoundError(f"{cmd} not found on PATH")


def probe(input_path: Path, require_video: bool = True) -> ProbeResult:
    """Extract media metadata via ffprobe.

    Audio-only files are accepted when ``require_video`` is False.
    """
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(input_path),
    ]
    result = subprocess.run(cmd, capture_output=True, text=True, check=True)
    data = json.loads(result.stdout)

    video_stream = next(
        (s for s in data["streams"] if s["codec_type"] == "video"), None
    )
    audio_stream = next(
        (s for s in data["streams"] if s["codec_type"] == "audio"), None
    )

    if video_stream is None and require_video:
        raise ValueError(f"No video stream found in {input_path}")
    if audio_stream is None and not require_video:
        raise NoAudioStreamError(f"No audio stream found in {input_path}")

    probe_result = ProbeResult(duration=float(data["format"]["duration"]))

    if video_stream is not None:
        # Parse fps from r_frame_rate (e.g. "30/1")
        num, den = video_stream["r_frame_rate"].split("/")
        probe_result.fps = int(num) / int(den) if int(den) else None
        probe_result.width = int(video_stream["width"])
        probe_result.height = int(video_stream["height"])
        probe_result.codec_video = video_stream["codec_name"]

    if audio_stream is not None:
        probe_result.audio_sample_rate = int(audio_stream["sample_rate"])
        probe_result.codec_audio = audio_stream["codec_name"]

    return probe_result


def decode_to_mono(
    input_path: Path,
    sample_rate: int,
    max_duration: float | None = None,
) -> Signal:
    """Decode the first audio stream to mono float32 PCM at ``sample_rate``.

    With ``max_duration`` only the leading part of the file is decoded.
    """
    cmd = ["ffmpeg", "-nostdin", "-v", "error", "-i", str(input_path)]
    if max_duration is not None:
        cmd.extend(["-t", str(max_duration)])
    cmd.extend(["-vn", "-ac", "1", "-ar", str(sample_rate), "-f", "f32le", "-"])

    logger.debug("Decoding %s at %d Hz", input_path, sample_rate)
    try:
        result = subprocess.run(cmd, capture_output=True, check=True)
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or b"").decode(errors="replace").strip()
        raise DecodeError(input_path, stderr[-500:] or e) from e
    except OSError as e:
        raise DecodeError(input_path, e) from e

    samples = np.frombuffer(result.stdout, dtype=np.float32)
    logger.debug("Decoded %d samples from %s", len(samples), input_path)
    return Signal(samples, sample_rate)


_TIME_RE = re.compile(r"out_time_(?:us|ms)=(\d+)")


def parse_progress(line: str, duration: float) -> float | None:
    """Map one ``-progress`` line to a [0, 1] fraction, or None."""
    m = _TIME_RE.match(line.strip())
    if not m or duration <= 0:
        return None
    seconds = int(m.group(1)) / 1_000_000
    return min(max(seconds / duration, 0.0), 1.0)


def run_ffmpeg(
    args: list[str],
    duration: float = 0.0,
    on_progress: Callable[[float], None] | None = None,
) -> None:
    """Run ffmpeg with the given arguments, reporting encode progress.

    Raises subprocess.CalledProcessError (with stderr attached) on failure.
    """
    cmd = ["ffmpeg", "-y", "-nostdin", "-v", "error", "-progress", "pipe:1", "-nostats", *args]
    logger.debug("Running: %s", " ".join(cmd))

    proc = subprocess.Popen(
        cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True
    )
    # stderr is drained after stdout closes; "-v error" keeps it small.
    for line in proc.stdout:
        frac = parse_progress(line, duration)
        if frac is not None and on_progress:
            on_progress(frac)
    stderr = proc.stderr.read()
    returncode = proc.wait()

    if returncode != 0:
        raise subprocess.CalledProcessError(returncode, cmd, stderr=stderr)
