"""Shared data types used across ClipSync."""

import uuid
from dataclasses import dataclass

import numpy as np

MIN_CUT_DURATION = 0.05


class InvalidCutSegment(ValueError):
    """Raised when a cut is shorter than MIN_CUT_DURATION."""
    pass


@dataclass(frozen=True)
class TimeRange:
    """A start/end time pair in seconds."""

    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


# Derived keep intervals are plain time ranges.
KeepSegment = TimeRange


@dataclass(frozen=True)
class CutSegment:
    """A user-designated interval to exclude from the output."""

    id: str
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


def new_cut(start: float, end: float, id: str | None = None) -> CutSegment:
    """Create a validated CutSegment, generating an id when none is given."""
    start = float(start)
    end = float(end)
    if start < 0:
        raise InvalidCutSegment(f"Cut start {start:.2f}s is before the beginning of the timeline")
    if end - start < MIN_CUT_DURATION:
        raise InvalidCutSegment(
            f"Cut {start:.2f}s-{end:.2f}s is too short "
            f"(minimum {MIN_CUT_DURATION}s)"
        )
    return CutSegment(id=id or uuid.uuid4().hex[:12], start=start, end=end)


@dataclass(frozen=True, eq=False)
class Signal:
    """Mono PCM samples at a fixed sample rate.

    The sample array is made read-only on construction so a Signal can be
    handed between stages without defensive copies.
    """

    samples: np.ndarray
    sample_rate: int

    def __post_init__(self):
        samples = np.asarray(self.samples, dtype=np.float32)
        if samples.ndim != 1:
            raise ValueError("Signal samples must be one-dimensional")
        samples.flags.writeable = False
        object.__setattr__(self, "samples", samples)

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate if self.sample_rate else 0.0


@dataclass(frozen=True)
class SyncResult:
    """Estimated offset between a reference and a target track.

    A positive offset means the target starts later than the reference.
    """

    offset_seconds: float
    confidence: float


@dataclass
class ProbeResult:
    """Metadata extracted from a media file via ffprobe."""

    duration: float
    audio_sample_rate: int | None = None
    codec_audio: str | None = None
    width: int | None = None
    height: int | None = None
    fps: float | None = None
    codec_video: str | None = None

    @property
    def has_video(self) -> bool:
        return self.codec_video is not None

    @property
    def has_audio(self) -> bool:
        return self.codec_audio is not None
