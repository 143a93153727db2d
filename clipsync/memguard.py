"""File size validation and decode memory estimation.

Decoding a media file to raw PCM holds the whole track in memory. These
checks look at file sizes only and run before anything is decoded.
"""

from dataclasses import dataclass

KB = 1024
MB = 1024 * KB
GB = 1024 * MB

# Raw PCM in memory is roughly 4-8x the compressed file size.
MEMORY_MULTIPLIER = 6

MAX_COMBINED_MEMORY_MB = 1536

# Maximum audio duration (seconds) decoded for sync correlation.
MAX_DECODE_DURATION_S = 60

FILE_SIZE_LIMITS = {
    "video": {"warn_mb": 500, "max_mb": 2048},
    "audio": {"warn_mb": 200, "max_mb": 1024},
}


class MemoryLimitExceeded(RuntimeError):
    """Raised when decoding two inputs would exceed the memory ceiling."""

    def __init__(self, size_a: int, size_b: int, estimated_mb: float):
        self.size_a = size_a
        self.size_b = size_b
        self.estimated_mb = estimated_mb
        super().__init__(
            f"Files are too large to analyze together "
            f"({format_file_size(size_a)} + {format_file_size(size_b)}, "
            f"~{estimated_mb:.0f} MB decoded; limit {MAX_COMBINED_MEMORY_MB} MB). "
            f"Please use smaller files."
        )


@dataclass
class FileSizeValidation:
    """Outcome of a single-file size check."""

    ok: bool
    warning: str | None = None
    error: str | None = None


def format_file_size(size: float) -> str:
    """Format a byte count as KB, MB or GB."""
    if size < MB:
        return f"{size / KB:.0f} KB"
    if size < GB:
        return f"{size / MB:.1f} MB"
    return f"{size / GB:.2f} GB"


def estimate_memory_mb(size: int) -> float:
    """Estimate peak memory (MB) for decoding a file of ``size`` bytes."""
    return size / MB * MEMORY_MULTIPLIER


def validate_combined(size_a: int, size_b: int) -> None:
    """Raise MemoryLimitExceeded if decoding both files would not fit."""
    estimated = estimate_memory_mb(size_a + size_b)
    if estimated > MAX_COMBINED_MEMORY_MB:
        raise MemoryLimitExceeded(size_a, size_b, estimated)


def validate_file_size(size: int, kind: str) -> FileSizeValidation:
    """Check one file against the per-kind warn and max thresholds."""
    if kind not in FILE_SIZE_LIMITS:
        raise ValueError(f"Unknown file kind: {kind!r}")
    limits = FILE_SIZE_LIMITS[kind]
    label = kind.capitalize()
    size_mb = size / MB

    if size_mb > limits["max_mb"]:
        return FileSizeValidation(
            ok=False,
            error=(
                f"{label} file is too large ({format_file_size(size)}). "
                f"Maximum allowed size is {format_file_size(limits['max_mb'] * MB)}. "
                f"Please choose a smaller file."
            ),
        )

    if size_mb > limits["warn_mb"]:
        return FileSizeValidation(
            ok=True,
            warning=(
                f"{label} file is large ({format_file_size(size)}). "
                f"Processing may be slow or run out of memory."
            ),
        )

    return FileSizeValidation(ok=True)
