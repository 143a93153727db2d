"""JSON manifest schema: the contract between CLI/API and engine."""

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from clipsync.analyzers.correlate import MAX_OFFSET_SECONDS
from clipsync.models import CutSegment, new_cut


class ExportFormat(str, Enum):
    MP4 = "mp4"
    WEBM = "webm"


class Quality(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class ExportConfig:
    """Output settings for one export."""

    format: ExportFormat = ExportFormat.MP4
    quality: Quality = Quality.HIGH
    include_external_audio: bool = True
    apply_cuts: bool = True
    normalize_audio: bool = False

    def __post_init__(self):
        # Accept plain strings from JSON / form data; ValueError on anything else.
        object.__setattr__(self, "format", ExportFormat(self.format))
        object.__setattr__(self, "quality", Quality(self.quality))
        for name in ("include_external_audio", "apply_cuts", "normalize_audio"):
            if not isinstance(getattr(self, name), bool):
                raise ValueError(f"ExportConfig.{name} must be a boolean")


@dataclass
class SyncConfig:
    """How the external audio offset is obtained."""

    auto: bool = True
    offset: float = 0.0
    max_offset: float = MAX_OFFSET_SECONDS


@dataclass
class Manifest:
    """Top-level editing manifest."""

    video: Path
    output: Path
    audio: Path | None = None
    duration: float | None = None
    version: str = "1"
    cuts: list[CutSegment] = field(default_factory=list)
    sync: SyncConfig = field(default_factory=SyncConfig)
    export: ExportConfig = field(default_factory=ExportConfig)


def parse_cuts(items: list[dict]) -> list[CutSegment]:
    """Build validated cuts from ``{"id"?, "start", "end"}`` dicts."""
    return [new_cut(c["start"], c["end"], id=c.get("id")) for c in items]


def load_manifest(path: str | Path) -> Manifest:
    """Load and validate a manifest from a JSON file."""
    path = Path(path)
    data = json.loads(path.read_text())

    if "video" not in data or "output" not in data:
        raise ValueError("Manifest must contain 'video' and 'output' fields")

    sync = SyncConfig(**data["sync"]) if "sync" in data else SyncConfig()
    export = ExportConfig(**data["export"]) if "export" in data else ExportConfig()
    duration = data.get("duration")

    return Manifest(
        version=data.get("version", "1"),
        video=Path(data["video"]),
        output=Path(data["output"]),
        audio=Path(data["audio"]) if data.get("audio") else None,
        duration=float(duration) if duration is not None else None,
        cuts=parse_cuts(data.get("cuts", [])),
        sync=sync,
        export=export,
    )
