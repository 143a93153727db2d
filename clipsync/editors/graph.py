"""Export plan builder: keep segments + sync offset in, ffmpeg arguments out.

The graph is assembled as typed records (Filter / FilterChain / FilterGraph)
and only turned into ffmpeg's textual filter_complex syntax by ``str()`` and
``ExportPlan.to_args()``.

Strategy:
  1. Inputs: video (0) and, when external audio is used, the audio file (1).
  2. Audio source: external track shifted by the sync offset, or the
     video's own audio.
  3. Cuts: trim/atrim per keep segment, then concat.
  4. Optional loudness normalization.
  5. Codec and quality flags for the chosen container.
"""

import math
import re
from dataclasses import dataclass, field

import numpy as np

from clipsync.editors.segments import format_time, get_keep_segments
from clipsync.manifest import ExportConfig, ExportFormat, Quality
from clipsync.models import CutSegment, KeepSegment

VIDEO_INPUT = "input_video"
AUDIO_INPUT = "input_audio"

LOUDNORM_TARGETS = (("I", -16), ("TP", -1.5), ("LRA", 11))

CRF = {
    ExportFormat.MP4: {Quality.HIGH: 18, Quality.MEDIUM: 23, Quality.LOW: 28},
    ExportFormat.WEBM: {Quality.HIGH: 30, Quality.MEDIUM: 35, Quality.LOW: 40},
}

_RAW_AUDIO_STREAM = re.compile(r"\d+:a")


class NothingToExportError(ValueError):
    """Raised when the cuts remove the entire timeline."""
    pass


def format_number(value: float) -> str:
    """Shortest positional form: ``10`` rather than ``10.0``, ``0.00005`` rather than ``5e-05``."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return np.format_float_positional(value, unique=True, trim="-")


def _format_arg(value) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return format_number(value)
    return str(value)


@dataclass(frozen=True)
class Filter:
    """One ffmpeg filter with positional and/or ``key=value`` arguments.

    ``args`` items are either ``(key, value)`` pairs or bare positional values.
    """

    name: str
    args: tuple = ()

    def get(self, key: str):
        for item in self.args:
            if isinstance(item, tuple) and item[0] == key:
                return item[1]
        raise KeyError(key)

    def __str__(self) -> str:
        if not self.args:
            return self.name
        parts = []
        for item in self.args:
            if isinstance(item, tuple):
                parts.append(f"{item[0]}={_format_arg(item[1])}")
            else:
                parts.append(_format_arg(item))
        return f"{self.name}=" + ":".join(parts)


@dataclass(frozen=True)
class FilterChain:
    """Filters applied in sequence between labelled input and output pads."""

    inputs: tuple[str, ...]
    filters: tuple[Filter, ...]
    outputs: tuple[str, ...]

    def __str__(self) -> str:
        ins = "".join(f"[{label}]" for label in self.inputs)
        outs = "".join(f"[{label}]" for label in self.outputs)
        return ins + ",".join(str(f) for f in self.filters) + outs


@dataclass(frozen=True)
class FilterGraph:
    chains: tuple[FilterChain, ...] = ()

    def filters(self, name: str) -> list[Filter]:
        """All filters called ``name``, in graph order."""
        return [f for chain in self.chains for f in chain.filters if f.name == name]

    def __str__(self) -> str:
        return ";".join(str(chain) for chain in self.chains)


@dataclass(frozen=True)
class ExportPlan:
    """Everything the encoder needs for one export."""

    inputs: tuple[str, ...]
    graph: FilterGraph
    maps: tuple[str, ...]
    codec_options: tuple[tuple[str, str], ...]
    output: str
    segments: tuple[KeepSegment, ...] = field(default_factory=tuple)
    uses_external_audio: bool = False

    def to_args(self) -> list[str]:
        args: list[str] = []
        for path in self.inputs:
            args.extend(["-i", path])
        args.extend(["-filter_complex", str(self.graph)])
        for label in self.maps:
            args.extend(["-map", f"[{label}]"])
        for key, value in self.codec_options:
            args.extend([key, value])
        args.append(self.output)
        return args


def _delay_ms(offset_seconds: float) -> int:
    # Half-up rounding so 0.0025s -> 3ms regardless of banker's rounding.
    return int(math.floor(abs(offset_seconds) * 1000 + 0.5))


def _sync_chains(offset: float) -> tuple[list[FilterChain], str]:
    """Chains that shift the external audio (input 1) by ``offset`` seconds."""
    if offset == 0:
        return [], "1:a"

    if offset > 0:
        # Audio started late: push it later.
        ms = _delay_ms(offset)
        return [
            FilterChain(("1:a",), (Filter("adelay", (f"{ms}|{ms}",)),), ("a_synced",)),
        ], "a_synced"

    # Audio started early: drop its head and rebase timestamps.
    return [
        FilterChain(("1:a",), (Filter("atrim", (("start", abs(offset)),)),), ("a_synced",)),
        FilterChain(("a_synced",), (Filter("asetpts", ("PTS-STARTPTS",)),), ("a_synced_pts",)),
    ], "a_synced_pts"


def _codec_options(config: ExportConfig) -> tuple[tuple[str, str], ...]:
    crf = str(CRF[config.format][config.quality])
    if config.format is ExportFormat.MP4:
        return (
            ("-c:v", "libx264"), ("-crf", crf), ("-preset", "ultrafast"),
            ("-c:a", "aac"), ("-b:a", "192k"),
            ("-movflags", "+faststart"),
        )
    return (
        ("-c:v", "libvpx-vp9"), ("-crf", crf), ("-b:v", "0"), ("-deadline", "realtime"),
        ("-c:a", "libopus"), ("-b:a", "128k"),
    )


def build(
    config: ExportConfig,
    cuts: list[CutSegment],
    total_duration: float,
    sync_offset: float,
    has_external_audio: bool,
    video_input: str = VIDEO_INPUT,
    audio_input: str = AUDIO_INPUT,
    output: str | None = None,
) -> ExportPlan:
    """Compile cuts, sync offset and export settings into an ExportPlan."""
    use_external = config.include_external_audio and has_external_audio

    inputs = [video_input]
    if use_external:
        inputs.append(audio_input)

    if config.apply_cuts:
        segments = get_keep_segments(cuts, total_duration)
    else:
        segments = get_keep_segments([], total_duration)

    if not segments:
        raise NothingToExportError(
            f"Cuts remove the entire {format_time(total_duration)} timeline; nothing to export"
        )

    chains: list[FilterChain] = []
    audio_source = "0:a"
    if use_external:
        sync_chains, audio_source = _sync_chains(sync_offset)
        chains.extend(sync_chains)

    n = len(segments)
    # A filter output can feed only one consumer; raw input streams can be reused.
    audio_sources = [audio_source] * n
    if n > 1 and not _RAW_AUDIO_STREAM.fullmatch(audio_source):
        audio_sources = [f"a_src_{i}" for i in range(n)]
        chains.append(
            FilterChain((audio_source,), (Filter("asplit", (n,)),), tuple(audio_sources))
        )

    concat_inputs: list[str] = []
    for i, seg in enumerate(segments):
        bounds = (("start", seg.start), ("end", seg.end))
        chains.append(FilterChain(
            ("0:v",),
            (Filter("trim", bounds), Filter("setpts", ("PTS-STARTPTS",))),
            (f"v{i}",),
        ))
        chains.append(FilterChain(
            (audio_sources[i],),
            (Filter("atrim", bounds), Filter("asetpts", ("PTS-STARTPTS",))),
            (f"a{i}",),
        ))
        concat_inputs.extend([f"v{i}", f"a{i}"])

    out_v, out_a = "v_out", "a_pre_norm"
    chains.append(FilterChain(
        tuple(concat_inputs),
        (Filter("concat", (("n", n), ("v", 1), ("a", 1))),),
        (out_v, out_a),
    ))

    final_audio = out_a
    if config.normalize_audio:
        final_audio = "a_out"
        chains.append(FilterChain((out_a,), (Filter("loudnorm", LOUDNORM_TARGETS),), (final_audio,)))

    return ExportPlan(
        inputs=tuple(inputs),
        graph=FilterGraph(tuple(chains)),
        maps=(out_v, final_audio),
        codec_options=_codec_options(config),
        output=output or f"output.{config.format.value}",
        segments=tuple(segments),
        uses_external_audio=use_external,
    )


def build_command(
    config: ExportConfig,
    cuts: list[CutSegment],
    total_duration: float,
    sync_offset: float,
    has_external_audio: bool,
    **kwargs,
) -> list[str]:
    """Build the ffmpeg argument list (without the leading ``ffmpeg``)."""
    return build(config, cuts, total_duration, sync_offset, has_external_audio, **kwargs).to_args()
