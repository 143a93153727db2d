"""Orchestrator: runs sync analysis and export for a Manifest."""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from clipsync import ffutil, memguard
from clipsync.analyzers.correlate import MAX_OFFSET_SECONDS, TARGET_SAMPLE_RATE
from clipsync.analyzers.dispatch import SyncDispatcher, create_dispatcher
from clipsync.editors import graph
from clipsync.editors.segments import kept_duration
from clipsync.manifest import Manifest
from clipsync.models import SyncResult

logger = logging.getLogger(__name__)


@dataclass
class EngineResult:
    output_path: Path
    sync: SyncResult | None = None
    sync_offset: float = 0.0
    segments_kept: int = 0
    duration_original: float = 0.0
    duration_final: float = 0.0


def sync_files(
    video_path: Path,
    audio_path: Path,
    max_offset_seconds: float = MAX_OFFSET_SECONDS,
    dispatcher: SyncDispatcher | None = None,
    on_progress: Callable[[float], None] | None = None,
) -> SyncResult:
    """Estimate how far ``audio_path`` is shifted relative to ``video_path``.

    Both files are size-checked before anything is decoded; the two decodes
    run concurrently and must both finish before correlation starts.
    """

    def _progress(frac: float) -> None:
        if on_progress:
            on_progress(frac)

    video_path, audio_path = Path(video_path), Path(audio_path)
    memguard.validate_combined(video_path.stat().st_size, audio_path.stat().st_size)
    _progress(0.1)

    with ThreadPoolExecutor(max_workers=2) as pool:
        video_job = pool.submit(
            ffutil.decode_to_mono, video_path, TARGET_SAMPLE_RATE, memguard.MAX_DECODE_DURATION_S
        )
        audio_job = pool.submit(
            ffutil.decode_to_mono, audio_path, TARGET_SAMPLE_RATE, memguard.MAX_DECODE_DURATION_S
        )
        video_signal = video_job.result()
        audio_signal = audio_job.result()
    _progress(0.4)

    owns_dispatcher = dispatcher is None
    dispatcher = dispatcher or create_dispatcher()
    try:
        result = dispatcher.run(video_signal, audio_signal, max_offset_seconds)
    finally:
        if owns_dispatcher:
            dispatcher.shutdown()

    logger.info(
        "Sync offset %+.3fs (confidence %.2f)", result.offset_seconds, result.confidence
    )
    _progress(1.0)
    return result


def process(
    manifest: Manifest,
    on_progress: Callable[[str, float], None] | None = None,
    dispatcher: SyncDispatcher | None = None,
) -> EngineResult:
    """Execute the full pipeline: optional auto-sync, plan, encode.

    Args:
        manifest: Validated editing manifest.
        on_progress: Optional callback(stage_name, fraction_complete).
        dispatcher: Correlation dispatcher; one is created when omitted.
    """

    def _progress(stage: str, frac: float) -> None:
        if on_progress:
            on_progress(stage, frac)

    def _sub_progress(stage: str, base: float, span: float):
        """Return a callback that maps [0,1] to [base, base+span]."""
        def cb(frac: float) -> None:
            _progress(stage, base + frac * span)
        return cb

    ffutil.check_ffmpeg()

    _progress("Probing video metadata", 0.0)
    video_probe = ffutil.probe(manifest.video)
    duration = manifest.duration if manifest.duration is not None else video_probe.duration
    has_external = manifest.audio is not None
    use_external = has_external and manifest.export.include_external_audio
    if not use_external and not video_probe.has_audio:
        raise ffutil.NoAudioStreamError(
            f"No audio stream found in {manifest.video} and no external audio selected"
        )
    _progress("Probing video metadata", 0.05)

    # --- Sync ---
    sync_result = None
    offset = manifest.sync.offset
    if use_external and manifest.sync.auto:
        sync_result = sync_files(
            manifest.video,
            manifest.audio,
            max_offset_seconds=manifest.sync.max_offset,
            dispatcher=dispatcher,
            on_progress=_sub_progress("Synchronizing audio", 0.05, 0.25),
        )
        offset = sync_result.offset_seconds

    # --- Plan ---
    _progress("Compiling edit", 0.30)
    plan = graph.build(
        manifest.export,
        manifest.cuts,
        duration,
        offset,
        has_external,
        video_input=str(manifest.video),
        audio_input=str(manifest.audio) if has_external else graph.AUDIO_INPUT,
        output=str(manifest.output),
    )
    final_duration = kept_duration(list(plan.segments))
    logger.info(
        "Exporting %d segment(s), %.1fs -> %.1fs", len(plan.segments), duration, final_duration
    )

    # --- Encode ---
    stage = f"Encoding {len(plan.segments)} segment(s)"
    _progress(stage, 0.32)
    ffutil.run_ffmpeg(
        plan.to_args(),
        duration=final_duration,
        on_progress=_sub_progress(stage, 0.32, 0.63),
    )

    _progress("Done", 1.0)
    return EngineResult(
        output_path=manifest.output,
        sync=sync_result,
        sync_offset=offset,
        segments_kept=len(plan.segments),
        duration_original=duration,
        duration_final=final_duration,
    )
