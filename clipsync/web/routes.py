"""Web API routes for ClipSync."""

import json
import queue
import subprocess
import threading
import uuid
from pathlib import Path

from flask import Blueprint, Response, current_app, jsonify, request, send_file

from clipsync import memguard
from clipsync.analyzers.correlate import MAX_OFFSET_SECONDS
from clipsync.analyzers.dispatch import create_dispatcher
from clipsync.editors import graph
from clipsync.engine import process, sync_files
from clipsync.manifest import ExportConfig, Manifest, SyncConfig, parse_cuts
from clipsync.models import InvalidCutSegment

bp = Blueprint("web", __name__)

# In-memory job store: job_id -> job dict
_jobs: dict[str, dict] = {}
_dispatcher_lock = threading.Lock()

ROLES = ("video", "audio")


def _get_dispatcher():
    with _dispatcher_lock:
        if current_app.config.get("DISPATCHER") is None:
            current_app.config["DISPATCHER"] = create_dispatcher()
        return current_app.config["DISPATCHER"]


def _export_config(data: dict) -> ExportConfig:
    return ExportConfig(
        format=data.get("format", "mp4"),
        quality=data.get("quality", "high"),
        include_external_audio=data.get("include_external_audio", True),
        apply_cuts=data.get("apply_cuts", True),
        normalize_audio=data.get("normalize_audio", False),
    )


def _start_background(job: dict, target) -> None:
    """Run ``target(on_progress)`` on a thread, streaming progress to the job."""
    progress_queue: queue.Queue = queue.Queue()
    job["progress_queue"] = progress_queue
    job["status"] = "processing"
    job["error"] = None

    def run():
        try:
            def on_progress(stage: str, frac: float):
                progress_queue.put({"stage": stage, "progress": round(frac, 3)})

            target(on_progress)
            job["status"] = "done"
        except subprocess.CalledProcessError as e:
            job["status"] = "error"
            stderr = e.stderr if isinstance(e.stderr, str) else (e.stderr or b"").decode(errors="replace")
            job["error"] = f"ffmpeg failed: {stderr[-500:]}" if stderr else str(e)
        except Exception as e:
            job["status"] = "error"
            job["error"] = str(e)
        finally:
            progress_queue.put(None)  # sentinel

    threading.Thread(target=run, daemon=True).start()


@bp.route("/api/upload", methods=["POST"])
def upload():
    if "file" not in request.files:
        return jsonify({"error": "No file provided"}), 400

    f = request.files["file"]
    if not f.filename:
        return jsonify({"error": "Empty filename"}), 400

    role = request.form.get("role", "video")
    if role not in ROLES:
        return jsonify({"error": f"Unknown role {role!r}"}), 400

    job_id = request.form.get("job_id") or None
    if job_id is None:
        if role != "video":
            return jsonify({"error": "Upload the video first"}), 400
        job_id = uuid.uuid4().hex[:12]
        job_dir = Path(current_app.config["WORK_DIR"]) / job_id
        job_dir.mkdir(parents=True, exist_ok=True)
        _jobs[job_id] = {"dir": job_dir, "status": "uploaded"}
    elif job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    ext = Path(f.filename).suffix or (".mp4" if role == "video" else ".wav")
    path = job["dir"] / f"{role}{ext}"
    f.save(path)

    check = memguard.validate_file_size(path.stat().st_size, role)
    if not check.ok:
        path.unlink()
        return jsonify({"error": check.error}), 413

    job[f"{role}_path"] = path
    job[f"{role}_filename"] = f.filename

    resp = {"job_id": job_id, "role": role, "filename": f.filename}
    if check.warning:
        resp["warning"] = check.warning
    return jsonify(resp)


@bp.route("/api/plan", methods=["POST"])
def plan():
    """Compile cuts + settings into ffmpeg arguments without running anything."""
    data = request.get_json() or {}
    try:
        duration = float(data["duration"])
        export_plan = graph.build(
            _export_config(data.get("export", {})),
            parse_cuts(data.get("cuts", [])),
            duration,
            float(data.get("sync_offset", 0.0)),
            bool(data.get("has_external_audio", False)),
        )
    except KeyError as e:
        return jsonify({"error": f"Missing field {e}"}), 400
    except (InvalidCutSegment, graph.NothingToExportError, ValueError) as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({
        "args": export_plan.to_args(),
        "filter_complex": str(export_plan.graph),
        "segments": [{"start": s.start, "end": s.end} for s in export_plan.segments],
    })


@bp.route("/api/jobs/<job_id>/sync", methods=["POST"])
def start_sync(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    if job["status"] == "processing":
        return jsonify({"error": "Job is already processing"}), 409
    if "video_path" not in job or "audio_path" not in job:
        return jsonify({"error": "Upload both video and audio first"}), 400

    try:
        memguard.validate_combined(
            job["video_path"].stat().st_size, job["audio_path"].stat().st_size
        )
    except memguard.MemoryLimitExceeded as e:
        return jsonify({"error": str(e)}), 413

    max_offset = float((request.get_json(silent=True) or {}).get("max_offset", MAX_OFFSET_SECONDS))
    dispatcher = _get_dispatcher()

    def target(on_progress):
        result = sync_files(
            job["video_path"],
            job["audio_path"],
            max_offset_seconds=max_offset,
            dispatcher=dispatcher,
            on_progress=lambda frac: on_progress("Synchronizing audio", frac),
        )
        job["result"] = {
            "offset_seconds": result.offset_seconds,
            "confidence": result.confidence,
        }

    _start_background(job, target)
    return jsonify({"status": "started"})


@bp.route("/api/jobs/<job_id>/export", methods=["POST"])
def start_export(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    if job["status"] == "processing":
        return jsonify({"error": "Job is already processing"}), 409
    if "video_path" not in job:
        return jsonify({"error": "Upload a video first"}), 400

    data = request.get_json() or {}
    try:
        export = _export_config(data.get("export", {}))
        cuts = parse_cuts(data.get("cuts", []))
    except KeyError as e:
        return jsonify({"error": f"Missing field {e}"}), 400
    except (InvalidCutSegment, ValueError) as e:
        return jsonify({"error": str(e)}), 400

    offset = data.get("sync_offset")
    duration = data.get("duration")
    manifest = Manifest(
        video=job["video_path"],
        audio=job.get("audio_path"),
        output=job["dir"] / f"output.{export.format.value}",
        duration=float(duration) if duration is not None else None,
        cuts=cuts,
        sync=SyncConfig(auto=offset is None, offset=float(offset or 0.0)),
        export=export,
    )
    dispatcher = _get_dispatcher() if manifest.sync.auto and manifest.audio else None

    def target(on_progress):
        result = process(manifest, on_progress=on_progress, dispatcher=dispatcher)
        job["result"] = {
            "output_path": str(result.output_path),
            "duration_original": result.duration_original,
            "duration_final": result.duration_final,
            "segments_kept": result.segments_kept,
            "sync_offset": result.sync_offset,
        }

    _start_background(job, target)
    return jsonify({"status": "started"})


@bp.route("/api/jobs/<job_id>/progress")
def progress_stream(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    q = job.get("progress_queue")

    if q is None:
        return jsonify({"error": "No processing in progress"}), 409

    def generate():
        while True:
            try:
                msg = q.get(timeout=120)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                break
            if msg is None:
                if job["status"] == "error":
                    data = json.dumps({"error": job["error"]})
                else:
                    data = json.dumps({
                        "stage": "complete",
                        "progress": 1.0,
                        "result": job.get("result"),
                    })
                yield f"data: {data}\n\n"
                break
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/jobs/<job_id>/result")
def download_result(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    output = (job.get("result") or {}).get("output_path")
    if job["status"] != "done" or output is None:
        return jsonify({"error": "No exported file available"}), 409

    return send_file(Path(output), as_attachment=True)


@bp.route("/api/jobs/<job_id>/status")
def job_status(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    resp = {
        "status": job["status"],
        "video": job.get("video_filename"),
        "audio": job.get("audio_filename"),
    }
    if job["status"] == "done":
        resp["result"] = job.get("result")
    if job["status"] == "error":
        resp["error"] = job.get("error")
    return jsonify(resp)
