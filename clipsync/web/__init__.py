"""Flask application factory for the ClipSync web API."""

import tempfile
from pathlib import Path

from flask import Flask, jsonify

from clipsync import memguard


def create_app(work_dir: Path | None = None, dispatcher=None) -> Flask:
    app = Flask(__name__)
    app.config["WORK_DIR"] = work_dir or Path(tempfile.mkdtemp(prefix="clipsync_"))
    app.config["MAX_CONTENT_LENGTH"] = memguard.FILE_SIZE_LIMITS["video"]["max_mb"] * memguard.MB
    # None means the sync routes create (and keep) one on first use.
    app.config["DISPATCHER"] = dispatcher

    from clipsync.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({"error": "File too large"}), 413

    return app
