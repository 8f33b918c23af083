"""Flask application factory for the Klyppr web UI."""

import tempfile
from pathlib import Path

from flask import Flask, jsonify

from klyppr.editors.encoders import EncoderPolicy
from klyppr.engine import JobController


def create_app(work_dir: Path | None = None, controller: JobController | None = None) -> Flask:
    app = Flask(__name__)
    app.config["WORK_DIR"] = work_dir or Path(tempfile.mkdtemp(prefix="klyppr_web_"))
    app.config["MAX_CONTENT_LENGTH"] = 10 * 1024 * 1024 * 1024  # 10 GB
    # One controller per app: at most one job runs at a time.
    app.extensions["klyppr_controller"] = controller or JobController(
        encoder_policy=EncoderPolicy.detect()
    )

    from klyppr.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({"error": "File too large"}), 413

    return app
