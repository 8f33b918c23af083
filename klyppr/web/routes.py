"""Web UI routes for Klyppr."""

import json
import logging
import queue
import threading
import uuid
from pathlib import Path

from flask import (
    Blueprint,
    Response,
    current_app,
    jsonify,
    render_template,
    request,
    send_file,
)

from klyppr.editors.encoders import QUALITY_SETTINGS
from klyppr.engine import JobBusyError, JobController
from klyppr.manifest import Manifest, SilenceCutConfig
from klyppr.models import ProgressSample

logger = logging.getLogger(__name__)

bp = Blueprint("web", __name__, template_folder="templates", static_folder="static")

# In-memory job store: job_id -> job dict
_jobs: dict[str, dict] = {}

FINISHED_STATUSES = ("done", "error", "cancelled")
PROGRESS_TIMEOUT = 120  # seconds without a progress message


def _controller() -> JobController:
    return current_app.extensions["klyppr_controller"]


@bp.route("/")
def index():
    return render_template("index.html", qualities=list(QUALITY_SETTINGS))


@bp.route("/api/upload", methods=["POST"])
def upload():
    if "file" not in request.files:
        return jsonify({"error": "No file provided"}), 400

    f = request.files["file"]
    if not f.filename:
        return jsonify({"error": "Empty filename"}), 400

    job_id = uuid.uuid4().hex[:12]
    job_dir = Path(current_app.config["WORK_DIR"]) / job_id
    job_dir.mkdir(parents=True, exist_ok=True)

    ext = Path(f.filename).suffix or ".mp4"
    input_path = job_dir / f"input{ext}"
    f.save(input_path)

    _jobs[job_id] = {
        "dir": job_dir,
        "input_path": input_path,
        "filename": f.filename,
        "status": "uploaded",
    }

    return jsonify({"job_id": job_id, "filename": f.filename})


@bp.route("/api/jobs/<job_id>/process", methods=["POST"])
def start_process(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    if job["status"] not in ("uploaded", *FINISHED_STATUSES):
        return jsonify({"error": f"Job is already {job['status']}"}), 409

    controller = _controller()
    if controller.active:
        return jsonify({"error": "Another job is running"}), 409

    config = request.get_json(silent=True) or {}
    input_path = job["input_path"]
    output_path = job["dir"] / f"processed{input_path.suffix}"

    sc = config.get("silence_cut", {})
    try:
        manifest = Manifest(
            input=input_path,
            output=output_path,
            silence_cut=SilenceCutConfig(
                threshold_db=float(sc.get("threshold_db", -35.0)),
                min_duration=float(sc.get("min_duration", 0.5)),
                padding=float(sc.get("padding", 0.05)),
            ),
            quality=config.get("quality", "medium"),
            normalize_audio=bool(config.get("normalize_audio", False)),
            use_hardware_encoder=bool(config.get("use_hardware_encoder", True)),
        )
    except (TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400

    progress_queue: queue.Queue = queue.Queue()
    job["progress_queue"] = progress_queue
    job["status"] = "processing"
    job["error"] = None

    def run():
        try:
            def on_progress(sample: ProgressSample):
                progress_queue.put(sample.to_dict())

            def on_log(line: str):
                progress_queue.put({"log": line})

            result = controller.run(manifest, on_progress=on_progress, on_log=on_log)
            job["result"] = result.to_dict()
            if result.success:
                job["status"] = "done"
            elif result.cancelled:
                job["status"] = "cancelled"
            else:
                job["status"] = "error"
                job["error"] = result.error
        except JobBusyError as e:
            job["status"] = "error"
            job["error"] = str(e)
        except Exception as e:
            logger.exception("Job %s crashed", job_id)
            job["status"] = "error"
            job["error"] = str(e)
        finally:
            progress_queue.put(None)  # sentinel

    threading.Thread(target=run, daemon=True).start()
    return jsonify({"status": "started"})


@bp.route("/api/jobs/<job_id>/cancel", methods=["POST"])
def cancel_process(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    if job["status"] != "processing":
        return jsonify({"error": f"Job is {job['status']}"}), 409

    # False while the worker has not yet handed the job to the controller.
    if not _controller().cancel():
        return jsonify({"error": "Job is not running yet"}), 409
    return jsonify({"status": "cancelling"})


def _final_event(job: dict) -> str:
    if job["status"] == "error":
        data = json.dumps({"error": job["error"]})
    elif job["status"] == "cancelled":
        data = json.dumps({"cancelled": True})
    else:
        data = json.dumps({
            "status": "complete",
            "percent": 100,
            "result": job.get("result"),
        })
    return f"data: {data}\n\n"


@bp.route("/api/jobs/<job_id>/progress")
def progress_stream(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    q = job.get("progress_queue")

    if q is None:
        return jsonify({"error": "No processing in progress"}), 409

    # The sentinel goes to whichever reader takes it first; later readers
    # of a finished job get the outcome directly.
    if job["status"] in FINISHED_STATUSES:
        return Response(_final_event(job), mimetype="text/event-stream")

    def generate():
        while True:
            try:
                msg = q.get(timeout=PROGRESS_TIMEOUT)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                break
            if msg is None:
                yield _final_event(job)
                break
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/jobs/<job_id>/result")
def download_result(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    if job["status"] != "done":
        return jsonify({"error": "Job not complete"}), 409

    output_path = Path(job["result"]["output_path"])
    return send_file(output_path, as_attachment=True, download_name=f"trimmed_{job['filename']}")


@bp.route("/api/jobs/<job_id>/status")
def job_status(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    resp = {"status": job["status"], "filename": job.get("filename")}
    if job["status"] == "processing":
        resp["state"] = _controller().state.value
    if job["status"] == "done":
        resp["result"] = job.get("result")
    if job["status"] == "error":
        resp["error"] = job.get("error")
    return jsonify(resp)
