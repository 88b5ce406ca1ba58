from __future__ import annotations

"""
JSON API (v1) for receipty.

Endpoints:
- POST /api/v1/print                 : Submit a print job (async). Returns 202 + Location
- POST /api/v1/jobs/<id>/reprint     : Queue a new job with the content of an existing one
- GET  /api/v1/jobs                  : Paginated job history, newest first
- GET  /api/v1/jobs/<id>             : Job status and detail
- GET  /api/v1/status                : Printer reachability (cached briefly)
- POST /api/v1/control/<command>     : feed | cut | status, confirmed by a status read
- POST /api/v1/control/status/print  : Query status and print the report as a job

Payload shape (POST /api/v1/print), JSON:
{"text": str, "image": base64 str, "image_mime": "image/png"}
or multipart/form-data with a `text` field and an `image` file.

Every route is rate limited per client address (`rate_limit_per_minute`).
"""

import base64
import hmac
import io
import logging
from typing import Any, Dict, Optional

from flask import Blueprint, current_app, jsonify, request, url_for
from PIL import Image
from pydantic import ValidationError

from receipty import csrf
from receipty.core.db import JobContent
from receipty.core.text import sanitize_text
from receipty.printing.client import CONTROL_COMMANDS
from receipty.printing.errors import ImageDecodeError
from receipty.printing.status import format_status_report
from receipty.web import schemas
from receipty.web.state import Services, get_services

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__, url_prefix="/api/v1")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def rate_limit() -> str:
    """Per-client limit for every /api/v1 route, from settings."""
    return f"{get_services().settings.rate_limit_per_minute} per minute"


def _json_error(msg: str, code: int = 400):
    return jsonify({"error": msg}), code


def _validation_message(e: ValidationError) -> str:
    try:
        msg = e.errors()[0].get("msg") or str(e)
    except Exception:
        msg = str(e)
    return msg.removeprefix("Value error, ")


@api_bp.before_request
def _require_api_key():
    """
    Reject API calls without a matching X-API-Key when a key is configured.
    """
    expected = get_services().settings.api_key
    if not expected:
        return None
    provided = request.headers.get("X-API-Key", "")
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        return _json_error("Unauthorized", 401)
    return None


def _sniff_mime(data: bytes) -> str:
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
    except Exception as e:
        raise ImageDecodeError(f"Could not decode image: {e}") from e
    mime = Image.MIME.get(fmt or "")
    if mime not in schemas.ALLOWED_IMAGE_MIMES:
        raise ImageDecodeError(f"Unsupported image format: {fmt}")
    return mime


def queue_content(services: Services, text: str, image: Optional[bytes] = None, image_mime: Optional[str] = None) -> int:
    """
    Encode the payload up front (to size it and to reject bad images before
    they are queued), persist the job, and wake the worker.
    """
    if image is not None and not image_mime:
        image_mime = _sniff_mime(image)
    payload = services.client.build_payload(text or None, image)
    job_id = services.store.insert_job(
        JobContent(
            text=text,
            image_data=image,
            image_mime=image_mime if image is not None else None,
            mode=services.client.mode,
            payload_bytes=len(payload),
        )
    )
    logger.info("Job %s queued (%d bytes)", job_id, len(payload), extra={"job_id": job_id})
    services.queue.wake()
    return job_id


def _accepted(job_id: int):
    api_href = url_for("api.job_status", job_id=job_id)
    resp_model = schemas.JobAcceptedResponse(id=job_id, status="queued", links=schemas.Links(self=api_href, job=api_href))
    resp = jsonify(resp_model.model_dump())
    resp.status_code = 202
    resp.headers["Location"] = api_href
    return resp


def _request_data() -> Dict[str, Any]:
    if request.is_json:
        return request.get_json(silent=True) or {}
    data: Dict[str, Any] = {}
    if "text" in request.form:
        data["text"] = request.form["text"]
    upload = request.files.get("image")
    if upload is not None and upload.filename:
        data["image"] = base64.b64encode(upload.read()).decode("ascii")
        if upload.mimetype and upload.mimetype != "application/octet-stream":
            data["image_mime"] = upload.mimetype
    return data


@csrf.exempt
@api_bp.post("/print")
def submit_print():
    """
    Validate a submission, queue it, and return 202 with the job location.
    """
    if not request.is_json and not request.form and not request.files:
        return _json_error("Expected application/json or multipart/form-data body", 415)

    services = get_services()
    try:
        req = schemas.PrintRequest.model_validate(
            _request_data(),
            context={
                "limits": {
                    "max_chars": services.settings.max_chars,
                    "max_image_bytes": services.settings.max_image_bytes,
                }
            },
        )
    except ValidationError as e:
        return _json_error(_validation_message(e), 400)

    try:
        job_id = queue_content(services, req.text or "", req.image, req.image_mime)
    except ImageDecodeError as e:
        return _json_error(str(e), 400)
    return _accepted(job_id)


@csrf.exempt
@api_bp.post("/jobs/<int:job_id>/reprint")
def reprint_job(job_id: int):
    """
    Queue a brand-new job copying the content of job_id. The original is untouched.
    """
    services = get_services()
    job = services.store.get_job(job_id)
    if job is None:
        return _json_error("Job not found", 404)

    text = sanitize_text(job.text)
    if not text and not job.has_image:
        return _json_error("text must include printable characters", 400)
    if len(text) > services.settings.max_chars:
        return _json_error(f"text exceeds {services.settings.max_chars} characters", 400)

    try:
        new_id = queue_content(services, text, job.image_data, job.image_mime)
    except ImageDecodeError as e:
        return _json_error(str(e), 400)
    logger.info("Job %s reprinted as %s", job_id, new_id, extra={"job_id": new_id})
    return _accepted(new_id)


def _int_arg(*names: str, default: int) -> int:
    for name in names:
        raw = request.args.get(name)
        if raw is None:
            continue
        try:
            value = int(raw)
        except ValueError:
            return default
        return value if value > 0 else default
    return default


@api_bp.get("/jobs")
def list_jobs():
    page = _int_arg("page", default=1)
    page_size = min(_int_arg("page_size", "pageSize", default=DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)
    data = get_services().store.list_jobs(page, page_size)
    return data.to_dict()


@api_bp.get("/jobs/<int:job_id>")
def job_status(job_id: int):
    """
    Return job JSON, 404 if not found.
    """
    job = get_services().store.get_job(job_id)
    if job is None:
        return _json_error("not_found", 404)
    return job.to_dict()


@api_bp.get("/status")
def printer_status():
    services = get_services()
    status = services.status_cache.get()
    return {"mode": services.client.mode, "connected": status.connected, "details": status.details}


@csrf.exempt
@api_bp.post("/control/status/print")
def print_status_report():
    """
    Query printer status and, when a report was obtained, print it as a text job.
    """
    services = get_services()
    try:
        result = services.client.control("status")
    except Exception as e:
        current_app.logger.exception("Status control failed: %s", e)
        return jsonify({"confirmed": False, "error": str(e)}), 502

    body = result.to_dict()
    if not (result.confirmed and result.status is not None):
        return body

    text = sanitize_text(format_status_report(result.status))
    if not text:
        body["error"] = "Status report was empty and could not be printed."
    elif len(text) > services.settings.max_chars:
        body["error"] = f"Status report exceeds {services.settings.max_chars} characters and could not be printed."
    else:
        body["jobId"] = queue_content(services, text)
    return body


@csrf.exempt
@api_bp.post("/control/<command>")
def control(command: str):
    if command not in CONTROL_COMMANDS:
        return _json_error(f"Unknown control command: {command}", 404)
    try:
        result = get_services().client.control(command)
    except Exception as e:
        current_app.logger.exception("Control %s failed: %s", command, e)
        return jsonify({"confirmed": False, "error": str(e)}), 502
    return result.to_dict()


__all__ = ["api_bp", "queue_content", "rate_limit"]
