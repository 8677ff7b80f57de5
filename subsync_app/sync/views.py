"""
Sync blueprint endpoints: health, OAuth callback, CSV processing and docs.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from http import HTTPStatus

from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import Blueprint, current_app, jsonify, request

from config.monitoring import SyncApiMonitoring
from subsync_app.sync.adapters.csv_subscriptions import CSVAdapterError, CSVHeaderError
from subsync_app.sync.adapters.hubspot import (
    OPTIONAL_ENV_VARS,
    REQUIRED_ENV_VARS,
    HubSpotAdapterAuthError,
    HubSpotAdapterConfigError,
    HubSpotTokenError,
    ensure_hubspot_adapter_ready,
)
from subsync_app.sync.contracts.subscription import get_subscription_field_specs, get_subscription_required_headers
from subsync_app.sync.pipeline.engine import build_token_store
from subsync_app.sync.pipeline.executor import ReadPhaseError
from subsync_app.utils.sync import get_engine, get_sync_state, is_worker_enabled

from .celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from .utils import allowed_file, cleanup_upload, persist_upload

SERVICE_NAME = "subscription-sync"
SERVICE_VERSION = "1.0.0"
SYNC_TASK_NAME = "sync.pipeline.sync_csv"

sync_blueprint = Blueprint("sync", __name__)


def _json_error(error: str, status: HTTPStatus, *, message: str | None = None, **extra):
    payload = {"success": False, "error": error}
    if message:
        payload["message"] = message
    payload.update(extra)
    return jsonify(payload), status


def _max_upload_bytes() -> int:
    mb_limit = current_app.config.get("SYNC_MAX_UPLOAD_MB", 50)
    try:
        return int(mb_limit) * 1024 * 1024
    except (TypeError, ValueError):
        return 50 * 1024 * 1024


def _validate_upload(file_storage) -> None:
    if file_storage is None or file_storage.filename == "":
        raise ValueError("No file uploaded.")
    if not allowed_file(file_storage.filename):
        raise ValueError("Only CSV files are allowed.")

    max_bytes = _max_upload_bytes()
    content_length = getattr(file_storage, "content_length", None) or request.content_length
    if content_length and content_length > max_bytes:
        raise OverflowError("Upload exceeds maximum size limit.")

    # Fall back to checking the actual stream size if we do not have a header.
    if not content_length:
        position = file_storage.stream.tell()
        file_storage.stream.seek(0, 2)
        size_bytes = file_storage.stream.tell()
        file_storage.stream.seek(position)
        if size_bytes > max_bytes:
            raise OverflowError("Upload exceeds maximum size limit.")


def _run_sync(source, *, endpoint: str, extra: dict | None = None):
    """
    Check readiness, run the engine and translate failures into JSON responses.
    """

    started = time.perf_counter()
    status = "error"
    try:
        ensure_hubspot_adapter_ready(current_app.config)
        summary = get_engine(current_app).run(source)
        status = "success"
    except HubSpotAdapterConfigError as exc:
        return _json_error("HubSpot OAuth credentials not configured", HTTPStatus.INTERNAL_SERVER_ERROR, message=str(exc))
    except HubSpotAdapterAuthError as exc:
        status = "unauthenticated"
        return _json_error(
            "HubSpot authentication required. Please authenticate first.",
            HTTPStatus.UNAUTHORIZED,
            message=str(exc),
        )
    except CSVHeaderError as exc:
        status = "invalid"
        return _json_error("Invalid CSV", HTTPStatus.BAD_REQUEST, message=str(exc))
    except ReadPhaseError as exc:
        current_app.logger.error("Sync aborted during existence lookups: %s", exc)
        return _json_error("Failed to read existing HubSpot records", HTTPStatus.BAD_GATEWAY, message=str(exc))
    except (CSVAdapterError, HubSpotTokenError) as exc:
        current_app.logger.error("Sync failed: %s", exc)
        return _json_error("Failed to process CSV", HTTPStatus.INTERNAL_SERVER_ERROR, message=str(exc))
    except Exception as exc:
        current_app.logger.exception("Unexpected error while processing CSV", exc_info=exc)
        return _json_error("Failed to process CSV", HTTPStatus.INTERNAL_SERVER_ERROR, message=str(exc))
    finally:
        SyncApiMonitoring.record_request(
            endpoint=endpoint, duration_seconds=time.perf_counter() - started, status=status
        )

    payload = {"success": True, "message": "CSV processed successfully", "results": summary.to_dict()}
    if extra:
        payload.update(extra)
    return jsonify(payload), HTTPStatus.OK


@sync_blueprint.get("/health")
def healthcheck():
    """Liveness probe."""
    return (
        jsonify(
            {
                "status": "healthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "service": SERVICE_NAME,
            }
        ),
        200,
    )


@sync_blueprint.get("/api/worker-health")
def worker_health():
    """
    Validate worker availability via the heartbeat task.
    """
    worker_enabled = get_sync_state(current_app).get("worker_enabled", False)
    timeout_seconds = float(request.args.get("timeout", 5))

    payload = {
        "worker_enabled": worker_enabled,
        "queue": DEFAULT_QUEUE_NAME,
        "timeout_seconds": timeout_seconds,
    }

    if not worker_enabled:
        payload["status"] = "disabled"
        payload["message"] = "Worker flag disabled; start the worker or set SYNC_WORKER_ENABLED=true."
        return jsonify(payload), 200

    celery_app = get_celery_app(current_app)
    if celery_app is None:
        payload["status"] = "error"
        payload["error"] = "celery_app_unavailable"
        return jsonify(payload), 500

    task = celery_app.tasks.get("sync.healthcheck")
    if task is None:
        payload["status"] = "error"
        payload["error"] = "heartbeat_task_missing"
        return jsonify(payload), 500

    result = task.apply_async()
    try:
        payload["status"] = "ok"
        payload["heartbeat"] = result.get(timeout=timeout_seconds)
        return jsonify(payload), 200
    except CeleryTimeoutError:
        payload["status"] = "timeout"
        return jsonify(payload), 504


@sync_blueprint.get("/oauth/callback")
def oauth_callback():
    """Exchange the authorization code from HubSpot's redirect for tokens."""

    error = request.args.get("error")
    if error:
        return _json_error(
            "OAuth authorization failed",
            HTTPStatus.BAD_REQUEST,
            message=request.args.get("error_description") or error,
        )

    code = request.args.get("code")
    if not code:
        return _json_error("Authorization code not provided", HTTPStatus.BAD_REQUEST)

    tokens = build_token_store(current_app.config)
    try:
        tokens.exchange_code(code)
    except HubSpotTokenError as exc:
        current_app.logger.error("OAuth code exchange failed: %s", exc)
        return _json_error("Failed to exchange authorization code", HTTPStatus.INTERNAL_SERVER_ERROR, message=str(exc))

    current_app.logger.info("HubSpot OAuth tokens stored", extra={"sync_token_file": str(tokens.token_file)})
    return jsonify({"success": True, "message": "Successfully authenticated with HubSpot"}), 200


@sync_blueprint.post("/api/process-csv")
def process_csv():
    body = request.get_json(silent=True) or {}
    csv_data = body.get("csvData")
    if not csv_data or not isinstance(csv_data, str):
        return _json_error(
            "CSV data is required",
            HTTPStatus.BAD_REQUEST,
            message='Send a JSON body of the form {"csvData": "<csv text>"}.',
        )

    SyncApiMonitoring.record_payload_size(endpoint="process-csv", size_bytes=len(csv_data.encode("utf-8")))
    return _run_sync(csv_data, endpoint="process-csv")


@sync_blueprint.post("/api/upload-csv")
def upload_csv():
    file_storage = request.files.get("csvFile")
    try:
        _validate_upload(file_storage)
    except OverflowError as exc:
        return _json_error(str(exc), HTTPStatus.REQUEST_ENTITY_TOO_LARGE)
    except ValueError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    filename = file_storage.filename
    upload_path = persist_upload(file_storage, current_app)
    SyncApiMonitoring.record_payload_size(endpoint="upload-csv", size_bytes=upload_path.stat().st_size)

    if request.args.get("async") in {"1", "true", "yes"}:
        return _enqueue_upload(upload_path, filename)

    try:
        with upload_path.open("r", encoding="utf-8", newline="") as handle:
            return _run_sync(handle, endpoint="upload-csv", extra={"filename": filename})
    finally:
        cleanup_upload(upload_path)


def _enqueue_upload(upload_path, filename: str):
    celery_app = get_celery_app(current_app) if is_worker_enabled(current_app) else None
    if celery_app is None:
        cleanup_upload(upload_path)
        return _json_error(
            "Background worker not enabled",
            HTTPStatus.SERVICE_UNAVAILABLE,
            message="Set SYNC_WORKER_ENABLED=true and start `flask sync worker run`.",
        )

    async_result = celery_app.send_task(
        SYNC_TASK_NAME,
        kwargs={"file_path": str(upload_path), "keep_file": False},
    )
    current_app.logger.info(
        "Queued subscription sync",
        extra={"sync_task_id": async_result.id, "sync_upload_filename": filename},
    )
    return (
        jsonify(
            {
                "success": True,
                "message": "CSV queued for processing",
                "filename": filename,
                "task_id": async_result.id,
                "queue": DEFAULT_QUEUE_NAME,
            }
        ),
        HTTPStatus.ACCEPTED,
    )


@sync_blueprint.get("/api/docs")
def api_docs():
    return jsonify(
        {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "endpoints": {
                "GET /health": "Health check",
                "GET /oauth/callback": "HubSpot OAuth redirect target; stores tokens",
                "POST /api/process-csv": 'Sync CSV sent as JSON {"csvData": "..."}',
                "POST /api/upload-csv": "Sync an uploaded CSV file (multipart field csvFile); ?async=1 queues it",
                "GET /api/worker-health": "Background worker heartbeat",
                "GET /api/docs": "This document",
            },
            "requiredEnvVars": list(REQUIRED_ENV_VARS),
            "optionalEnvVars": list(OPTIONAL_ENV_VARS),
            "csvColumns": {
                "required": list(get_subscription_required_headers()),
                "optional": [spec.name for spec in get_subscription_field_specs() if not spec.required],
            },
        }
    )
