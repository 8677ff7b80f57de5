"""
Sync Celery tasks.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from celery import shared_task
from flask import current_app

from subsync_app.sync.utils import cleanup_upload
from subsync_app.utils.sync import get_engine


@shared_task(name="sync.healthcheck", bind=True)
def sync_healthcheck(self) -> dict[str, Any]:
    """
    Simple heartbeat task used by worker health checks.
    """
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "timestamp": now.isoformat(),
        "worker_hostname": self.request.hostname,
        "app_version": getattr(self.app, "user_options", {}).get("version"),
    }


@shared_task(name="sync.pipeline.sync_csv", bind=True)
def sync_csv(self, *, file_path: str, keep_file: bool = False) -> dict[str, Any]:
    """
    Run the subscription sync for a stored CSV on the worker.
    """

    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"CSV file not found: {file_path}")

    # Uploads are removed once processed; CLI runs point at operator files and keep them.
    cleanup_target: Path | None = None if keep_file else path

    try:
        with path.open("r", encoding="utf-8", newline="") as handle:
            summary = get_engine(current_app).run(handle)
        current_app.logger.info(
            "Queued subscription sync completed",
            extra={
                "sync_task_id": self.request.id,
                "sync_file_path": file_path,
                "sync_summary": summary.to_dict(),
            },
        )
        return summary.to_dict()
    except Exception as exc:
        current_app.logger.exception(
            "Queued subscription sync failed",
            extra={
                "sync_task_id": self.request.id,
                "sync_file_path": file_path,
                "sync_error": str(exc),
            },
        )
        raise
    finally:
        if cleanup_target is not None:
            cleanup_upload(cleanup_target)
