"""
CLI commands for running subscription syncs and managing the worker.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo

from subsync_app.sync.adapters.csv_subscriptions import CSVAdapterError
from subsync_app.sync.adapters.hubspot import (
    HubSpotAdapterError,
    HubSpotError,
    check_hubspot_adapter_readiness,
    ensure_hubspot_adapter_ready,
)
from subsync_app.sync.celery_app import DEFAULT_QUEUE_NAME, SYNC_EXTENSION_KEY, get_celery_app
from subsync_app.sync.pipeline import ReadPhaseError, SyncSummary
from subsync_app.sync.pipeline.engine import build_token_store
from subsync_app.sync.utils import cleanup_upload, resolve_upload_directory
from subsync_app.utils.sync import get_engine


@click.group(name="sync")
def sync_cli():
    """Subscription CSV to HubSpot sync commands."""


def _resolve_celery(app) -> Optional[Celery]:
    """
    Retrieve the registered Celery instance, raising a helpful error if missing.
    """
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Sync Celery app is unavailable. Set SYNC_WORKER_ENABLED=true before running worker commands."
        )
    return celery_app


def _format_summary(summary: SyncSummary) -> str:
    return (
        f"Sync completed in {summary.elapsed_seconds:.2f}s.\n"
        f"  rows_read             : {summary.rows_read}\n"
        f"  rows_skipped          : {summary.rows_skipped}\n"
        f"  accounts_created      : {summary.accounts_created}\n"
        f"  accounts_updated      : {summary.accounts_updated}\n"
        f"  contacts_created      : {summary.contacts_created}\n"
        f"  contacts_updated      : {summary.contacts_updated}\n"
        f"  associations_created  : {summary.associations_created}\n"
        f"  associations_skipped  : {summary.associations_skipped}\n"
        f"  associations_failed   : {summary.associations_failed}\n"
        f"  deactivations         : {summary.deactivations}\n"
        f"  batches_processed     : {summary.batches_processed}\n"
        f"  batches_failed        : {summary.batches_failed}\n"
        f"  errors                : {summary.errors}"
    )


@sync_cli.command("run")
@click.option(
    "--file",
    "file_path",
    required=True,
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="Subscription CSV to sync.",
)
@click.option("--queue", "queue", is_flag=True, help="Send the run to the background worker instead of running inline.")
@click.option("--summary-json", is_flag=True, help="Print the summary as JSON after the text report.")
@click.pass_context
def sync_run(ctx, file_path: Path, queue: bool, summary_json: bool):
    """Sync a subscription CSV into HubSpot."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    csv_path = file_path.resolve()

    if summary_json and queue:
        raise click.ClickException("--summary-json is only available for inline runs.")

    try:
        ensure_hubspot_adapter_ready(app.config)
    except HubSpotAdapterError as exc:
        raise click.ClickException(str(exc)) from exc

    if queue:
        celery_app = _resolve_celery(app)
        async_result = celery_app.send_task(
            "sync.pipeline.sync_csv",
            kwargs={"file_path": str(csv_path), "keep_file": True},
        )
        app.logger.info(
            "Subscription sync queued via CLI",
            extra={"sync_task_id": async_result.id, "sync_file_path": str(csv_path)},
        )
        click.echo(json.dumps({"task_id": async_result.id, "status": "queued", "file": str(csv_path)}))
        return

    with app.app_context():
        engine = get_engine(app)
        try:
            with csv_path.open("r", encoding="utf-8", newline="") as handle:
                summary = engine.run(handle)
        except (CSVAdapterError, ReadPhaseError, HubSpotError) as exc:
            raise click.ClickException(f"Sync failed: {exc}") from exc

    click.echo(_format_summary(summary))
    if summary_json:
        click.echo(json.dumps(summary.to_dict(), indent=2, sort_keys=True))


@sync_cli.command("status")
@click.pass_context
def sync_status(ctx):
    """Report HubSpot credential and token readiness."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    readiness = check_hubspot_adapter_readiness(app.config)
    click.echo(f"HubSpot adapter status: {readiness.status}")
    for message in readiness.messages():
        click.echo(f"  - {message}")
    state = app.extensions.get(SYNC_EXTENSION_KEY, {})
    click.echo(f"Worker enabled: {bool(state.get('worker_enabled'))}")


@sync_cli.command("exchange-code")
@click.argument("code")
@click.pass_context
def sync_exchange_code(ctx, code: str):
    """Exchange an OAuth authorization CODE for tokens and store them."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    tokens = build_token_store(app.config)
    try:
        tokens.exchange_code(code)
    except HubSpotError as exc:
        raise click.ClickException(f"Token exchange failed: {exc}") from exc
    click.echo(f"Stored HubSpot tokens in {tokens.token_file}.")


@sync_cli.command("cleanup-uploads")
@click.option(
    "--max-age-hours",
    default=72,
    show_default=True,
    type=int,
    help="Remove sync uploads older than the specified number of hours.",
)
@click.pass_context
def sync_cleanup_uploads(ctx, max_age_hours: int):
    """
    Delete stale uploaded CSV files from the configured storage directory.
    """

    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()

    with app.app_context():
        uploads_dir = resolve_upload_directory(app)
        cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
        removed = 0
        for path in uploads_dir.iterdir():
            if not path.is_file():
                continue
            try:
                modified = datetime.fromtimestamp(path.stat().st_mtime, timezone.utc)
            except FileNotFoundError:  # pragma: no cover - race condition
                continue
            if modified < cutoff:
                cleanup_upload(path)
                removed += 1

    click.echo(f"Removed {removed} upload file(s) older than {max_age_hours} hours from {uploads_dir}.")


@sync_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the sync background worker."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    state = app.extensions.get(SYNC_EXTENSION_KEY, {})
    if not state.get("worker_enabled") and not app.config.get("SYNC_WORKER_ENABLED"):
        click.echo(
            "Warning: SYNC_WORKER_ENABLED is false. Commands will still run, "
            "but enable the flag so the web app can queue syncs.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option(
    "--pool",
    type=str,
    help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').",
)
@click.option(
    "--queues",
    default=DEFAULT_QUEUE_NAME,
    show_default=True,
    help="Comma-separated queue list to consume.",
)
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """
    Start the Celery worker in the current process.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    state = app.extensions.get(SYNC_EXTENSION_KEY)
    if state is not None:
        state["worker_enabled"] = True
    celery_app = _resolve_celery(app)

    argv = [
        "worker",
        "--loglevel",
        loglevel,
        "-Q",
        queues,
    ]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    pool_msg = f", pool: {pool}" if pool else ""
    click.echo(f"Starting sync worker (queues: {queues}, loglevel: {loglevel}{pool_msg})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """
    Validate worker connectivity by executing the heartbeat task.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get("sync.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'sync.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc

    click.echo(json.dumps(payload, indent=2))
