"""
Subscription sync feature package.

Mounts the sync blueprint and CLI group, records extension state and wires the
optional Celery worker.
"""

from __future__ import annotations

from typing import Any, Callable

from flask import Flask

from subsync_app.sync.adapters.hubspot import check_hubspot_adapter_readiness
from subsync_app.utils.sync import is_worker_enabled

from .celery_app import SYNC_EXTENSION_KEY, ensure_celery_app, get_celery_app
from .cli import sync_cli
from .pipeline.engine import build_engine_from_app
from .views import sync_blueprint

__all__ = [
    "init_sync",
    "SYNC_EXTENSION_KEY",
    "get_celery_app",
    "get_adapter_readiness",
    "refresh_adapter_readiness",
]


def _ensure_extension_state(app: Flask) -> dict[str, Any]:
    return app.extensions.setdefault(
        SYNC_EXTENSION_KEY,
        {
            "worker_enabled": False,
            "celery_app": None,
            "engine_factory": build_engine_from_app,
            "adapter_readiness": {},
        },
    )


def _set_cli(app: Flask) -> None:
    # Avoid duplicate registrations when running tests
    command_name = sync_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)
    app.cli.add_command(sync_cli)


def init_sync(app: Flask, *, engine_factory: Callable | None = None) -> None:
    """
    Mount the sync blueprint and CLI and record state in ``app.extensions['subsync']``.
    """
    state = _ensure_extension_state(app)
    worker_enabled = is_worker_enabled(app)
    state["worker_enabled"] = worker_enabled
    if engine_factory is not None:
        state["engine_factory"] = engine_factory

    if worker_enabled:
        ensure_celery_app(app, state)

    readiness = refresh_adapter_readiness(app)
    if readiness.get("status") != "ready":
        messages = list(readiness.get("messages") or ())
        app.logger.warning(
            "HubSpot adapter not ready (status=%s). %s",
            readiness.get("status"),
            "; ".join(messages) or "No additional context provided.",
            extra={
                "sync_adapter_status": readiness.get("status"),
                "sync_adapter_missing_env": readiness.get("missing_env_vars"),
            },
        )

    if sync_blueprint.name not in app.blueprints and not getattr(app, "_got_first_request", False):
        app.register_blueprint(sync_blueprint)
    elif sync_blueprint.name not in app.blueprints:
        app.logger.warning("Sync blueprint registration skipped because the app has already handled its first request.")
    _set_cli(app)

    app.logger.info("Subscription sync initialised (worker_enabled=%s)", worker_enabled)


def get_adapter_readiness(app: Flask) -> dict[str, Any]:
    """Return cached HubSpot readiness information."""
    state = _ensure_extension_state(app)
    return dict(state.get("adapter_readiness", {}))


def refresh_adapter_readiness(app: Flask) -> dict[str, Any]:
    """Recompute HubSpot readiness and store it on the extension state."""
    state = _ensure_extension_state(app)
    readiness = check_hubspot_adapter_readiness(app.config).as_dict()
    state["adapter_readiness"] = readiness
    return dict(readiness)
