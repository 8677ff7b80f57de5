"""
Utility helpers for sync feature checks and engine lookup.
"""

from __future__ import annotations

from typing import Any, Callable

from flask import current_app

SYNC_EXTENSION_KEY = "subsync"


def _get_app(app=None):
    if app is not None:
        return app
    return current_app._get_current_object()


def get_sync_state(app=None) -> dict[str, Any]:
    """Return the sync extension state registered by ``init_sync``."""
    flask_app = _get_app(app)
    state = flask_app.extensions.get(SYNC_EXTENSION_KEY)
    if state is None:
        raise RuntimeError("Sync extension is not initialised; call init_sync(app) first.")
    return state


def is_worker_enabled(app=None) -> bool:
    """Return True when syncs may be queued onto the Celery worker."""
    config = _get_app(app).config
    return bool(config.get("SYNC_WORKER_ENABLED", False))


def get_engine(app=None):
    """Build a SyncEngine through the registered factory."""
    flask_app = _get_app(app)
    factory: Callable = get_sync_state(flask_app)["engine_factory"]
    return factory(flask_app)


def set_engine_factory(factory: Callable, app=None) -> None:
    """Replace the engine factory; used by tests to inject fake HubSpot clients."""
    get_sync_state(app)["engine_factory"] = factory
