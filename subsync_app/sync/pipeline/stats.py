"""Thread-safe run statistics for the subscription sync."""

from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass, fields


@dataclass(frozen=True)
class SyncSummary:
    """Immutable result of a sync run, consumed by the CLI, HTTP and worker callers."""

    rows_read: int = 0
    rows_skipped: int = 0
    accounts_created: int = 0
    accounts_updated: int = 0
    contacts_created: int = 0
    contacts_updated: int = 0
    associations_created: int = 0
    associations_skipped: int = 0
    associations_failed: int = 0
    deactivations: int = 0
    batches_processed: int = 0
    batches_failed: int = 0
    errors: int = 0
    elapsed_seconds: float = 0.0

    @property
    def records_written(self) -> int:
        return self.accounts_created + self.accounts_updated + self.contacts_created + self.contacts_updated

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = asdict(self)
        payload["elapsed_seconds"] = round(self.elapsed_seconds, 3)
        return payload


_COUNTER_NAMES = tuple(f.name for f in fields(SyncSummary) if f.name != "elapsed_seconds")


class SyncStats:
    """
    Single accumulator shared by every in-flight batch.

    All mutation happens under one lock so concurrent ``increment`` calls never
    lose updates; ``snapshot`` returns a frozen copy.
    """

    def __init__(self, *, clock=time.perf_counter) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._counters = dict.fromkeys(_COUNTER_NAMES, 0)
        self._started_at: float | None = None
        self._stopped_at: float | None = None

    def increment(self, **deltas: int) -> None:
        unknown = set(deltas) - set(self._counters)
        if unknown:
            raise KeyError(f"Unknown sync counters: {', '.join(sorted(unknown))}")
        with self._lock:
            for name, delta in deltas.items():
                self._counters[name] += int(delta)

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters[name]

    def start(self) -> None:
        with self._lock:
            self._started_at = self._clock()
            self._stopped_at = None

    def stop(self) -> None:
        with self._lock:
            self._stopped_at = self._clock()

    def elapsed(self) -> float:
        with self._lock:
            if self._started_at is None:
                return 0.0
            end = self._stopped_at if self._stopped_at is not None else self._clock()
            return max(0.0, end - self._started_at)

    def snapshot(self) -> SyncSummary:
        elapsed = self.elapsed()
        with self._lock:
            counters = dict(self._counters)
        return SyncSummary(elapsed_seconds=elapsed, **counters)


__all__ = ["SyncStats", "SyncSummary"]
