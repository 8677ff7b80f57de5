"""CSV adapter for subscription ingest.

Validates the header row against the subscription contract, streams rows with
normalized keys and values, and drops rows that fail validation so the sync
engine only ever sees ValidatedRecords.
"""

from __future__ import annotations

import csv
import io
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import IO, Iterator, Sequence

from subsync_app.sync.contracts import (
    FieldSpec,
    ValidatedRecord,
    get_subscription_field_specs,
    get_subscription_required_headers,
    normalize_header,
    normalize_value,
    required_headers_missing,
    validate_row,
)

logger = logging.getLogger(__name__)


class CSVAdapterError(Exception):
    """Base exception for CSV adapter failures."""


class CSVHeaderError(CSVAdapterError):
    """Raised when the CSV header row does not meet contract requirements."""

    def __init__(self, *, missing: Sequence[str] | None = None) -> None:
        if missing:
            message = f"Invalid CSV format: missing required columns: {', '.join(missing)}."
        else:
            message = "Invalid CSV format."
        super().__init__(message)
        self.missing = tuple(missing or ())


@dataclass(frozen=True)
class SubscriptionCSVRow:
    """Represents a parsed CSV row with normalized keys and values."""

    sequence_number: int
    source_line: int
    raw: dict[str, object | None]
    normalized: dict[str, object | None]


@dataclass
class SubscriptionCSVStatistics:
    """Accumulated statistics from CSV parsing and validation."""

    rows_read: int = 0
    rows_valid: int = 0
    rows_skipped_blank: int = 0
    rows_skipped_invalid: int = 0
    rule_counts: Counter[str] = field(default_factory=Counter)

    @property
    def rows_skipped(self) -> int:
        return self.rows_skipped_blank + self.rows_skipped_invalid


def _row_is_blank(row: dict[str, object | None]) -> bool:
    return all((value is None or (isinstance(value, str) and value.strip() == "")) for value in row.values())


class SubscriptionCSVAdapter:
    """CSV reader that enforces the subscription ingest contract."""

    def __init__(self, file_obj: IO[str], *, skip_blank_rows: bool = True) -> None:
        self._file_obj = file_obj
        self.skip_blank_rows = skip_blank_rows
        self.header: tuple[str, ...] = ()
        self.statistics = SubscriptionCSVStatistics()
        self._field_specs = {spec.name: spec for spec in get_subscription_field_specs()}

    @classmethod
    def from_text(cls, text: str, **kwargs) -> "SubscriptionCSVAdapter":
        return cls(io.StringIO(text), **kwargs)

    def _prepare_reader(self) -> csv.DictReader:
        reader = csv.DictReader(self._file_obj)
        if reader.fieldnames is None:
            raise CSVHeaderError(missing=get_subscription_required_headers())

        missing = required_headers_missing(reader.fieldnames)
        if missing:
            raise CSVHeaderError(missing=missing)

        reader.fieldnames = [normalize_header(header) for header in reader.fieldnames]
        self.header = tuple(reader.fieldnames)
        return reader

    def iter_rows(self) -> Iterator[SubscriptionCSVRow]:
        reader = self._prepare_reader()
        for sequence_number, raw_row in enumerate(reader, start=1):
            # DictReader stores overflow cells under None
            row_copy = {key: value for key, value in raw_row.items() if key is not None}

            if self.skip_blank_rows and _row_is_blank(row_copy):
                self.statistics.rows_skipped_blank += 1
                continue

            self.statistics.rows_read += 1
            yield SubscriptionCSVRow(
                sequence_number=sequence_number,
                source_line=reader.line_num,
                raw=row_copy,
                normalized=self._apply_normalizers(row_copy),
            )

    def iter_validated_records(self) -> Iterator[ValidatedRecord]:
        """Yield only rows satisfying the contract; invalid rows are counted and dropped."""

        for row in self.iter_rows():
            violations = validate_row(row.normalized)
            if violations:
                self.statistics.rows_skipped_invalid += 1
                for violation in violations:
                    self.statistics.rule_counts[violation.rule_code] += 1
                logger.debug(
                    "Subscription row skipped",
                    extra={
                        "sync_row_sequence": row.sequence_number,
                        "sync_row_source_line": row.source_line,
                        "sync_row_rules": [violation.rule_code for violation in violations],
                    },
                )
                continue
            self.statistics.rows_valid += 1
            yield ValidatedRecord(sequence_number=row.sequence_number, values=row.normalized)

    def _apply_normalizers(self, row: dict[str, object | None]) -> dict[str, object | None]:
        normalized: dict[str, object | None] = {}
        for key, value in row.items():
            spec: FieldSpec | None = self._field_specs.get(key)
            if spec is None:
                normalized[key] = normalize_value(value)
            elif spec.normalizer is None:
                normalized[key] = value
            else:
                normalized[key] = spec.normalizer(value)
        return normalized
