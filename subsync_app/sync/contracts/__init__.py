"""Canonical ingest contract helpers for the subscription sync."""

from __future__ import annotations

from .subscription import (
    SOURCE_ACCOUNT_TYPES,
    SUBSCRIPTION_CANONICAL_FIELDS,
    AccountPayload,
    AccountType,
    AssociationPair,
    ContactPayload,
    DeactivationCandidate,
    FieldSpec,
    RowViolation,
    ValidatedRecord,
    get_subscription_field_specs,
    get_subscription_required_headers,
    is_valid_email,
    map_account_type,
    normalize_header,
    normalize_value,
    parse_bool,
    parse_count,
    project_account,
    project_contact,
    project_deactivation,
    required_headers_missing,
    validate_row,
)

__all__ = [
    "AccountPayload",
    "AccountType",
    "AssociationPair",
    "ContactPayload",
    "DeactivationCandidate",
    "FieldSpec",
    "RowViolation",
    "SOURCE_ACCOUNT_TYPES",
    "SUBSCRIPTION_CANONICAL_FIELDS",
    "ValidatedRecord",
    "get_subscription_field_specs",
    "get_subscription_required_headers",
    "is_valid_email",
    "map_account_type",
    "normalize_header",
    "normalize_value",
    "parse_bool",
    "parse_count",
    "project_account",
    "project_contact",
    "project_deactivation",
    "required_headers_missing",
    "validate_row",
]
