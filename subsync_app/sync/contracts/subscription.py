"""Canonical subscription ingest contract definitions.

Single source of truth for the subscription CSV columns, the row validation
rules, and the projection of a validated row into the HubSpot Account and
Contact payloads written by the sync engine.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum as PyEnum
from typing import Callable, Iterable, Mapping, Tuple

Normalizer = Callable[[object | None], object | None]

_WHITESPACE_RUN = re.compile(r"\s+")
_EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_value(value: object | None) -> object | None:
    """Trim a raw cell value and strip surrounding quote characters."""

    if not isinstance(value, str):
        return value
    return value.strip().strip('"').strip()


def _normalize_email(value: object | None) -> object | None:
    value = normalize_value(value)
    if isinstance(value, str):
        return value.lower()
    return value


@dataclass(frozen=True)
class FieldSpec:
    """Metadata describing a canonical subscription field."""

    name: str
    description: str
    required: bool = False
    normalizer: Normalizer | None = normalize_value


SUBSCRIPTION_CANONICAL_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec(
        name="user_id",
        description="Business identifier of the user; natural key of the Account.",
        required=True,
    ),
    FieldSpec(
        name="email",
        description="Primary email address (normalized lower-case); natural key of the Contact.",
        required=True,
        normalizer=_normalize_email,
    ),
    FieldSpec(
        name="user_type",
        description="Source platform code (MP, WIX, ...).",
    ),
    FieldSpec(
        name="active_sub",
        description="Whether the user currently holds an active subscription (true/false, 1/0).",
    ),
    FieldSpec(
        name="weekly_sub_count",
        description="Number of weekly subscriptions.",
    ),
    FieldSpec(
        name="monthly_sub_count",
        description="Number of monthly subscriptions.",
    ),
    FieldSpec(
        name="daily_sub_count",
        description="Number of daily subscriptions.",
    ),
)


def get_subscription_field_specs() -> Tuple[FieldSpec, ...]:
    """Return the canonical subscription field specifications."""

    return SUBSCRIPTION_CANONICAL_FIELDS


def get_subscription_required_headers() -> Tuple[str, ...]:
    """Headers that must be present in every subscription CSV."""

    return tuple(field.name for field in SUBSCRIPTION_CANONICAL_FIELDS if field.required)


def normalize_header(header: str | None) -> str:
    """Normalize a CSV header: lower-case, unquoted, whitespace runs collapsed to ``_``."""

    token = (header or "").strip().lstrip("\ufeff")
    token = token.replace('"', "").strip().lower()
    return _WHITESPACE_RUN.sub("_", token)


def required_headers_missing(headers: Iterable[str]) -> Tuple[str, ...]:
    """Return the subset of required headers that are missing."""

    present = {normalize_header(header) for header in headers}
    return tuple(header for header in get_subscription_required_headers() if header not in present)


# Validation --------------------------------------------------------------------


@dataclass(frozen=True)
class RowViolation:
    """A single failed validation rule for a row."""

    rule_code: str
    message: str


def _coerce_str(value: object | None) -> str:
    if value is None:
        return ""
    return str(value).strip()


def is_valid_email(value: object | None) -> bool:
    email = _coerce_str(value)
    return bool(email) and _EMAIL_REGEX.match(email) is not None


def validate_row(row: Mapping[str, object | None]) -> list[RowViolation]:
    """
    Evaluate the row against the subscription contract.

    Returns:
        List of violations (empty when the row becomes a ValidatedRecord).
    """

    violations: list[RowViolation] = []
    if not _coerce_str(row.get("user_id")):
        violations.append(RowViolation("ROW_USER_ID_REQUIRED", "Row is missing user_id."))
    email = _coerce_str(row.get("email"))
    if not email:
        violations.append(RowViolation("ROW_EMAIL_REQUIRED", "Row is missing email."))
    elif not is_valid_email(email):
        violations.append(RowViolation("ROW_EMAIL_FORMAT", "Email is not in a valid format."))
    return violations


@dataclass(frozen=True)
class ValidatedRecord:
    """A normalized row known to carry a non-empty user_id and a well-formed email."""

    sequence_number: int
    values: Mapping[str, object | None]

    @property
    def user_id(self) -> str:
        return _coerce_str(self.values.get("user_id"))

    @property
    def email(self) -> str:
        return _coerce_str(self.values.get("email"))

    def get(self, key: str, default: object | None = None) -> object | None:
        return self.values.get(key, default)


# Projection --------------------------------------------------------------------


class AccountType(PyEnum):
    """HubSpot account/contact type options."""

    MP = "MP"
    USAMPS = "USAMPS"


SOURCE_ACCOUNT_TYPES: Mapping[str, AccountType] = {
    "MP": AccountType.MP,
    "WIX": AccountType.USAMPS,
}


def map_account_type(user_type: object | None) -> str | None:
    """Map a source ``user_type`` onto the HubSpot option; unknown values pass through."""

    if user_type is None:
        return None
    token = str(user_type).strip()
    mapped = SOURCE_ACCOUNT_TYPES.get(token)
    return mapped.value if mapped is not None else token


def parse_bool(value: object | None) -> bool:
    """Interpret ``true``/``1`` (case-insensitive) as True; anything else is False."""

    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        token = value.strip().lower()
        return token == "true" or token == "1"
    return bool(value)


def parse_count(value: object | None) -> int:
    """Parse a subscription count, treating blanks and garbage as zero."""

    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    token = _coerce_str(value)
    if not token:
        return 0
    try:
        return int(token)
    except ValueError:
        try:
            return int(float(token))
        except (ValueError, OverflowError):
            return 0


def _bool_property(value: bool) -> str:
    return "true" if value else "false"


@dataclass(frozen=True)
class AccountPayload:
    """Account write payload keyed by the business id."""

    business_id: str
    account_type: str | None
    active_subscription: bool
    weekly_subscriptions: int
    monthly_subscriptions: int
    daily_subscriptions: int
    ever_had_subscription: bool

    def to_properties(self) -> dict[str, str]:
        properties = {
            "id": self.business_id,
            "active_subscription": _bool_property(self.active_subscription),
            "weekly_subscriptions": str(self.weekly_subscriptions),
            "monthly_subscriptions": str(self.monthly_subscriptions),
            "daily_subscriptions": str(self.daily_subscriptions),
        }
        # Never sent as false so an update cannot clear it.
        if self.ever_had_subscription:
            properties["ever_had_subscription"] = "true"
        if self.account_type:
            properties["account_type"] = self.account_type
        return properties


@dataclass(frozen=True)
class ContactPayload:
    """Contact write payload keyed by email. Names and other columns are ignored."""

    email: str
    user_type: str | None

    def to_properties(self) -> dict[str, str]:
        properties = {"email": self.email}
        if self.user_type:
            properties["user_type"] = self.user_type
        return properties


@dataclass(frozen=True)
class AssociationPair:
    """Candidate Contact→Account link expressed in business keys."""

    business_id: str
    email: str


@dataclass(frozen=True)
class DeactivationCandidate:
    """Subscription reset values for a locally inactive account."""

    business_id: str
    weekly_subscriptions: int
    monthly_subscriptions: int
    daily_subscriptions: int

    def to_properties(self) -> dict[str, str]:
        return {
            "active_subscription": "false",
            "weekly_subscriptions": str(self.weekly_subscriptions),
            "monthly_subscriptions": str(self.monthly_subscriptions),
            "daily_subscriptions": str(self.daily_subscriptions),
        }


def project_account(record: ValidatedRecord) -> AccountPayload | None:
    """Project a record into its Account payload, or None without a business id."""

    business_id = record.user_id
    if not business_id:
        return None
    active = parse_bool(record.get("active_sub"))
    return AccountPayload(
        business_id=business_id,
        account_type=map_account_type(record.get("user_type")) or None,
        active_subscription=active,
        weekly_subscriptions=parse_count(record.get("weekly_sub_count")),
        monthly_subscriptions=parse_count(record.get("monthly_sub_count")),
        daily_subscriptions=parse_count(record.get("daily_sub_count")),
        ever_had_subscription=active,
    )


def project_contact(record: ValidatedRecord) -> ContactPayload | None:
    """Project a record into its Contact payload, or None without an email."""

    email = record.email
    if not email:
        return None
    return ContactPayload(email=email, user_type=map_account_type(record.get("user_type")) or None)


def project_deactivation(record: ValidatedRecord) -> DeactivationCandidate:
    return DeactivationCandidate(
        business_id=record.user_id,
        weekly_subscriptions=parse_count(record.get("weekly_sub_count")),
        monthly_subscriptions=parse_count(record.get("monthly_sub_count")),
        daily_subscriptions=parse_count(record.get("daily_sub_count")),
    )
