"""
Approval request domain types (``access_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the approval request lifecycle: the status state
machine, handler results, the per-status request variants, and the
auto-revoke duration grammar.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports from
``db/``, ``models/``, ``services/`` or ``selectors/``.

Invariants enforced
-------------------
* Lifecycle state machine -- ``APPROVAL_REQUEST_TRANSITIONS`` defines the
  only valid status transitions.  Nothing ever moves a request backwards.
* Monotonic phase fields -- each status has its own frozen dataclass.  A
  variant carries the fields of its own phase and of every earlier phase,
  and nothing else, so "approved fields present iff approved or later" is
  a property of the type rather than a convention.
* ``submitted`` is reserved.  It is a valid stored value but no
  transition produces it.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import MISSING, dataclass, fields
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, ClassVar, Union
from uuid import UUID

from access_kernel.exceptions import InvalidAutoRevokeDurationError, ValidationError


# =========================================================================
# Status lifecycle
# =========================================================================


class ApprovalRequestStatus(str, Enum):
    """Approval request lifecycle states (stored values are camelCase)."""

    SUBMITTED = "submitted"
    VALIDATION_FAILED = "validationFailed"
    PENDING = "pending"
    APPROVED = "approved"
    APPROVED_ACTION_SUCCEEDED = "approvedActionSucceeded"
    APPROVED_ACTION_FAILED = "approvedActionFailed"
    REJECTED = "rejected"
    REVOKED = "revoked"
    REVOKED_ACTION_SUCCEEDED = "revokedActionSucceeded"
    REVOKED_ACTION_FAILED = "revokedActionFailed"


APPROVAL_REQUEST_TRANSITIONS: dict[ApprovalRequestStatus, frozenset[ApprovalRequestStatus]] = {
    ApprovalRequestStatus.SUBMITTED: frozenset({
        ApprovalRequestStatus.VALIDATION_FAILED,
        ApprovalRequestStatus.PENDING,
    }),
    ApprovalRequestStatus.PENDING: frozenset({
        ApprovalRequestStatus.APPROVED,
        ApprovalRequestStatus.REJECTED,
    }),
    ApprovalRequestStatus.APPROVED: frozenset({
        ApprovalRequestStatus.APPROVED_ACTION_SUCCEEDED,
        ApprovalRequestStatus.APPROVED_ACTION_FAILED,
    }),
    ApprovalRequestStatus.APPROVED_ACTION_SUCCEEDED: frozenset({
        ApprovalRequestStatus.REVOKED,
    }),
    ApprovalRequestStatus.REVOKED: frozenset({
        ApprovalRequestStatus.REVOKED_ACTION_SUCCEEDED,
        ApprovalRequestStatus.REVOKED_ACTION_FAILED,
    }),
    ApprovalRequestStatus.VALIDATION_FAILED: frozenset(),
    ApprovalRequestStatus.APPROVED_ACTION_FAILED: frozenset(),
    ApprovalRequestStatus.REJECTED: frozenset(),
    ApprovalRequestStatus.REVOKED_ACTION_SUCCEEDED: frozenset(),
    ApprovalRequestStatus.REVOKED_ACTION_FAILED: frozenset(),
}

TERMINAL_APPROVAL_REQUEST_STATUSES: frozenset[ApprovalRequestStatus] = frozenset(
    status for status, targets in APPROVAL_REQUEST_TRANSITIONS.items() if not targets
)


def is_valid_transition(
    current: ApprovalRequestStatus, target: ApprovalRequestStatus,
) -> bool:
    return target in APPROVAL_REQUEST_TRANSITIONS.get(current, frozenset())


class ApproverType(str, Enum):
    """How the approver group of a request is resolved at submit time."""

    APPROVAL_FLOW = "approvalFlow"
    RESOURCE = "resource"
    REQUEST_SPECIFIED = "requestSpecified"


# =========================================================================
# Handler results and inputs
# =========================================================================


@dataclass(frozen=True)
class HandlerResult:
    """Outcome reported by a catalog handler.  Failure is data, not an exception."""

    is_success: bool
    message: str = ""

    @classmethod
    def success(cls, message: str = "") -> HandlerResult:
        return cls(True, message)

    @classmethod
    def failure(cls, message: str) -> HandlerResult:
        return cls(False, message)

    def to_dict(self) -> dict[str, Any]:
        return {"is_success": self.is_success, "message": self.message}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HandlerResult:
        return cls(bool(data["is_success"]), str(data.get("message", "")))


InputParamValue = Union[str, int, float, bool]


@dataclass(frozen=True)
class InputParam:
    """One submitted value for a parameter declared by the approval flow."""

    id: str
    value: InputParamValue


@dataclass(frozen=True)
class InputResource:
    """A resource the requester targets, identified within its resource type."""

    resource_type_id: str
    resource_id: str


# =========================================================================
# Approval request variants (one per status)
# =========================================================================


@dataclass(frozen=True, kw_only=True)
class _RequestCore:
    """Fields every approval request carries from submission onward."""

    status: ClassVar[ApprovalRequestStatus]

    request_id: UUID
    catalog_id: str
    approval_flow_id: str
    request_user_id: str
    approver_type: ApproverType
    approver_id: str
    input_params: tuple[InputParam, ...] = ()
    input_resources: tuple[InputResource, ...] = ()
    request_date: datetime
    request_comment: str = ""
    auto_revoke_duration: str | None = None

    def input_params_by_id(self) -> dict[str, InputParamValue]:
        return {p.id: p.value for p in self.input_params}

    def input_resources_by_type(self) -> dict[str, str]:
        return {r.resource_type_id: r.resource_id for r in self.input_resources}


@dataclass(frozen=True, kw_only=True)
class SubmittedRequest(_RequestCore):
    """Reserved status; stored values may carry it but nothing produces it."""

    status: ClassVar[ApprovalRequestStatus] = ApprovalRequestStatus.SUBMITTED


@dataclass(frozen=True, kw_only=True)
class _Validated(_RequestCore):
    validation_handler_result: HandlerResult


@dataclass(frozen=True, kw_only=True)
class ValidationFailedRequest(_Validated):
    status: ClassVar[ApprovalRequestStatus] = ApprovalRequestStatus.VALIDATION_FAILED


@dataclass(frozen=True, kw_only=True)
class PendingRequest(_Validated):
    status: ClassVar[ApprovalRequestStatus] = ApprovalRequestStatus.PENDING


@dataclass(frozen=True, kw_only=True)
class RejectedRequest(_Validated):
    status: ClassVar[ApprovalRequestStatus] = ApprovalRequestStatus.REJECTED

    rejected_date: datetime
    user_id_who_rejected: str
    reject_comment: str = ""


@dataclass(frozen=True, kw_only=True)
class _Approved(_Validated):
    approved_date: datetime
    user_id_who_approved: str
    approved_comment: str = ""


@dataclass(frozen=True, kw_only=True)
class ApprovedRequest(_Approved):
    """Approval recorded; the approve handler has not reported yet."""

    status: ClassVar[ApprovalRequestStatus] = ApprovalRequestStatus.APPROVED


@dataclass(frozen=True, kw_only=True)
class _ApprovedWithResult(_Approved):
    approved_handler_result: HandlerResult


@dataclass(frozen=True, kw_only=True)
class ApprovedActionSucceededRequest(_ApprovedWithResult):
    status: ClassVar[ApprovalRequestStatus] = ApprovalRequestStatus.APPROVED_ACTION_SUCCEEDED


@dataclass(frozen=True, kw_only=True)
class ApprovedActionFailedRequest(_ApprovedWithResult):
    status: ClassVar[ApprovalRequestStatus] = ApprovalRequestStatus.APPROVED_ACTION_FAILED


@dataclass(frozen=True, kw_only=True)
class _Revoked(_ApprovedWithResult):
    revoked_date: datetime
    user_id_who_revoked: str
    revoked_comment: str = ""


@dataclass(frozen=True, kw_only=True)
class RevokedRequest(_Revoked):
    """Revoke recorded; the revoke handler has not reported yet."""

    status: ClassVar[ApprovalRequestStatus] = ApprovalRequestStatus.REVOKED


@dataclass(frozen=True, kw_only=True)
class _RevokedWithResult(_Revoked):
    revoked_handler_result: HandlerResult


@dataclass(frozen=True, kw_only=True)
class RevokedActionSucceededRequest(_RevokedWithResult):
    status: ClassVar[ApprovalRequestStatus] = ApprovalRequestStatus.REVOKED_ACTION_SUCCEEDED


@dataclass(frozen=True, kw_only=True)
class RevokedActionFailedRequest(_RevokedWithResult):
    status: ClassVar[ApprovalRequestStatus] = ApprovalRequestStatus.REVOKED_ACTION_FAILED


ApprovalRequest = Union[
    SubmittedRequest,
    ValidationFailedRequest,
    PendingRequest,
    ApprovedRequest,
    ApprovedActionSucceededRequest,
    ApprovedActionFailedRequest,
    RejectedRequest,
    RevokedRequest,
    RevokedActionSucceededRequest,
    RevokedActionFailedRequest,
]

REQUEST_VARIANTS: dict[ApprovalRequestStatus, type] = {
    cls.status: cls
    for cls in (
        SubmittedRequest,
        ValidationFailedRequest,
        PendingRequest,
        ApprovedRequest,
        ApprovedActionSucceededRequest,
        ApprovedActionFailedRequest,
        RejectedRequest,
        RevokedRequest,
        RevokedActionSucceededRequest,
        RevokedActionFailedRequest,
    )
}

# Phase field groups, in the order a request accrues them
VALIDATION_FIELDS = ("validation_handler_result",)
APPROVAL_FIELDS = ("approved_date", "user_id_who_approved", "approved_comment")
APPROVAL_RESULT_FIELDS = ("approved_handler_result",)
REJECTION_FIELDS = ("rejected_date", "user_id_who_rejected", "reject_comment")
REVOCATION_FIELDS = ("revoked_date", "user_id_who_revoked", "revoked_comment")
REVOCATION_RESULT_FIELDS = ("revoked_handler_result",)

PHASE_FIELDS: tuple[str, ...] = (
    VALIDATION_FIELDS
    + APPROVAL_FIELDS
    + APPROVAL_RESULT_FIELDS
    + REJECTION_FIELDS
    + REVOCATION_FIELDS
    + REVOCATION_RESULT_FIELDS
)


def variant_field_names(status: ApprovalRequestStatus) -> frozenset[str]:
    return frozenset(f.name for f in fields(REQUEST_VARIANTS[status]))


def approval_request_from_fields(
    status: ApprovalRequestStatus, values: Mapping[str, Any],
) -> ApprovalRequest:
    """
    Build the variant for ``status`` from a flat mapping of stored values.

    Phase fields that do not belong to the status are dropped.  A field the
    status requires that is missing (None, with no default) raises
    ValueError, which indicates a corrupt row.
    """
    variant = REQUEST_VARIANTS[status]
    kwargs: dict[str, Any] = {}
    for f in fields(variant):
        value = values.get(f.name)
        if value is None:
            if f.default is MISSING:
                raise ValueError(
                    f"Approval request {values.get('request_id')} has status "
                    f"{status.value} but no {f.name}"
                )
            continue
        kwargs[f.name] = value
    return variant(**kwargs)


def approval_request_to_fields(request: ApprovalRequest) -> dict[str, Any]:
    """Flatten a variant to its field values, with absent phases set to None."""
    values: dict[str, Any] = {name: None for name in PHASE_FIELDS}
    for f in fields(request):
        values[f.name] = getattr(request, f.name)
    values["status"] = request.status
    return values


# =========================================================================
# Auto-revoke duration
# =========================================================================


AUTO_REVOKE_DURATION_RE = re.compile(r"P(?:(?:([0-9]+)D(?:T([0-9]+)H)?)|(?:T([0-9]+)H))")
MAX_AUTO_REVOKE_DAYS = 99
MAX_AUTO_REVOKE_HOURS = 99


@dataclass(frozen=True)
class AutoRevokeSpec:
    """Flow-level auto-revoke settings."""

    enabled: bool = False
    max_duration: str | None = None


def parse_auto_revoke_duration(duration: str) -> timedelta:
    """
    Parse ``PnD``, ``PnDTnH`` or ``PTnH`` into a timedelta.

    Days and hours are each limited to 99 and the total must be positive.
    """
    if not isinstance(duration, str):
        raise ValidationError(
            f"Auto revoke duration must be a string, got {type(duration).__name__}"
        )
    match = AUTO_REVOKE_DURATION_RE.fullmatch(duration)
    if match is None:
        raise InvalidAutoRevokeDurationError(duration, "expected PnD, PnDTnH or PTnH")
    days_text, day_hours_text, hours_only_text = match.groups()
    days = int(days_text) if days_text is not None else 0
    hours_text = day_hours_text if day_hours_text is not None else hours_only_text
    hours = int(hours_text) if hours_text is not None else 0
    if days > MAX_AUTO_REVOKE_DAYS:
        raise InvalidAutoRevokeDurationError(duration, f"days must be <= {MAX_AUTO_REVOKE_DAYS}")
    if hours > MAX_AUTO_REVOKE_HOURS:
        raise InvalidAutoRevokeDurationError(duration, f"hours must be <= {MAX_AUTO_REVOKE_HOURS}")
    delta = timedelta(days=days, hours=hours)
    if delta <= timedelta(0):
        raise InvalidAutoRevokeDurationError(duration, "duration must be positive")
    return delta


def validate_auto_revoke_duration(duration: str, spec: AutoRevokeSpec | None) -> timedelta:
    """Check a requested duration against the flow's auto-revoke settings."""
    if spec is None or not spec.enabled:
        raise InvalidAutoRevokeDurationError(
            duration, "auto revoke is not enabled for this approval flow",
        )
    delta = parse_auto_revoke_duration(duration)
    if spec.max_duration is not None and delta > parse_auto_revoke_duration(spec.max_duration):
        raise InvalidAutoRevokeDurationError(
            duration, f"exceeds the maximum of {spec.max_duration}",
        )
    return delta


# =========================================================================
# Listing
# =========================================================================


@dataclass(frozen=True)
class DateRange:
    """Inclusive request-date window."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValidationError("Date range bounds must be timezone-aware")
        if self.start > self.end:
            raise ValidationError(
                f"Date range start {self.start.isoformat()} is after end {self.end.isoformat()}",
                "Invalid date range",
            )


@dataclass(frozen=True)
class Page:
    """One page of results plus the token for the next page, if any."""

    items: tuple[Any, ...]
    pagination_token: str | None = None
