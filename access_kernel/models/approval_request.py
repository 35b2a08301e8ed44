"""
Module: access_kernel.models.approval_request
Responsibility: ORM persistence for approval requests.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ (for DTO conversion) only.

Invariants enforced:
    - Status values: DB check constraint limits ``status`` to the lifecycle
      states.  The service layer moves status only through conditional
      UPDATEs (``WHERE status = :expected``).
    - Monotonic phase fields: ``to_dto()`` builds the per-status variant and
      fails loudly if a row carries a status without the fields that status
      requires.

Failure modes:
    - ValueError from ``to_dto()`` on a row that is internally inconsistent.
    - IntegrityError on duplicate request_id.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from access_kernel.db.base import Base, JSONText, UUIDString
from access_kernel.domain.approval import (
    ApprovalRequestStatus,
    ApproverType,
    HandlerResult,
    InputParam,
    InputResource,
    approval_request_from_fields,
    approval_request_to_fields,
)

if TYPE_CHECKING:
    from access_kernel.domain.approval import ApprovalRequest

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in ApprovalRequestStatus)

_RESULT_COLUMNS = (
    "validation_handler_result",
    "approved_handler_result",
    "revoked_handler_result",
)


class ApprovalRequestModel(Base):
    """Persistent approval request.  Rows are updated in place, never deleted."""

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_approval_requests_valid_status",
        ),
        # listByApprovalFlow keyset scan
        Index(
            "ix_approval_requests_flow_date",
            "catalog_id", "approval_flow_id", "request_date", "request_id",
        ),
        # listByRequester keyset scan
        Index(
            "ix_approval_requests_requester_date",
            "request_user_id", "request_date", "request_id",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    catalog_id: Mapped[str] = mapped_column(String(128), nullable=False)
    approval_flow_id: Mapped[str] = mapped_column(String(128), nullable=False)
    request_user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    approver_type: Mapped[str] = mapped_column(String(32), nullable=False)
    approver_id: Mapped[str] = mapped_column(String(36), nullable=False)
    input_params: Mapped[list[dict[str, Any]]] = mapped_column(JSONText(), nullable=False, default=list)
    input_resources: Mapped[list[dict[str, Any]]] = mapped_column(JSONText(), nullable=False, default=list)
    request_date: Mapped[datetime] = mapped_column(nullable=False)
    request_comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    auto_revoke_duration: Mapped[str | None] = mapped_column(String(16), nullable=True)

    validation_handler_result: Mapped[dict[str, Any] | None] = mapped_column(JSONText(), nullable=True)

    approved_date: Mapped[datetime | None] = mapped_column(nullable=True)
    user_id_who_approved: Mapped[str | None] = mapped_column(String(36), nullable=True)
    approved_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_handler_result: Mapped[dict[str, Any] | None] = mapped_column(JSONText(), nullable=True)

    rejected_date: Mapped[datetime | None] = mapped_column(nullable=True)
    user_id_who_rejected: Mapped[str | None] = mapped_column(String(36), nullable=True)
    reject_comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    revoked_date: Mapped[datetime | None] = mapped_column(nullable=True)
    user_id_who_revoked: Mapped[str | None] = mapped_column(String(36), nullable=True)
    revoked_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    revoked_handler_result: Mapped[dict[str, Any] | None] = mapped_column(JSONText(), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_id} "
            f"{self.catalog_id}/{self.approval_flow_id} status={self.status}>"
        )

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM row to the frozen per-status domain variant."""
        values: dict[str, Any] = {
            column.key: getattr(self, column.key)
            for column in self.__table__.columns
            if column.key not in ("id", "status")
        }
        values["approver_type"] = ApproverType(self.approver_type)
        values["input_params"] = tuple(
            InputParam(id=p["id"], value=p["value"]) for p in self.input_params
        )
        values["input_resources"] = tuple(
            InputResource(resource_type_id=r["resource_type_id"], resource_id=r["resource_id"])
            for r in self.input_resources
        )
        for key in _RESULT_COLUMNS:
            if values[key] is not None:
                values[key] = HandlerResult.from_dict(values[key])
        return approval_request_from_fields(ApprovalRequestStatus(self.status), values)

    @classmethod
    def from_dto(cls, dto: ApprovalRequest) -> ApprovalRequestModel:
        """Create ORM row from a domain variant."""
        return cls(**column_values(dto))


def column_values(dto: ApprovalRequest) -> dict[str, Any]:
    """Column values for a variant, with fields of unreached phases set to None."""
    values = approval_request_to_fields(dto)
    values["status"] = dto.status.value
    values["approver_type"] = dto.approver_type.value
    values["input_params"] = [{"id": p.id, "value": p.value} for p in dto.input_params]
    values["input_resources"] = [
        {"resource_type_id": r.resource_type_id, "resource_id": r.resource_id}
        for r in dto.input_resources
    ]
    for key in _RESULT_COLUMNS:
        if values[key] is not None:
            values[key] = values[key].to_dict()
    return values
