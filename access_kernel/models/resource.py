"""
Module: access_kernel.models.resource
Responsibility: ORM persistence for resource governance records.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ (for DTO conversion) only.

Invariants enforced:
    - One row per (catalog_id, resource_type_id, resource_id).
    - At most one pending update: ``pending_update_request_id`` is set only
      by a conditional UPDATE guarded on it being NULL, and cleared only by
      a conditional UPDATE guarded on the expected request id.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from access_kernel.db.base import Base, JSONText, UUIDString
from access_kernel.domain.providers import NotificationChannel
from access_kernel.domain.resource import AuditNotification, PendingUpdate, Resource


class ResourceModel(Base):
    __tablename__ = "resources"

    __table_args__ = (
        UniqueConstraint(
            "catalog_id", "resource_type_id", "resource_id",
            name="uq_resources_key",
        ),
        Index("ix_resources_parent", "catalog_id", "parent_resource_id"),
    )

    catalog_id: Mapped[str] = mapped_column(String(128), nullable=False)
    resource_type_id: Mapped[str] = mapped_column(String(128), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    parent_resource_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    owner_group_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    approver_group_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    pending_update_request_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    pending_update_user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    pending_update_requested_at: Mapped[datetime | None] = mapped_column(nullable=True)
    pending_update_params: Mapped[dict[str, Any] | None] = mapped_column(JSONText(), nullable=True)

    audit_notifications: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONText(), nullable=False, default=list,
    )

    def __repr__(self) -> str:
        return f"<Resource {self.catalog_id}/{self.resource_type_id}/{self.resource_id}>"

    def to_dto(self) -> Resource:
        pending = None
        if self.pending_update_request_id is not None:
            pending = PendingUpdate(
                approval_request_id=self.pending_update_request_id,
                request_user_id=self.pending_update_user_id or "",
                requested_at=self.pending_update_requested_at,
                proposed_params=dict(self.pending_update_params or {}),
            )
        return Resource(
            catalog_id=self.catalog_id,
            resource_type_id=self.resource_type_id,
            resource_id=self.resource_id,
            name=self.name,
            parent_resource_id=self.parent_resource_id,
            owner_group_id=self.owner_group_id,
            approver_group_id=self.approver_group_id,
            pending_update=pending,
            audit_notifications=tuple(
                audit_notification_from_dict(item) for item in self.audit_notifications
            ),
        )


def audit_notification_to_dict(notification: AuditNotification) -> dict[str, Any]:
    return {
        "id": notification.id,
        "cron_expression": notification.cron_expression,
        "channel": {
            "id": notification.channel.id,
            "type_id": notification.channel.type_id,
            "properties": dict(notification.channel.properties),
        },
    }


def audit_notification_from_dict(data: dict[str, Any]) -> AuditNotification:
    channel = data["channel"]
    return AuditNotification(
        id=data["id"],
        cron_expression=data["cron_expression"],
        channel=NotificationChannel(
            id=channel["id"],
            type_id=channel["type_id"],
            properties=channel.get("properties", {}),
        ),
    )
