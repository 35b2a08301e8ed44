"""
Module: access_kernel.models.scheduler_event
Responsibility: Storage for the SQL-backed reference scheduler provider.

The event id is chosen by the hub (e.g. ``auto-revoke-<requestId>``) and is
the lookup key; the surrogate ``id`` column is never exposed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from access_kernel.db.base import Base, JSONText
from access_kernel.domain.providers import SchedulePattern, SchedulePatternType, SchedulerEvent


class SchedulerEventModel(Base):
    __tablename__ = "scheduler_events"

    __table_args__ = (
        CheckConstraint(
            "(schedule_type = 'cron' AND cron_expression IS NOT NULL)"
            " OR (schedule_type = 'at' AND fire_at IS NOT NULL)",
            name="ck_scheduler_events_pattern",
        ),
        Index("ix_scheduler_events_fire_at", "fire_at"),
    )

    event_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column("property", JSONText(), nullable=False, default=dict)
    schedule_type: Mapped[str] = mapped_column(String(8), nullable=False)
    cron_expression: Mapped[str | None] = mapped_column(String(128), nullable=True)
    fire_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<SchedulerEvent {self.event_id} {self.event_type}>"

    def to_dto(self) -> SchedulerEvent:
        return SchedulerEvent(
            id=self.event_id,
            event_type=self.event_type,
            property=dict(self.payload),
            schedule_pattern=SchedulePattern(
                SchedulePatternType(self.schedule_type),
                expression=self.cron_expression,
                time=self.fire_at,
            ),
        )

    def apply(self, event: SchedulerEvent) -> None:
        """Copy a domain event onto this row."""
        self.event_id = event.id
        self.event_type = event.event_type
        self.payload = dict(event.property)
        self.schedule_type = event.schedule_pattern.type.value
        self.cron_expression = event.schedule_pattern.expression
        self.fire_at = event.schedule_pattern.time

    @classmethod
    def from_dto(cls, event: SchedulerEvent) -> SchedulerEventModel:
        model = cls()
        model.apply(event)
        return model
