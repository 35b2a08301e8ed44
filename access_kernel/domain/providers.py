"""
Collaborator contracts consumed by the hub.

Identity, notification and scheduler backends live outside the kernel.
The kernel only depends on the Protocols below and the value objects they
exchange; concrete implementations are injected by the caller.  Lookups
return ``None`` for "not found" and raise only when the backend itself
fails.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol


# =========================================================================
# Identity
# =========================================================================


@dataclass(frozen=True)
class NotificationChannel:
    """A configured destination on a notification plugin."""

    id: str
    type_id: str
    properties: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class User:
    user_id: str
    user_name: str
    email: str = ""


@dataclass(frozen=True)
class Group:
    """A group with its notification subscriptions."""

    group_id: str
    group_name: str
    approval_request_notifications: tuple[NotificationChannel, ...] = ()
    group_member_notifications: tuple[NotificationChannel, ...] = ()


class GroupRole(str, Enum):
    OWNER = "owner"
    MEMBER = "member"


@dataclass(frozen=True)
class GroupMembership:
    group_id: str
    user_id: str
    role: GroupRole = GroupRole.MEMBER


class IdentityProvider(Protocol):
    """User, group and group-membership lookups."""

    def get_user(self, user_id: str) -> User | None:
        ...

    def get_group(self, group_id: str) -> Group | None:
        ...

    def get_group_membership(self, group_id: str, user_id: str) -> GroupMembership | None:
        ...


# =========================================================================
# Notification
# =========================================================================


@dataclass(frozen=True)
class NotificationMessage:
    """A typed message; ``property`` is the type-specific payload."""

    type: str
    property: Mapping[str, Any]


class NotificationProvider(Protocol):
    """Notification plugin host."""

    def list_channel_types(self) -> tuple[str, ...]:
        ...

    def dispatch(self, channel: NotificationChannel, message: NotificationMessage) -> None:
        ...


# =========================================================================
# Scheduler
# =========================================================================


class SchedulePatternType(str, Enum):
    CRON = "cron"
    AT = "at"


@dataclass(frozen=True)
class SchedulePattern:
    """Either a recurring cron expression or a one-shot time."""

    type: SchedulePatternType
    expression: str | None = None
    time: datetime | None = None

    def __post_init__(self) -> None:
        if self.type is SchedulePatternType.CRON and not self.expression:
            raise ValueError("cron schedule requires an expression")
        if self.type is SchedulePatternType.AT and self.time is None:
            raise ValueError("at schedule requires a time")

    @classmethod
    def cron(cls, expression: str) -> SchedulePattern:
        return cls(SchedulePatternType.CRON, expression=expression)

    @classmethod
    def at(cls, time: datetime) -> SchedulePattern:
        return cls(SchedulePatternType.AT, time=time)


@dataclass(frozen=True)
class SchedulerEvent:
    """A durable timer.  ``id`` is chosen by the hub and is the provider key."""

    id: str
    event_type: str
    property: Mapping[str, Any]
    schedule_pattern: SchedulePattern


class SchedulerProvider(Protocol):
    """Create, read, update and delete scheduler events by id."""

    def create(self, event: SchedulerEvent) -> SchedulerEvent:
        ...

    def get(self, event_id: str) -> SchedulerEvent | None:
        ...

    def update(self, event: SchedulerEvent) -> SchedulerEvent:
        ...

    def delete(self, event_id: str) -> None:
        ...
