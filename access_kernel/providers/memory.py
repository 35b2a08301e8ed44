"""
In-memory reference providers.

Instance-scoped implementations of the identity, notification and
scheduler contracts.  Used by tests and local development; each instance
owns its own state, so two hubs in one process never share users or
timers.  Failure injection (``fail_on``) lets tests exercise the paths
where a provider call raises.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import datetime

from access_kernel.domain.providers import (
    Group,
    GroupMembership,
    GroupRole,
    NotificationChannel,
    NotificationMessage,
    SchedulePatternType,
    SchedulerEvent,
    User,
)


class InMemoryIdentityProvider:
    """Users, groups and memberships held in dicts."""

    def __init__(self) -> None:
        self._users: dict[str, User] = {}
        self._groups: dict[str, Group] = {}
        self._memberships: dict[tuple[str, str], GroupMembership] = {}

    def add_user(self, user: User) -> User:
        self._users[user.user_id] = user
        return user

    def add_group(self, group: Group) -> Group:
        self._groups[group.group_id] = group
        return group

    def add_membership(
        self, group_id: str, user_id: str, role: GroupRole = GroupRole.MEMBER,
    ) -> GroupMembership:
        if group_id not in self._groups:
            raise KeyError(f"Unknown group: {group_id}")
        membership = GroupMembership(group_id=group_id, user_id=user_id, role=role)
        self._memberships[(group_id, user_id)] = membership
        return membership

    def remove_membership(self, group_id: str, user_id: str) -> None:
        self._memberships.pop((group_id, user_id), None)

    def get_user(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    def get_group(self, group_id: str) -> Group | None:
        return self._groups.get(group_id)

    def get_group_membership(self, group_id: str, user_id: str) -> GroupMembership | None:
        return self._memberships.get((group_id, user_id))


class InMemoryNotificationProvider:
    """Records every dispatched message instead of delivering it."""

    def __init__(self, channel_types: Iterable[str] = ("email", "slack")):
        self._channel_types = tuple(channel_types)
        self._lock = threading.Lock()
        self._failing_types: dict[str, Exception] = {}
        self.sent: list[tuple[NotificationChannel, NotificationMessage]] = []

    def fail_on(self, channel_type_id: str, error: Exception) -> None:
        """Make every dispatch to ``channel_type_id`` raise ``error``."""
        self._failing_types[channel_type_id] = error

    def list_channel_types(self) -> tuple[str, ...]:
        return self._channel_types

    def dispatch(self, channel: NotificationChannel, message: NotificationMessage) -> None:
        error = self._failing_types.get(channel.type_id)
        if error is not None:
            raise error
        with self._lock:
            self.sent.append((channel, message))

    def messages_of_type(self, message_type: str) -> list[NotificationMessage]:
        return [message for _, message in self.sent if message.type == message_type]


class InMemorySchedulerProvider:
    """Scheduler events keyed by id.  ``due()`` lists one-shot events whose time has come."""

    def __init__(self) -> None:
        self._events: dict[str, SchedulerEvent] = {}
        self._failing_operations: dict[str, Exception] = {}

    def fail_on(self, operation: str, error: Exception) -> None:
        """Make ``create``/``update``/``delete`` raise ``error``."""
        self._failing_operations[operation] = error

    def _check(self, operation: str) -> None:
        error = self._failing_operations.get(operation)
        if error is not None:
            raise error

    def create(self, event: SchedulerEvent) -> SchedulerEvent:
        self._check("create")
        if event.id in self._events:
            raise ValueError(f"Scheduler event already exists: {event.id}")
        self._events[event.id] = event
        return event

    def get(self, event_id: str) -> SchedulerEvent | None:
        return self._events.get(event_id)

    def update(self, event: SchedulerEvent) -> SchedulerEvent:
        self._check("update")
        if event.id not in self._events:
            raise KeyError(f"Scheduler event not found: {event.id}")
        self._events[event.id] = event
        return event

    def delete(self, event_id: str) -> None:
        self._check("delete")
        self._events.pop(event_id, None)

    def list(self) -> list[SchedulerEvent]:
        return list(self._events.values())

    def due(self, now: datetime) -> list[SchedulerEvent]:
        return [
            event for event in self._events.values()
            if event.schedule_pattern.type is SchedulePatternType.AT
            and event.schedule_pattern.time <= now
        ]
