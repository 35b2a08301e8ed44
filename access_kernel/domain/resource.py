"""
Resource governance value objects.

A resource's business data belongs to its catalog plugin.  The hub keeps
only the governance side: owner and approver groups, the single pending
update awaiting approval, and audit-notification subscriptions.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from access_kernel.domain.providers import NotificationChannel


@dataclass(frozen=True)
class PendingUpdate:
    """The one in-flight parameter change on a resource."""

    approval_request_id: UUID
    request_user_id: str
    requested_at: datetime
    proposed_params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuditNotification:
    """A recurring audit report subscription.  ``id`` is the scheduler event id."""

    id: str
    channel: NotificationChannel
    cron_expression: str


@dataclass(frozen=True)
class Resource:
    """Governance record of one resource."""

    catalog_id: str
    resource_type_id: str
    resource_id: str
    name: str = ""
    parent_resource_id: str | None = None
    owner_group_id: str | None = None
    approver_group_id: str | None = None
    pending_update: PendingUpdate | None = None
    audit_notifications: tuple[AuditNotification, ...] = ()


# Plugin-facing shapes for resource type handlers


@dataclass(frozen=True)
class ResourceOutput:
    """What a resource type handler reports about a resource."""

    resource_id: str
    name: str
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CreateResourceInput:
    resource_type_id: str
    name: str
    params: Mapping[str, Any]
    parent_resource_id: str | None = None


@dataclass(frozen=True)
class UpdateResourceInput:
    resource_type_id: str
    resource_id: str
    params: Mapping[str, Any]


@dataclass(frozen=True)
class AuditItem:
    """One line of a resource audit report (e.g. a member with access)."""

    type: str
    name: str
    values: tuple[str, ...] = ()


@dataclass(frozen=True)
class AuditItemPage:
    items: tuple[AuditItem, ...]
    pagination_token: str | None = None
