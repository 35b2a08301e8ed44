"""
Scheduler event shapes the hub creates.

Two kinds of events exist: the one-shot auto-revoke timer of an approved
request and the recurring audit-notification job of a resource.  Both are
keyed by ids the hub derives, so they can be updated and deleted without
a lookup table.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID, uuid4

from access_kernel.domain.approval import ApprovedActionSucceededRequest, parse_auto_revoke_duration
from access_kernel.domain.providers import SchedulePattern, SchedulerEvent

AUTO_REVOKE_EVENT_TYPE = "ApprovalRequestAutoRevoke"
NOTIFICATION_EVENT_TYPE = "Notification"
RESOURCE_AUDIT_CATEGORY = "ResourceAudit"


def auto_revoke_event_id(request_id: UUID | str) -> str:
    return f"auto-revoke-{request_id}"


def build_auto_revoke_event(request: ApprovedActionSucceededRequest) -> SchedulerEvent:
    """One-shot event firing at approved_date + auto_revoke_duration."""
    if request.auto_revoke_duration is None:
        raise ValueError(f"Approval request {request.request_id} has no auto revoke duration")
    fire_at = request.approved_date + parse_auto_revoke_duration(request.auto_revoke_duration)
    return SchedulerEvent(
        id=auto_revoke_event_id(request.request_id),
        event_type=AUTO_REVOKE_EVENT_TYPE,
        property={
            "catalogId": request.catalog_id,
            "approvalFlowId": request.approval_flow_id,
            "requestId": str(request.request_id),
        },
        schedule_pattern=SchedulePattern.at(fire_at),
    )


def new_audit_notification_event_id() -> str:
    return f"audit-notification-{uuid4()}"


def build_audit_notification_event(
    event_id: str,
    *,
    catalog_id: str,
    resource_type_id: str,
    resource_id: str,
    channel_type_id: str,
    channel_properties: Mapping[str, Any],
    cron_expression: str,
) -> SchedulerEvent:
    """Recurring event that sends a resource audit report to a channel."""
    return SchedulerEvent(
        id=event_id,
        event_type=NOTIFICATION_EVENT_TYPE,
        property={
            "notificationCategory": RESOURCE_AUDIT_CATEGORY,
            "catalogId": catalog_id,
            "resourceTypeId": resource_type_id,
            "resourceId": resource_id,
            "notificationTypeId": channel_type_id,
            "channelProperties": dict(channel_properties),
        },
        schedule_pattern=SchedulePattern.cron(cron_expression),
    )
