"""
access_kernel.services.scheduler_handlers -- What happens when a timer fires.

Responsibility:
    The scheduler provider delivers due ``SchedulerEvent``s to
    ``SchedulerEventDispatcher.handle``.  The dispatcher routes by event
    type to:

    * ``AutoRevokeHandler``: revokes an approved request as the system
      actor once its auto-revoke duration has elapsed.
    * ``AuditNotificationHandler``: collects a resource's audit items from
      its type handler and sends them to the subscribed channel.

Architecture position:
    Kernel > Services.  Entry point for scheduler-driven work; everything
    it does goes through the same services user calls go through.

Invariants enforced:
    - Auto-revoke is a no-op unless the request is still
      ``approvedActionSucceeded``; a user may have revoked it first.
    - A malformed event payload is a ValidationError, never a silent skip.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from access_kernel.domain.approval import ApprovalRequestStatus
from access_kernel.domain.providers import NotificationChannel, SchedulerEvent
from access_kernel.domain.resource import AuditItem
from access_kernel.domain.scheduling import (
    AUTO_REVOKE_EVENT_TYPE,
    NOTIFICATION_EVENT_TYPE,
    RESOURCE_AUDIT_CATEGORY,
)
from access_kernel.domain.validation import SYSTEM_USER_ID, require_request_id
from access_kernel.exceptions import ValidationError
from access_kernel.logging_config import LogContext, get_logger
from access_kernel.selectors.approval_request_selector import ApprovalRequestSelector
from access_kernel.selectors.catalog_resolver import CatalogResolver
from access_kernel.services.approval_request_service import ApprovalRequestService
from access_kernel.services.handler_runner import HandlerRunner
from access_kernel.services.notification_service import NotificationService

logger = get_logger("services.scheduler")

AUTO_REVOKE_COMMENT = "Auto revoke by system"

# Upper bound on audit pages fetched per event; guards against a handler
# that never stops returning a pagination token.
MAX_AUDIT_PAGES = 100


def _require_property(event: SchedulerEvent, key: str) -> Any:
    try:
        return event.property[key]
    except KeyError:
        raise ValidationError(
            f"Scheduler event {event.id} ({event.event_type}) is missing {key}"
        ) from None


class AutoRevokeHandler:
    """Revokes requests whose auto-revoke time has come."""

    def __init__(self, approvals: ApprovalRequestService, selector: ApprovalRequestSelector):
        self._approvals = approvals
        self._selector = selector

    def handle(self, event: SchedulerEvent) -> None:
        catalog_id = _require_property(event, "catalogId")
        approval_flow_id = _require_property(event, "approvalFlowId")
        request_id = require_request_id(_require_property(event, "requestId"))

        with LogContext.bind(request_id=str(request_id), actor_id=SYSTEM_USER_ID):
            status = self._selector.get_status(request_id)
            if status != ApprovalRequestStatus.APPROVED_ACTION_SUCCEEDED.value:
                logger.info(
                    "auto_revoke_skipped",
                    extra={"request_id": str(request_id), "status": status},
                )
                return
            self._approvals.revoke(
                catalog_id,
                approval_flow_id,
                request_id,
                SYSTEM_USER_ID,
                AUTO_REVOKE_COMMENT,
            )


class AuditNotificationHandler:
    """Sends a resource's audit report to its subscription channel."""

    def __init__(
        self,
        resolver: CatalogResolver,
        runner: HandlerRunner,
        notifications: NotificationService,
    ):
        self._resolver = resolver
        self._runner = runner
        self._notifications = notifications

    def handle(self, event: SchedulerEvent) -> None:
        category = _require_property(event, "notificationCategory")
        if category != RESOURCE_AUDIT_CATEGORY:
            raise ValidationError(f"Unknown notification category: {category}")
        catalog_id = _require_property(event, "catalogId")
        resource_type_id = _require_property(event, "resourceTypeId")
        resource_id = _require_property(event, "resourceId")

        with LogContext.bind(catalog_id=catalog_id):
            resource = self._resolver.resolve_resource(catalog_id, resource_type_id, resource_id)
            if resource is None:
                logger.warning(
                    "audit_notification_resource_missing",
                    extra={"event_id": event.id, "resource_id": resource_id},
                )
                return
            subscription = next(
                (n for n in resource.audit_notifications if n.id == event.id), None,
            )
            channel = subscription.channel if subscription else self._channel_from_event(event)

            handlers = self._resolver.resolve_resource_type(catalog_id, resource_type_id).handlers
            items = self._collect(handlers.list_audit_items, resource_type_id, resource_id)
            self._notifications.send_resource_audit(resource, channel, items)
            logger.info(
                "resource_audit_sent",
                extra={"event_id": event.id, "resource_id": resource_id, "item_count": len(items)},
            )

    def _collect(self, list_audit_items: Any, resource_type_id: str, resource_id: str) -> list[AuditItem]:
        items: list[AuditItem] = []
        token: str | None = None
        for _ in range(MAX_AUDIT_PAGES):
            page = self._runner.call(
                "list_audit_items", list_audit_items, resource_type_id, resource_id, token,
            )
            items.extend(page.items)
            token = page.pagination_token
            if not token:
                break
        else:
            logger.warning(
                "audit_items_truncated",
                extra={"resource_id": resource_id, "max_pages": MAX_AUDIT_PAGES},
            )
        return items

    @staticmethod
    def _channel_from_event(event: SchedulerEvent) -> NotificationChannel:
        properties = _require_property(event, "channelProperties")
        if isinstance(properties, str):
            properties = json.loads(properties)
        return NotificationChannel(
            id=event.id,
            type_id=_require_property(event, "notificationTypeId"),
            properties=properties,
        )


class SchedulerEventDispatcher:
    """Routes due scheduler events to their handler by event type."""

    def __init__(
        self,
        auto_revoke: AutoRevokeHandler,
        audit_notification: AuditNotificationHandler,
    ):
        self._handlers: Mapping[str, Any] = {
            AUTO_REVOKE_EVENT_TYPE: auto_revoke,
            NOTIFICATION_EVENT_TYPE: audit_notification,
        }

    def handle(self, event: SchedulerEvent) -> None:
        handler = self._handlers.get(event.event_type)
        if handler is None:
            raise ValidationError(f"Unknown scheduler event type: {event.event_type}")
        logger.info(
            "scheduler_event_received",
            extra={"event_id": event.id, "event_type": event.event_type},
        )
        handler.handle(event)
