"""
access_kernel.services.notification_service -- best-effort notification fan-out.

Responsibility:
    Builds the typed messages the hub sends and dispatches them to the
    channels a group (or an audit subscription) has configured.

Architecture position:
    Services layer.  Called after a state change is durable.  Uses the
    identity provider to find a group's channels and the notification
    provider to deliver.

Invariants:
    - Notifying never fails the caller: an error while looking up the
      recipient group, enriching the message or delivering it is logged
      as ``notification_dispatch_failed`` and dropped.
    - Nothing is sent for ``validationFailed`` submissions.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from enum import Enum
from typing import Any

from access_kernel.domain.approval import (
    ApprovalRequest,
    ApprovalRequestStatus,
    HandlerResult,
    approval_request_to_fields,
)
from access_kernel.domain.catalog import ApprovalFlowView
from access_kernel.domain.providers import (
    IdentityProvider,
    NotificationChannel,
    NotificationMessage,
    NotificationProvider,
)
from access_kernel.domain.resource import AuditItem, Resource
from access_kernel.logging_config import get_logger
from access_kernel.selectors.catalog_resolver import CatalogResolver

logger = get_logger("services.notification")

APPROVAL_REQUEST_EVENT = "ApprovalRequestEvent"
CATALOG_OWNER_CHANGED_EVENT = "CatalogOwnerChangedEvent"
RESOURCE_AUDIT_EVENT = "ResourceAudit"
AUDIT_NOTIFICATION_SET_EVENT = "AuditNotificationSetEvent"


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, HandlerResult):
        return value.to_dict()
    if isinstance(value, (tuple, list)):
        return [_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return value


def approval_request_payload(request: ApprovalRequest) -> dict[str, Any]:
    """Flat JSON-friendly rendering of a request, phase fields included."""
    fields = approval_request_to_fields(request)
    payload: dict[str, Any] = {}
    for key, value in fields.items():
        if value is None:
            continue
        if key == "request_id":
            payload[key] = str(value)
        elif key == "input_params":
            payload[key] = [{"id": p.id, "value": p.value} for p in value]
        elif key == "input_resources":
            payload[key] = [
                {"resource_type_id": r.resource_type_id, "resource_id": r.resource_id}
                for r in value
            ]
        else:
            payload[key] = _jsonable(value)
    return payload


class NotificationService:
    """Sends hub messages to notification channels."""

    def __init__(
        self,
        identity: IdentityProvider,
        notification: NotificationProvider,
        resolver: CatalogResolver,
    ):
        self._identity = identity
        self._notification = notification
        self._resolver = resolver

    def dispatch(self, channel: NotificationChannel, message: NotificationMessage) -> bool:
        """Deliver one message; returns False (after logging) on failure."""
        try:
            self._notification.dispatch(channel, message)
        except Exception as exc:
            logger.warning(
                "notification_dispatch_failed",
                extra={
                    "channel_id": channel.id,
                    "channel_type_id": channel.type_id,
                    "message_type": message.type,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return False
        logger.info(
            "notification_dispatched",
            extra={
                "channel_id": channel.id,
                "channel_type_id": channel.type_id,
                "message_type": message.type,
            },
        )
        return True

    def dispatch_all(
        self, channels: Iterable[NotificationChannel], message: NotificationMessage,
    ) -> int:
        return sum(1 for channel in channels if self.dispatch(channel, message))

    # ------------------------------------------------------------------

    def notify_approval_request(self, request: ApprovalRequest, flow: ApprovalFlowView) -> int:
        """Notify the request's approver group of its current status."""
        if request.status is ApprovalRequestStatus.VALIDATION_FAILED:
            return 0
        try:
            return self._notify_approval_request(request, flow)
        except Exception as exc:
            self._log_failure(
                APPROVAL_REQUEST_EVENT, exc,
                request_id=str(request.request_id), group_id=request.approver_id,
            )
            return 0

    def notify_catalog_owner_changed(
        self, catalog_id: str, catalog_name: str, owner_group_id: str, changed_by: str,
    ) -> int:
        try:
            return self._notify_catalog_owner_changed(
                catalog_id, catalog_name, owner_group_id, changed_by,
            )
        except Exception as exc:
            self._log_failure(
                CATALOG_OWNER_CHANGED_EVENT, exc, catalog_id=catalog_id, group_id=owner_group_id,
            )
            return 0

    def _notify_approval_request(self, request: ApprovalRequest, flow: ApprovalFlowView) -> int:
        group = self._identity.get_group(request.approver_id)
        if group is None:
            logger.warning(
                "notification_group_not_found",
                extra={"group_id": request.approver_id, "request_id": str(request.request_id)},
            )
            return 0
        message = NotificationMessage(
            type=APPROVAL_REQUEST_EVENT,
            property={
                "status": request.status.value,
                "request": approval_request_payload(request),
                "input_params_with_names": self._params_with_names(request, flow),
                "input_resources_with_names": self._resources_with_names(request),
            },
        )
        return self.dispatch_all(group.approval_request_notifications, message)

    def _notify_catalog_owner_changed(
        self, catalog_id: str, catalog_name: str, owner_group_id: str, changed_by: str,
    ) -> int:
        group = self._identity.get_group(owner_group_id)
        if group is None:
            logger.warning("notification_group_not_found", extra={"group_id": owner_group_id})
            return 0
        message = NotificationMessage(
            type=CATALOG_OWNER_CHANGED_EVENT,
            property={
                "catalog_id": catalog_id,
                "catalog_name": catalog_name,
                "group_id": group.group_id,
                "group_name": group.group_name,
                "changed_by": changed_by,
            },
        )
        return self.dispatch_all(group.group_member_notifications, message)

    @staticmethod
    def _log_failure(message_type: str, exc: Exception, **context: str | None) -> None:
        # Building the message failed before any channel was tried.
        logger.warning(
            "notification_dispatch_failed",
            extra={
                "message_type": message_type,
                "error_type": type(exc).__name__,
                "error": str(exc),
                **context,
            },
        )

    def notify_audit_notification_set(
        self,
        resource: Resource,
        channel: NotificationChannel,
        cron_expression: str,
        changed_by: str,
        action: str,
    ) -> bool:
        """Tell an audit subscription channel it was created, updated or removed."""
        message = NotificationMessage(
            type=AUDIT_NOTIFICATION_SET_EVENT,
            property={
                "action": action,
                "catalog_id": resource.catalog_id,
                "resource_type_id": resource.resource_type_id,
                "resource_id": resource.resource_id,
                "resource_name": resource.name,
                "cron_expression": cron_expression,
                "changed_by": changed_by,
            },
        )
        return self.dispatch(channel, message)

    def send_resource_audit(
        self, resource: Resource, channel: NotificationChannel, items: Iterable[AuditItem],
    ) -> bool:
        message = NotificationMessage(
            type=RESOURCE_AUDIT_EVENT,
            property={
                "catalog_id": resource.catalog_id,
                "resource_type_id": resource.resource_type_id,
                "resource_id": resource.resource_id,
                "resource_name": resource.name,
                "audit_items": [
                    {"type": item.type, "name": item.name, "values": list(item.values)}
                    for item in items
                ],
            },
        )
        return self.dispatch(channel, message)

    # ------------------------------------------------------------------

    @staticmethod
    def _params_with_names(request: ApprovalRequest, flow: ApprovalFlowView) -> list[dict[str, Any]]:
        names: Mapping[str, str] = {spec.id: spec.name for spec in flow.definition.input_params}
        return [
            {"id": p.id, "name": names.get(p.id, p.id), "value": p.value}
            for p in request.input_params
        ]

    def _resources_with_names(self, request: ApprovalRequest) -> list[dict[str, Any]]:
        catalog = self._resolver.resolve(request.catalog_id).definition
        enriched = []
        for item in request.input_resources:
            resource_type = catalog.get_resource_type(item.resource_type_id)
            resource = None
            if resource_type is not None:
                resource = self._resolver.resolve_resource(
                    request.catalog_id, item.resource_type_id, item.resource_id,
                )
            enriched.append({
                "resource_type_id": item.resource_type_id,
                "resource_type_name": resource_type.name if resource_type else item.resource_type_id,
                "resource_id": item.resource_id,
                "resource_name": resource.name if resource and resource.name else item.resource_id,
            })
        return enriched
