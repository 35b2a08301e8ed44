"""
access_kernel.services.audit_notification_service -- Recurring resource audit reports.

Responsibility:
    Subscribe a notification channel to a periodic audit report of one
    resource.  A subscription is a cron scheduler event plus an
    ``AuditNotification`` entry on the resource's governance row; the two
    are created, updated and removed together.

Architecture position:
    Kernel > Services.  Talks to the scheduler provider for the event and
    to ``NotificationService`` for the confirmation message sent to the
    channel.

Invariants enforced:
    - At most one audit notification per resource.
    - The stored ``AuditNotification.id`` is the scheduler event id.
    - If the governance row cannot be written after the scheduler event
      was created, the event is deleted again.

Failure modes:
    - SchedulerError when the scheduler rejects create/update/delete.
    - ValidationError on a duplicate subscription, an unknown channel type,
      a malformed cron expression or an unknown audit notification id.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from access_kernel.domain.providers import (
    NotificationChannel,
    NotificationProvider,
    SchedulerProvider,
)
from access_kernel.domain.resource import AuditNotification, Resource
from access_kernel.domain.scheduling import (
    build_audit_notification_event,
    new_audit_notification_event_id,
)
from access_kernel.domain.validation import require_slug, require_text, require_user_id
from access_kernel.exceptions import ResourceNotFoundError, SchedulerError, ValidationError
from access_kernel.logging_config import LogContext, get_logger
from access_kernel.models.resource import ResourceModel, audit_notification_to_dict
from access_kernel.selectors.catalog_resolver import CatalogResolver
from access_kernel.services.authorization import AuthorizationEngine
from access_kernel.services.base import BaseService
from access_kernel.services.notification_service import NotificationService

logger = get_logger("services.audit_notification")


def require_cron_expression(value: Any) -> str:
    """Five or six whitespace-separated cron fields."""
    expression = require_text("cron_expression", value, max_length=256).strip()
    if len(expression.split()) not in (5, 6):
        raise ValidationError(
            f"Invalid cron expression: {value!r}",
            "Cron expression must have five or six fields",
        )
    return expression


class AuditNotificationService(BaseService):
    """Create, update and delete resource audit-notification subscriptions."""

    def __init__(
        self,
        session: Session,
        resolver: CatalogResolver,
        authorization: AuthorizationEngine,
        notification_provider: NotificationProvider,
        notifications: NotificationService,
        scheduler: SchedulerProvider,
    ):
        super().__init__(session)
        self._resolver = resolver
        self._authz = authorization
        self._notification_provider = notification_provider
        self._notifications = notifications
        self._scheduler = scheduler

    def create_audit_notification(
        self,
        catalog_id: str,
        resource_type_id: str,
        resource_id: str,
        request_user_id: str,
        channel_type_id: str,
        channel_properties: Mapping[str, Any],
        cron_expression: str,
    ) -> AuditNotification:
        request_user_id = require_user_id(request_user_id, field_name="request_user_id")
        require_slug("channel_type_id", channel_type_id)
        cron_expression = require_cron_expression(cron_expression)

        with LogContext.bind(actor_id=request_user_id, catalog_id=catalog_id):
            model = self._load(catalog_id, resource_type_id, resource_id, request_user_id)
            if model.audit_notifications:
                raise ValidationError(
                    f"Resource {resource_id} already has an audit notification",
                    "Audit notification already exists",
                )
            if channel_type_id not in self._notification_provider.list_channel_types():
                raise ValidationError(
                    f"Unknown notification channel type: {channel_type_id}",
                    "Notification type is not available",
                )

            event_id = new_audit_notification_event_id()
            event = build_audit_notification_event(
                event_id,
                catalog_id=catalog_id,
                resource_type_id=resource_type_id,
                resource_id=resource_id,
                channel_type_id=channel_type_id,
                channel_properties=channel_properties,
                cron_expression=cron_expression,
            )
            try:
                self._scheduler.create(event)
            except Exception as exc:
                raise SchedulerError("create", str(exc)) from exc

            notification = AuditNotification(
                id=event_id,
                channel=NotificationChannel(
                    id=str(uuid4()), type_id=channel_type_id, properties=dict(channel_properties),
                ),
                cron_expression=cron_expression,
            )
            try:
                model.audit_notifications = [audit_notification_to_dict(notification)]
                self.session.flush()
            except SQLAlchemyError:
                logger.error("audit_notification_store_failed", extra={"event_id": event_id})
                self._compensate_create(event_id)
                raise

            logger.info(
                "audit_notification_created",
                extra={"resource_id": resource_id, "event_id": event_id},
            )
            self._notifications.notify_audit_notification_set(
                model.to_dto(), notification.channel, cron_expression, request_user_id, "created",
            )
            return notification

    def update_audit_notification(
        self,
        catalog_id: str,
        resource_type_id: str,
        resource_id: str,
        request_user_id: str,
        audit_notification_id: str,
        channel_properties: Mapping[str, Any],
        cron_expression: str,
    ) -> AuditNotification:
        request_user_id = require_user_id(request_user_id, field_name="request_user_id")
        cron_expression = require_cron_expression(cron_expression)

        with LogContext.bind(actor_id=request_user_id, catalog_id=catalog_id):
            model = self._load(catalog_id, resource_type_id, resource_id, request_user_id)
            current = self._find(model.to_dto(), audit_notification_id)

            event = build_audit_notification_event(
                current.id,
                catalog_id=catalog_id,
                resource_type_id=resource_type_id,
                resource_id=resource_id,
                channel_type_id=current.channel.type_id,
                channel_properties=channel_properties,
                cron_expression=cron_expression,
            )
            try:
                self._scheduler.update(event)
            except Exception as exc:
                raise SchedulerError("update", str(exc)) from exc

            updated = AuditNotification(
                id=current.id,
                channel=NotificationChannel(
                    id=current.channel.id,
                    type_id=current.channel.type_id,
                    properties=dict(channel_properties),
                ),
                cron_expression=cron_expression,
            )
            model.audit_notifications = [
                audit_notification_to_dict(updated) if item["id"] == current.id else item
                for item in model.audit_notifications
            ]
            self.session.flush()

            logger.info(
                "audit_notification_updated",
                extra={"resource_id": resource_id, "event_id": current.id},
            )
            self._notifications.notify_audit_notification_set(
                model.to_dto(), updated.channel, cron_expression, request_user_id, "updated",
            )
            return updated

    def delete_audit_notification(
        self,
        catalog_id: str,
        resource_type_id: str,
        resource_id: str,
        request_user_id: str,
        audit_notification_id: str,
    ) -> None:
        request_user_id = require_user_id(request_user_id, field_name="request_user_id")

        with LogContext.bind(actor_id=request_user_id, catalog_id=catalog_id):
            model = self._load(catalog_id, resource_type_id, resource_id, request_user_id)
            current = self._find(model.to_dto(), audit_notification_id)

            try:
                self._scheduler.delete(current.id)
            except Exception as exc:
                raise SchedulerError("delete", str(exc)) from exc

            model.audit_notifications = [
                item for item in model.audit_notifications if item["id"] != current.id
            ]
            self.session.flush()

            logger.info(
                "audit_notification_deleted",
                extra={"resource_id": resource_id, "event_id": current.id},
            )
            self._notifications.notify_audit_notification_set(
                model.to_dto(), current.channel, current.cron_expression, request_user_id, "deleted",
            )

    # ------------------------------------------------------------------

    def _load(
        self, catalog_id: str, resource_type_id: str, resource_id: str, request_user_id: str,
    ) -> ResourceModel:
        self._resolver.resolve_resource_type(catalog_id, resource_type_id)
        require_slug("resource_id", resource_id)
        model = self.session.execute(
            select(ResourceModel).where(
                ResourceModel.catalog_id == catalog_id,
                ResourceModel.resource_type_id == resource_type_id,
                ResourceModel.resource_id == resource_id,
            )
        ).scalar_one_or_none()
        if model is None:
            raise ResourceNotFoundError(catalog_id, resource_type_id, resource_id)
        self._authz.require(
            self._authz.can_edit_resource(catalog_id, resource_type_id, resource_id, request_user_id),
            request_user_id, "manage_audit_notification",
        )
        return model

    def _compensate_create(self, event_id: str) -> None:
        """Remove the event of a subscription that could not be stored; the store error wins."""
        try:
            self._scheduler.delete(event_id)
        except Exception as exc:
            logger.error(
                "audit_notification_compensation_failed",
                extra={"event_id": event_id, "error_type": type(exc).__name__, "error": str(exc)},
            )

    @staticmethod
    def _find(resource: Resource, audit_notification_id: str) -> AuditNotification:
        for notification in resource.audit_notifications:
            if notification.id == audit_notification_id:
                return notification
        raise ValidationError(
            f"Audit notification {audit_notification_id} not found on {resource.resource_id}",
            "Audit notification is not found",
        )
