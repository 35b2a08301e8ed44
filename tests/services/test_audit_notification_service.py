"""
Tests for AuditNotificationService -- recurring resource audit subscriptions.

Covers:
- create: scheduler event + stored subscription + confirmation message
- one subscription per resource, channel type and cron checks
- scheduler failures surface as SchedulerError and leave nothing behind
- a failed store after the event was created deletes the event again
- update / delete keep the scheduler event and the stored entry in step
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from access_kernel.domain.providers import SchedulePatternType
from access_kernel.domain.scheduling import NOTIFICATION_EVENT_TYPE, RESOURCE_AUDIT_CATEGORY
from access_kernel.exceptions import (
    PermissionDeniedError,
    ResourceNotFoundError,
    SchedulerError,
    ValidationError,
)
from access_kernel.services.audit_notification_service import require_cron_expression
from access_kernel.services.notification_service import AUDIT_NOTIFICATION_SET_EVENT

CRON = "0 9 * * 1"


@pytest.fixture
def subscribe(hub, people, account_and_role):
    def _subscribe(channel_type_id="email", properties=None, cron=CRON, user=None):
        return hub.audit_notifications.create_audit_notification(
            "example", "account", account_and_role.account_id,
            user or people.catalog_owner,
            channel_type_id,
            properties if properties is not None else {"to": "audit@example.com"},
            cron,
        )

    return _subscribe


def stored_subscriptions(hub):
    return hub.resolver.resolve_resource("example", "account", "prod").audit_notifications


class TestCreate:

    def test_creates_event_and_subscription(self, hub, subscribe, scheduler):
        subscription = subscribe()

        assert subscription.id.startswith("audit-notification-")
        assert subscription.cron_expression == CRON
        assert subscription.channel.type_id == "email"
        assert dict(subscription.channel.properties) == {"to": "audit@example.com"}
        assert stored_subscriptions(hub) == (subscription,)

        event = scheduler.get(subscription.id)
        assert event.event_type == NOTIFICATION_EVENT_TYPE
        assert event.schedule_pattern.type is SchedulePatternType.CRON
        assert event.schedule_pattern.expression == CRON
        assert event.property["notificationCategory"] == RESOURCE_AUDIT_CATEGORY
        assert event.property["resourceId"] == "prod"
        assert event.property["channelProperties"] == {"to": "audit@example.com"}

    def test_confirmation_sent_to_channel(self, subscribe, notifier, people):
        subscription = subscribe()

        ((channel, message),) = notifier.sent
        assert channel == subscription.channel
        assert message.type == AUDIT_NOTIFICATION_SET_EVENT
        assert message.property["action"] == "created"
        assert message.property["changed_by"] == people.catalog_owner
        assert message.property["resource_name"] == "Prod"

    def test_one_subscription_per_resource(self, subscribe, scheduler):
        subscribe()
        with pytest.raises(ValidationError, match="already has an audit notification"):
            subscribe(channel_type_id="slack")
        assert len(scheduler.list()) == 1

    def test_unknown_channel_type(self, subscribe, scheduler):
        with pytest.raises(ValidationError, match="Unknown notification channel type"):
            subscribe(channel_type_id="pager")
        assert scheduler.list() == []

    @pytest.mark.parametrize("cron", ["", "* * *", "0 9 * * 1 2024 x"])
    def test_malformed_cron(self, subscribe, cron):
        with pytest.raises(ValidationError):
            subscribe(cron=cron)

    def test_requires_edit_rights(self, subscribe, people):
        with pytest.raises(PermissionDeniedError):
            subscribe(user=people.outsider)

    def test_resource_owner_may_subscribe(self, subscribe, people):
        assert subscribe(user=people.resource_owner).cron_expression == CRON

    def test_unknown_resource(self, hub, people):
        with pytest.raises(ResourceNotFoundError):
            hub.audit_notifications.create_audit_notification(
                "example", "account", "ghost", people.catalog_owner, "email", {}, CRON,
            )

    def test_scheduler_failure(self, hub, subscribe, scheduler):
        scheduler.fail_on("create", RuntimeError("scheduler offline"))

        with pytest.raises(SchedulerError) as exc_info:
            subscribe()

        assert exc_info.value.operation == "create"
        assert stored_subscriptions(hub) == ()

    def test_store_failure_deletes_event(self, hub, subscribe, scheduler, session, monkeypatch):
        real_flush = session.flush

        def failing_flush(*args, **kwargs):
            if session.dirty:
                raise SQLAlchemyError("disk full")
            return real_flush(*args, **kwargs)

        monkeypatch.setattr(session, "flush", failing_flush)

        with pytest.raises(SQLAlchemyError):
            subscribe()

        assert scheduler.list() == []

    def test_failed_cleanup_keeps_store_error(
        self, hub, subscribe, scheduler, session, monkeypatch, captured_logs,
    ):
        """When deleting the orphaned event also fails, the caller still sees the store error."""
        real_flush = session.flush

        def failing_flush(*args, **kwargs):
            if session.dirty:
                raise SQLAlchemyError("disk full")
            return real_flush(*args, **kwargs)

        monkeypatch.setattr(session, "flush", failing_flush)
        scheduler.fail_on("delete", RuntimeError("scheduler offline"))

        with pytest.raises(SQLAlchemyError, match="disk full"):
            subscribe()

        (record,) = [
            r for r in captured_logs() if r["message"] == "audit_notification_compensation_failed"
        ]
        assert record["error"] == "scheduler offline"
        assert record["event_id"] == scheduler.list()[0].id


class TestUpdate:

    def test_updates_event_and_subscription(self, hub, subscribe, scheduler, notifier, people):
        created = subscribe()

        updated = hub.audit_notifications.update_audit_notification(
            "example", "account", "prod", people.catalog_owner,
            created.id, {"to": "sec@example.com"}, "0 0 1 * *",
        )

        assert updated.id == created.id
        assert updated.channel.id == created.channel.id
        assert updated.cron_expression == "0 0 1 * *"
        assert stored_subscriptions(hub) == (updated,)
        event = scheduler.get(created.id)
        assert event.schedule_pattern.expression == "0 0 1 * *"
        assert event.property["channelProperties"] == {"to": "sec@example.com"}
        assert notifier.sent[-1][1].property["action"] == "updated"

    def test_unknown_subscription(self, hub, subscribe, people):
        subscribe()
        with pytest.raises(ValidationError):
            hub.audit_notifications.update_audit_notification(
                "example", "account", "prod", people.catalog_owner,
                "audit-notification-missing", {}, CRON,
            )

    def test_scheduler_failure_keeps_stored_subscription(self, hub, subscribe, scheduler, people):
        created = subscribe()
        scheduler.fail_on("update", RuntimeError("scheduler offline"))

        with pytest.raises(SchedulerError):
            hub.audit_notifications.update_audit_notification(
                "example", "account", "prod", people.catalog_owner, created.id, {}, "0 0 * * *",
            )

        assert stored_subscriptions(hub) == (created,)


class TestDelete:

    def test_deletes_event_and_subscription(self, hub, subscribe, scheduler, notifier, people):
        created = subscribe()

        hub.audit_notifications.delete_audit_notification(
            "example", "account", "prod", people.catalog_owner, created.id,
        )

        assert scheduler.get(created.id) is None
        assert stored_subscriptions(hub) == ()
        assert notifier.sent[-1][1].property["action"] == "deleted"

    def test_scheduler_failure_keeps_subscription(self, hub, subscribe, scheduler, people):
        created = subscribe()
        scheduler.fail_on("delete", RuntimeError("scheduler offline"))

        with pytest.raises(SchedulerError):
            hub.audit_notifications.delete_audit_notification(
                "example", "account", "prod", people.catalog_owner, created.id,
            )

        assert stored_subscriptions(hub) == (created,)

    def test_new_subscription_after_delete(self, hub, subscribe, people):
        created = subscribe()
        hub.audit_notifications.delete_audit_notification(
            "example", "account", "prod", people.catalog_owner, created.id,
        )

        assert subscribe(channel_type_id="slack").id != created.id


class TestCronExpression:

    @pytest.mark.parametrize("value", ["* * * * *", " 0 9 * * 1 ", "0 0 9 * * MON"])
    def test_valid(self, value):
        assert require_cron_expression(value) == value.strip()

    def test_non_string(self):
        with pytest.raises(ValidationError):
            require_cron_expression(5)
