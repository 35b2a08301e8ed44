"""
AccessHub - Session-scoped composition root.

Wires the resolver, authorization engine, handler runner, notification
service and the write services around one SQLAlchemy session.  Build one
hub per unit of work; the registry, the providers and the handler runner
are process-wide and shared between hubs.

The built-in system catalog (resource-update approvals) is registered in
the registry the first time a hub is built on it.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from access_config.schema import HubConfig
from access_kernel.db.engine import commit_with_effects
from access_kernel.domain.catalog import CatalogRegistry
from access_kernel.domain.clock import Clock, SystemClock
from access_kernel.domain.providers import (
    IdentityProvider,
    NotificationProvider,
    SchedulerProvider,
)
from access_kernel.logging_config import get_logger
from access_kernel.selectors.approval_request_selector import ApprovalRequestSelector
from access_kernel.selectors.catalog_resolver import CatalogResolver
from access_kernel.services.approval_request_service import ApprovalRequestService
from access_kernel.services.audit_notification_service import AuditNotificationService
from access_kernel.services.authorization import AuthorizationEngine
from access_kernel.services.governance_service import GovernanceService
from access_kernel.services.handler_runner import HandlerRunner
from access_kernel.services.notification_service import NotificationService
from access_kernel.services.resource_service import ResourceService
from access_kernel.services.resource_update_service import ResourceUpdateService
from access_kernel.services.scheduler_handlers import (
    AuditNotificationHandler,
    AutoRevokeHandler,
    SchedulerEventDispatcher,
)
from access_kernel.services.system_catalog import build_system_catalog

logger = get_logger("services.hub")


def ensure_system_catalog(
    registry: CatalogRegistry,
    catalog_id: str = "system",
    resource_update_flow_id: str = "resource-update",
) -> None:
    """Register the system catalog unless a catalog with its id already exists."""
    if catalog_id in registry:
        return
    registry.register(build_system_catalog(registry, catalog_id, resource_update_flow_id))
    logger.info("system_catalog_registered", extra={"catalog_id": catalog_id})


def build_handler_runner(config: HubConfig) -> HandlerRunner:
    return HandlerRunner(
        timeout_seconds=config.handlers.timeout_seconds,
        max_workers=config.handlers.max_workers,
    )


class AccessHub:
    """
    All hub services bound to one session.

    Attributes:
        approvals: Approval request lifecycle and listing.
        resources: Resource CRUD and governance.
        resource_updates: Update-with-approval and cancel.
        audit_notifications: Audit report subscriptions.
        governance: Catalog owner and flow approver assignment.
        scheduler_events: Entry point for due scheduler events.

    With ``auto_commit=False`` the caller owns the transaction and must end
    it with ``commit()`` (or ``session_scope()``) for approval notifications
    and auto-revoke timers to go out.
    """

    def __init__(
        self,
        session: Session,
        config: HubConfig,
        registry: CatalogRegistry,
        identity: IdentityProvider,
        notification: NotificationProvider,
        scheduler: SchedulerProvider,
        runner: HandlerRunner,
        clock: Clock | None = None,
        auto_commit: bool = False,
    ):
        self.session = session
        self.config = config
        self.clock = clock or SystemClock()
        system = config.system_catalog
        ensure_system_catalog(registry, system.catalog_id, system.resource_update_flow_id)

        self.resolver = CatalogResolver(session, registry)
        self.authorization = AuthorizationEngine(self.resolver, identity, config.admin_group_id)
        self.notifications = NotificationService(identity, notification, self.resolver)

        self.approvals = ApprovalRequestService(
            session,
            self.resolver,
            self.authorization,
            runner,
            self.notifications,
            scheduler,
            clock=self.clock,
            auto_commit=auto_commit,
            default_list_limit=config.pagination.default_limit,
            max_list_limit=config.pagination.max_limit,
        )
        self.resource_updates = ResourceUpdateService(
            session,
            self.resolver,
            self.authorization,
            self.approvals,
            system_catalog_id=system.catalog_id,
            resource_update_flow_id=system.resource_update_flow_id,
            clock=self.clock,
        )
        self.approvals.add_hook(self.resource_updates)

        self.resources = ResourceService(
            session, self.resolver, self.authorization, runner, self.resource_updates, scheduler,
        )
        self.audit_notifications = AuditNotificationService(
            session, self.resolver, self.authorization, notification, self.notifications, scheduler,
        )
        self.governance = GovernanceService(
            session, self.resolver, self.authorization, identity, self.notifications,
        )
        self.scheduler_events = SchedulerEventDispatcher(
            AutoRevokeHandler(self.approvals, ApprovalRequestSelector(session)),
            AuditNotificationHandler(self.resolver, runner, self.notifications),
        )

    def commit(self) -> None:
        """Commit the unit of work, then send the notifications and timers it queued."""
        commit_with_effects(self.session)

    def rollback(self) -> None:
        """Roll back the unit of work; queued notifications and timers are dropped."""
        self.session.rollback()
