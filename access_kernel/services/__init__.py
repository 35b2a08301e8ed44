"""Services for the access kernel (write side)."""

from access_kernel.services.approval_request_service import (
    ApprovalLifecycleHook,
    ApprovalRequestService,
)
from access_kernel.services.audit_notification_service import AuditNotificationService
from access_kernel.services.authorization import AuthorizationDecision, AuthorizationEngine
from access_kernel.services.governance_service import GovernanceService
from access_kernel.services.handler_runner import HandlerRunner
from access_kernel.services.hub import AccessHub, build_handler_runner, ensure_system_catalog
from access_kernel.services.notification_service import NotificationService
from access_kernel.services.resource_service import ResourceService
from access_kernel.services.resource_update_service import ResourceUpdateService
from access_kernel.services.scheduler_handlers import (
    AuditNotificationHandler,
    AutoRevokeHandler,
    SchedulerEventDispatcher,
)

__all__ = [
    "AccessHub",
    "ApprovalLifecycleHook",
    "ApprovalRequestService",
    "AuditNotificationHandler",
    "AuditNotificationService",
    "AuthorizationDecision",
    "AuthorizationEngine",
    "AutoRevokeHandler",
    "GovernanceService",
    "HandlerRunner",
    "NotificationService",
    "ResourceService",
    "ResourceUpdateService",
    "SchedulerEventDispatcher",
    "build_handler_runner",
    "ensure_system_catalog",
]
