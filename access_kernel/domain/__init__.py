"""
Pure domain layer.

Value objects, the approval request state machine, catalog definitions and
provider contracts, with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time (see ``clock``)
"""

from access_kernel.domain.approval import (
    ApprovalRequest,
    ApprovalRequestStatus,
    ApproverType,
    AutoRevokeSpec,
    DateRange,
    HandlerResult,
    InputParam,
    InputResource,
    Page,
)
from access_kernel.domain.catalog import (
    ApprovalFlowDefinition,
    ApproverSpec,
    CatalogDefinition,
    CatalogRegistry,
    InputParamSpec,
    InputParamType,
    InputResourceSpec,
    ResourceTypeDefinition,
    UpdateApprover,
    ValidationInput,
)
from access_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from access_kernel.domain.resource import (
    AuditItem,
    AuditItemPage,
    AuditNotification,
    CreateResourceInput,
    PendingUpdate,
    Resource,
    ResourceOutput,
    UpdateResourceInput,
)

__all__ = [
    "ApprovalFlowDefinition",
    "ApprovalRequest",
    "ApprovalRequestStatus",
    "ApproverSpec",
    "ApproverType",
    "AuditItem",
    "AuditItemPage",
    "AuditNotification",
    "AutoRevokeSpec",
    "CatalogDefinition",
    "CatalogRegistry",
    "Clock",
    "CreateResourceInput",
    "DateRange",
    "DeterministicClock",
    "HandlerResult",
    "InputParam",
    "InputParamSpec",
    "InputParamType",
    "InputResource",
    "InputResourceSpec",
    "Page",
    "PendingUpdate",
    "Resource",
    "ResourceOutput",
    "ResourceTypeDefinition",
    "SystemClock",
    "UpdateApprover",
    "UpdateResourceInput",
    "ValidationInput",
]
