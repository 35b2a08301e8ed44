"""
Typed Exception Hierarchy for the access governance hub.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the hub (an RPC layer, a scheduler worker, a test) must be able
to tell "the engine could not process this command" apart by kind without
parsing message strings.  Every error therefore has:

  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, transport-safe)
  3. A ``system_message`` for operators and logs, and a ``user_message``
     that is safe to show to the caller
  4. Structured context attributes (ids, statuses) that survive logging

Example - WRONG way to handle errors:
    try:
        service.approve(...)
    except Exception as e:
        if "not pending" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        service.approve(...)
    except ApprovalRequestStatusConflictError as e:
        respond(code=e.code, message=e.user_message, status=e.actual_status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    AccessHubError (base)
    |
    +-- ValidationError
    |   +-- InvalidIdentifierError
    |   +-- InvalidAutoRevokeDurationError
    |
    +-- PermissionDeniedError
    |
    +-- NotFoundError
    |   +-- CatalogNotFoundError
    |   +-- ApprovalFlowNotFoundError
    |   +-- ResourceTypeNotFoundError
    |   +-- ResourceNotFoundError
    |   +-- ApprovalRequestNotFoundError
    |
    +-- ConflictError
    |   +-- ApprovalRequestStatusConflictError
    |   +-- PendingUpdateConflictError
    |
    +-- ProviderError
        +-- SchedulerError
        +-- NotificationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                   | When Raised
--------------|------------------------|-------------------------------------------
Validation    | BAD_REQUEST            | Malformed input, rejected before any effect
Permission    | FORBIDDEN              | Authorization predicate denied the call
Not found     | NOT_FOUND              | Catalog/flow/type/resource/request missing
Conflict      | CONFLICT               | Conditional write lost (status moved on)
Provider      | INTERNAL_SERVER_ERROR  | Database/identity/scheduler dependency failed

Handler failures (validate/approve/revoke handlers reporting failure) are
NOT exceptions.  They are ``HandlerResult`` values recorded on the approval
request, and the request status still advances.

===============================================================================
"""

from __future__ import annotations


class AccessHubError(Exception):
    """
    Base exception for all access hub errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "INTERNAL_SERVER_ERROR"

    def __init__(self, system_message: str, user_message: str | None = None):
        self.system_message = system_message
        self.user_message = user_message or system_message
        super().__init__(system_message)


# Validation


class ValidationError(AccessHubError):
    """Input is malformed or violates a precondition of the operation."""

    code: str = "BAD_REQUEST"


class InvalidIdentifierError(ValidationError):
    """A value that must be an identifier is not one."""

    def __init__(self, field_name: str, value: object):
        self.field_name = field_name
        self.value = value
        super().__init__(
            f"Invalid identifier for {field_name}: {value!r}",
            f"Invalid {field_name}",
        )


class InvalidAutoRevokeDurationError(ValidationError):
    """Auto-revoke duration is malformed or exceeds the flow maximum."""

    def __init__(self, duration: str, reason: str):
        self.duration = duration
        self.reason = reason
        super().__init__(
            f"Invalid auto revoke duration {duration!r}: {reason}",
            f"Invalid auto revoke duration: {reason}",
        )


# Permission


class PermissionDeniedError(AccessHubError):
    """Authorization denied the operation for the acting user."""

    code: str = "FORBIDDEN"

    def __init__(self, user_id: str, action: str, reason: str):
        self.user_id = user_id
        self.action = action
        self.reason = reason
        super().__init__(
            f"Permission denied for {user_id} on {action}: {reason}",
            "Permission denied",
        )


# Not found


class NotFoundError(AccessHubError):
    """Base for references that do not resolve."""

    code: str = "NOT_FOUND"


class CatalogNotFoundError(NotFoundError):
    """No catalog definition is registered under the id."""

    def __init__(self, catalog_id: str):
        self.catalog_id = catalog_id
        super().__init__(f"Catalog not found: {catalog_id}", "Catalog not found")


class ApprovalFlowNotFoundError(NotFoundError):
    """The catalog declares no approval flow with the id."""

    def __init__(self, catalog_id: str, approval_flow_id: str):
        self.catalog_id = catalog_id
        self.approval_flow_id = approval_flow_id
        super().__init__(
            f"Approval flow not found: {catalog_id}/{approval_flow_id}",
            "Approval flow not found",
        )


class ResourceTypeNotFoundError(NotFoundError):
    """The catalog declares no resource type with the id."""

    def __init__(self, catalog_id: str, resource_type_id: str):
        self.catalog_id = catalog_id
        self.resource_type_id = resource_type_id
        super().__init__(
            f"Resource type not found: {catalog_id}/{resource_type_id}",
            "Resource type not found",
        )


class ResourceNotFoundError(NotFoundError):
    """No resource record exists for the id."""

    def __init__(self, catalog_id: str, resource_type_id: str, resource_id: str):
        self.catalog_id = catalog_id
        self.resource_type_id = resource_type_id
        self.resource_id = resource_id
        super().__init__(
            f"Resource not found: {catalog_id}/{resource_type_id}/{resource_id}",
            "Resource not found",
        )


class ApprovalRequestNotFoundError(NotFoundError):
    """No approval request exists for the id."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(
            f"Approval request not found: {request_id}",
            "Approval request not found",
        )


# Conflict


class ConflictError(AccessHubError):
    """A conditional write lost against concurrent or prior state."""

    code: str = "CONFLICT"


class ApprovalRequestStatusConflictError(ConflictError):
    """The approval request was not in the status the transition requires."""

    def __init__(self, request_id: str, expected_status: str, actual_status: str | None):
        self.request_id = request_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        super().__init__(
            f"Approval request {request_id} is not {expected_status} "
            f"(current status: {actual_status})",
            f"Approval request is not {expected_status}",
        )


class PendingUpdateConflictError(ConflictError):
    """The resource already has an in-flight update awaiting approval."""

    def __init__(self, resource_id: str, pending_request_id: str | None):
        self.resource_id = resource_id
        self.pending_request_id = pending_request_id
        super().__init__(
            f"Resource {resource_id} already has a pending update "
            f"(approval request {pending_request_id})",
            "Resource already has a pending update",
        )


# Provider


class ProviderError(AccessHubError):
    """A storage, identity, scheduler or notification dependency failed."""

    code: str = "INTERNAL_SERVER_ERROR"

    def __init__(self, provider: str, detail: str):
        self.provider = provider
        self.detail = detail
        super().__init__(
            f"{provider} provider failed: {detail}",
            "Unexpected error occurred",
        )


class SchedulerError(ProviderError):
    """The scheduler rejected or failed to persist an event."""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        super().__init__("scheduler", f"{operation}: {detail}")


class NotificationError(ProviderError):
    """A notification channel rejected a dispatch."""

    def __init__(self, channel_type_id: str, detail: str):
        self.channel_type_id = channel_type_id
        super().__init__("notification", f"{channel_type_id}: {detail}")
