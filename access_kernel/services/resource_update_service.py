"""
access_kernel.services.resource_update_service -- Resource update with approval.

Responsibility:
    Binds a proposed parameter change on a resource to exactly one in-flight
    approval request of the system ``resource-update`` flow, and lets the
    requester (or a resource editor) cancel it.  Also acts as the
    ``ApprovalLifecycleHook`` for that flow: it checks before the approve
    handler runs that the pending update still belongs to the request, and
    clears the pending update once the request is decided.

Architecture position:
    Kernel > Services.  Submits through ``ApprovalRequestService``; reads
    through ``CatalogResolver``; writes ``ResourceModel`` pending-update
    columns with conditional UPDATEs.

Invariants enforced:
    - A resource has at most one pending update.  Setting one is guarded by
      ``pending_update_request_id IS NULL``; clearing one is guarded by the
      expected request id.
    - The pending update and its approval request are written in one
      transaction.  The guarded pending-update write goes first, so a
      proposal that loses the race stores no request and notifies no one.
    - A failing validate handler never creates a pending update.
    - Cancel clears the pending update only; the approval request keeps its
      status.

Failure modes:
    - PendingUpdateConflictError when the resource already has one.
    - ValidationError on a type that does not require update approval, a
      missing parent approver group, or a cancel whose request id does not
      match the pending update.
    - PermissionDeniedError when a cancel comes from someone who is neither
      the requester nor a resource editor.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from access_kernel.domain.approval import (
    ApprovalRequest,
    ApprovalRequestStatus,
    ApprovedRequest,
    HandlerResult,
    InputParam,
)
from access_kernel.domain.clock import Clock, SystemClock
from access_kernel.domain.resource import Resource
from access_kernel.domain.validation import (
    require_request_id,
    require_slug,
    require_text,
    require_user_id,
)
from access_kernel.exceptions import (
    PendingUpdateConflictError,
    ResourceNotFoundError,
    ValidationError,
)
from access_kernel.logging_config import LogContext, get_logger
from access_kernel.models.resource import ResourceModel
from access_kernel.selectors.catalog_resolver import CatalogResolver
from access_kernel.services.approval_request_service import ApprovalRequestService
from access_kernel.services.authorization import AuthorizationEngine
from access_kernel.services.base import BaseService
from access_kernel.services.system_catalog import ResourceUpdateTarget

logger = get_logger("services.resource_update")

PENDING_UPDATE_GONE_MESSAGE = "Pending update was canceled or replaced; nothing was applied"


class ResourceUpdateService(BaseService):
    """Pending-update workflow on top of the system resource-update flow."""

    def __init__(
        self,
        session: Session,
        resolver: CatalogResolver,
        authorization: AuthorizationEngine,
        approvals: ApprovalRequestService,
        system_catalog_id: str = "system",
        resource_update_flow_id: str = "resource-update",
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._resolver = resolver
        self._authz = authorization
        self._approvals = approvals
        self._system_catalog_id = system_catalog_id
        self._flow_id = resource_update_flow_id
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def update_resource_params_with_approval(
        self,
        catalog_id: str,
        resource_type_id: str,
        resource_id: str,
        proposed_params: Mapping[str, Any],
        request_user_id: str,
        comment: str = "",
    ) -> UUID:
        """Submit a resource-update request and record it as the resource's pending update.

        Returns the approval request id.  When the validate handler fails the
        request is stored as validationFailed and no pending update is set.
        """
        require_slug("catalog_id", catalog_id)
        require_slug("resource_type_id", resource_type_id)
        require_slug("resource_id", resource_id)
        request_user_id = require_user_id(request_user_id, field_name="request_user_id")
        comment = require_text("comment", comment)
        if not isinstance(proposed_params, Mapping):
            raise ValidationError("proposed_params must be a mapping")

        with LogContext.bind(actor_id=request_user_id, catalog_id=catalog_id):
            resource_type = self._resolver.resolve_resource_type(catalog_id, resource_type_id)
            if not resource_type.definition.is_updatable:
                raise ValidationError(
                    f"Resource type {catalog_id}/{resource_type_id} is not updatable",
                    "This resource type cannot be updated",
                )
            if not resource_type.definition.requires_update_approval:
                raise ValidationError(
                    f"Resource type {catalog_id}/{resource_type_id} does not require update approval",
                    "This resource type is updated directly",
                )

            resource = self._require_resource(catalog_id, resource_type_id, resource_id)
            if resource.pending_update is not None:
                raise PendingUpdateConflictError(
                    resource_id, str(resource.pending_update.approval_request_id),
                )

            parent = self._resolver.resolve_parent_resource(resource)
            if parent is None or parent.approver_group_id is None:
                raise ValidationError(
                    f"Resource {resource_type_id}/{resource_id} has no parent approver group",
                    "Approver group is not set for the parent resource",
                )

            target = ResourceUpdateTarget(
                catalog_id=catalog_id,
                resource_type_id=resource_type_id,
                resource_id=resource_id,
                update_params=dict(proposed_params),
            )
            request, flow = self._approvals.prepare_submission(
                self._system_catalog_id,
                self._flow_id,
                request_user_id,
                input_params=[InputParam(k, v) for k, v in target.to_input_params().items()],
                request_comment=comment,
                approver_id=parent.approver_group_id,
            )
            if request.status is not ApprovalRequestStatus.PENDING:
                self._approvals.record_submission(request, flow)
                logger.info(
                    "resource_update_validation_failed",
                    extra={"resource_id": resource_id, "approval_request_id": str(request.request_id)},
                )
                return request.request_id

            # Claim the resource before the request row exists; a lost race writes nothing.
            self._set_pending_update(resource, request.request_id, request_user_id, target)
            self._approvals.record_submission(request, flow)
            logger.info(
                "resource_update_pending",
                extra={
                    "resource_type_id": resource_type_id,
                    "resource_id": resource_id,
                    "approval_request_id": str(request.request_id),
                },
            )
            return request.request_id

    def cancel_pending_resource_update(
        self,
        catalog_id: str,
        resource_type_id: str,
        resource_id: str,
        approval_request_id: UUID | str,
        request_user_id: str,
    ) -> None:
        """Clear the pending update; the approval request is left as it is."""
        require_slug("catalog_id", catalog_id)
        require_slug("resource_type_id", resource_type_id)
        require_slug("resource_id", resource_id)
        request_uuid = require_request_id(approval_request_id)
        request_user_id = require_user_id(request_user_id, field_name="request_user_id")

        with LogContext.bind(actor_id=request_user_id, catalog_id=catalog_id):
            resource = self._require_resource(catalog_id, resource_type_id, resource_id)
            pending = resource.pending_update
            if pending is None:
                raise ValidationError(
                    f"Resource {resource_type_id}/{resource_id} has no pending update",
                    "There is no pending update to cancel",
                )
            if pending.approval_request_id != request_uuid:
                raise ValidationError(
                    f"Pending update of {resource_id} belongs to {pending.approval_request_id}, "
                    f"not {request_uuid}",
                    "Approval request does not match the pending update",
                )

            if pending.request_user_id != request_user_id:
                self._authz.require(
                    self._authz.can_edit_resource(
                        catalog_id, resource_type_id, resource_id, request_user_id,
                    ),
                    request_user_id, "cancel_pending_resource_update",
                )

            if not self._clear_pending_update(resource, request_uuid):
                raise ValidationError(
                    f"Pending update of {resource_id} changed while canceling",
                    "Approval request does not match the pending update",
                )
            self.session.flush()
            logger.info(
                "resource_update_canceled",
                extra={"resource_id": resource_id, "approval_request_id": str(request_uuid)},
            )

    # ------------------------------------------------------------------
    # ApprovalLifecycleHook
    # ------------------------------------------------------------------

    def applies_to(self, catalog_id: str, approval_flow_id: str) -> bool:
        return catalog_id == self._system_catalog_id and approval_flow_id == self._flow_id

    def before_approve_action(self, request: ApprovedRequest) -> HandlerResult | None:
        target = ResourceUpdateTarget.from_input_params(request.input_params_by_id())
        resource = self._resolver.resolve_resource(
            target.catalog_id, target.resource_type_id, target.resource_id,
        )
        if (
            resource is None
            or resource.pending_update is None
            or resource.pending_update.approval_request_id != request.request_id
        ):
            logger.warning(
                "resource_update_pending_update_gone",
                extra={"resource_id": target.resource_id, "approval_request_id": str(request.request_id)},
            )
            return HandlerResult.failure(PENDING_UPDATE_GONE_MESSAGE)
        return None

    def after_decision(self, request: ApprovalRequest) -> None:
        target = ResourceUpdateTarget.from_input_params(request.input_params_by_id())
        resource = self._resolver.resolve_resource(
            target.catalog_id, target.resource_type_id, target.resource_id,
        )
        if resource is None:
            return
        if self._clear_pending_update(resource, request.request_id):
            logger.info(
                "resource_update_pending_cleared",
                extra={
                    "resource_id": target.resource_id,
                    "approval_request_id": str(request.request_id),
                    "status": request.status.value,
                },
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_resource(self, catalog_id: str, resource_type_id: str, resource_id: str) -> Resource:
        resource = self._resolver.resolve_resource(catalog_id, resource_type_id, resource_id)
        if resource is None:
            raise ResourceNotFoundError(catalog_id, resource_type_id, resource_id)
        return resource

    @staticmethod
    def _key(resource: Resource) -> tuple[Any, ...]:
        return (
            ResourceModel.catalog_id == resource.catalog_id,
            ResourceModel.resource_type_id == resource.resource_type_id,
            ResourceModel.resource_id == resource.resource_id,
        )

    def _set_pending_update(
        self,
        resource: Resource,
        request_id: UUID,
        request_user_id: str,
        target: ResourceUpdateTarget,
    ) -> None:
        result = self.session.execute(
            update(ResourceModel)
            .where(*self._key(resource), ResourceModel.pending_update_request_id.is_(None))
            .values(
                pending_update_request_id=request_id,
                pending_update_user_id=request_user_id,
                pending_update_requested_at=self._clock.now(),
                pending_update_params=dict(target.update_params),
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            raise PendingUpdateConflictError(resource.resource_id, None)
        self.session.flush()

    def _clear_pending_update(self, resource: Resource, request_id: UUID) -> bool:
        result = self.session.execute(
            update(ResourceModel)
            .where(*self._key(resource), ResourceModel.pending_update_request_id == request_id)
            .values(
                pending_update_request_id=None,
                pending_update_user_id=None,
                pending_update_requested_at=None,
                pending_update_params=None,
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1
