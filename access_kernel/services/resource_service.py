"""
access_kernel.services.resource_service -- Resource CRUD and governance.

Responsibility:
    Create, update, delete resources through their resource type handlers
    and keep the hub-side governance record (owner group, approver group)
    in step.  Parameter updates on types that require approval are handed
    to ``ResourceUpdateService``.

Architecture position:
    Kernel > Services.  Resource type handlers run through
    ``HandlerRunner.call``; a handler failure is a ProviderError and no
    governance row is written for it.

Invariants enforced:
    - A governance row is written only after the create handler succeeded,
      keyed by the id the handler assigned.
    - A resource with a pending update cannot be deleted.
    - Deleting a resource removes its audit-notification scheduler events
      before the governance row.

Failure modes:
    - ValidationError when the resource type lacks the capability
      (creatable, updatable, deletable, owner/approver management).
    - ResourceNotFoundError for an unknown resource or parent.
    - PendingUpdateConflictError on delete while an update is pending.
    - ProviderError when a resource type handler fails.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from access_kernel.domain.catalog import ResourceTypeView
from access_kernel.domain.providers import SchedulerProvider
from access_kernel.domain.resource import (
    CreateResourceInput,
    Resource,
    ResourceOutput,
    UpdateResourceInput,
)
from access_kernel.domain.validation import (
    require_group_id,
    require_slug,
    require_text,
    require_user_id,
)
from access_kernel.exceptions import (
    ConflictError,
    PendingUpdateConflictError,
    ResourceNotFoundError,
    ValidationError,
)
from access_kernel.logging_config import LogContext, get_logger
from access_kernel.models.resource import ResourceModel
from access_kernel.selectors.catalog_resolver import CatalogResolver
from access_kernel.services.authorization import AuthorizationEngine
from access_kernel.services.base import BaseService
from access_kernel.services.handler_runner import HandlerRunner
from access_kernel.services.resource_update_service import ResourceUpdateService

logger = get_logger("services.resource")

# Sentinel distinguishing "leave unchanged" from "clear the group".
UNCHANGED: Any = object()


class ResourceService(BaseService):
    """Resource lifecycle and governance record maintenance."""

    def __init__(
        self,
        session: Session,
        resolver: CatalogResolver,
        authorization: AuthorizationEngine,
        runner: HandlerRunner,
        updates: ResourceUpdateService,
        scheduler: SchedulerProvider,
    ):
        super().__init__(session)
        self._resolver = resolver
        self._authz = authorization
        self._runner = runner
        self._updates = updates
        self._scheduler = scheduler

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_resource(
        self,
        catalog_id: str,
        resource_type_id: str,
        request_user_id: str,
        name: str,
        params: Mapping[str, Any] | None = None,
        parent_resource_id: str | None = None,
        owner_group_id: str | None = None,
        approver_group_id: str | None = None,
    ) -> Resource:
        """
        Create a resource through its type's handler and register it.

        Args:
            catalog_id: Catalog hosting the resource type.
            resource_type_id: Resource type to create.
            request_user_id: Caller; must pass ``can_create_resource``.
            name: Display name passed to the handler.
            params: Type-specific parameters passed to the handler.
            parent_resource_id: Required when the type declares a parent type.
            owner_group_id: Initial owner group.
            approver_group_id: Initial approver group.

        Returns:
            The stored governance record.
        """
        request_user_id = require_user_id(request_user_id, field_name="request_user_id")
        name = require_text("name", name, max_length=255)
        if parent_resource_id is not None:
            require_slug("parent_resource_id", parent_resource_id)
        if owner_group_id is not None:
            owner_group_id = require_group_id(owner_group_id, "owner_group_id")
        if approver_group_id is not None:
            approver_group_id = require_group_id(approver_group_id, "approver_group_id")

        with LogContext.bind(actor_id=request_user_id, catalog_id=catalog_id):
            resource_type = self._resolver.resolve_resource_type(catalog_id, resource_type_id)
            definition = resource_type.definition
            if not definition.is_creatable:
                raise ValidationError(
                    f"Resource type {catalog_id}/{resource_type_id} is not creatable",
                    "This resource type cannot be created",
                )

            if definition.parent_resource_type_id is None:
                if parent_resource_id is not None:
                    raise ValidationError(
                        f"Resource type {resource_type_id} has no parent resource type",
                        "This resource type does not take a parent resource",
                    )
            else:
                if parent_resource_id is None:
                    raise ValidationError(
                        f"Resource type {resource_type_id} requires a parent resource",
                        "Parent resource is required",
                    )
                if self._resolver.resolve_resource(
                    catalog_id, definition.parent_resource_type_id, parent_resource_id,
                ) is None:
                    raise ResourceNotFoundError(
                        catalog_id, definition.parent_resource_type_id, parent_resource_id,
                    )

            self._authz.require(
                self._authz.can_create_resource(
                    catalog_id, resource_type_id, parent_resource_id, request_user_id,
                ),
                request_user_id, "create_resource",
            )

            output: ResourceOutput = self._runner.call(
                "create_resource",
                resource_type.handlers.create_resource,
                CreateResourceInput(
                    resource_type_id=resource_type_id,
                    name=name,
                    params=dict(params or {}),
                    parent_resource_id=parent_resource_id,
                ),
            )
            require_slug("resource_id", output.resource_id)

            if self._get_model(catalog_id, resource_type_id, output.resource_id) is not None:
                raise ConflictError(
                    f"Resource {catalog_id}/{resource_type_id}/{output.resource_id} already registered",
                    "Resource already exists",
                )

            model = ResourceModel(
                catalog_id=catalog_id,
                resource_type_id=resource_type_id,
                resource_id=output.resource_id,
                name=output.name or name,
                parent_resource_id=parent_resource_id,
                owner_group_id=owner_group_id,
                approver_group_id=approver_group_id,
                audit_notifications=[],
            )
            self.session.add(model)
            self.session.flush()

            logger.info(
                "resource_created",
                extra={"resource_type_id": resource_type_id, "resource_id": output.resource_id},
            )
            return model.to_dto()

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_resource(
        self, catalog_id: str, resource_type_id: str, resource_id: str,
    ) -> tuple[Resource, ResourceOutput | None]:
        """Governance record plus what the type handler reports (None if it reports nothing)."""
        resource_type = self._resolver.resolve_resource_type(catalog_id, resource_type_id)
        resource = self._require_resource(catalog_id, resource_type_id, resource_id)
        output = self._runner.call(
            "get_resource", resource_type.handlers.get_resource, resource_type_id, resource_id,
        )
        return resource, output

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update_resource_params(
        self,
        catalog_id: str,
        resource_type_id: str,
        resource_id: str,
        params: Mapping[str, Any],
        request_user_id: str,
        comment: str = "",
    ) -> ResourceOutput | UUID:
        """
        Update a resource's parameters.

        Types without an update approver are updated directly and the
        handler output is returned.  Otherwise an approval request is
        submitted and its id returned.
        """
        resource_type = self._resolver.resolve_resource_type(catalog_id, resource_type_id)
        if resource_type.definition.requires_update_approval:
            return self._updates.update_resource_params_with_approval(
                catalog_id, resource_type_id, resource_id, params, request_user_id, comment,
            )
        return self._update_directly(resource_type, resource_id, params, request_user_id)

    def _update_directly(
        self,
        resource_type: ResourceTypeView,
        resource_id: str,
        params: Mapping[str, Any],
        request_user_id: str,
    ) -> ResourceOutput:
        catalog_id = resource_type.catalog_id
        request_user_id = require_user_id(request_user_id, field_name="request_user_id")
        if not isinstance(params, Mapping):
            raise ValidationError("params must be a mapping")
        if not resource_type.definition.is_updatable:
            raise ValidationError(
                f"Resource type {catalog_id}/{resource_type.id} is not updatable",
                "This resource type cannot be updated",
            )

        with LogContext.bind(actor_id=request_user_id, catalog_id=catalog_id):
            self._require_resource(catalog_id, resource_type.id, resource_id)
            self._authz.require(
                self._authz.can_edit_resource(catalog_id, resource_type.id, resource_id, request_user_id),
                request_user_id, "update_resource_params",
            )
            output = self._runner.call(
                "update_resource",
                resource_type.handlers.update_resource,
                UpdateResourceInput(
                    resource_type_id=resource_type.id,
                    resource_id=resource_id,
                    params=dict(params),
                ),
            )
            logger.info(
                "resource_params_updated",
                extra={"resource_type_id": resource_type.id, "resource_id": resource_id},
            )
            return output

    def update_resource_governance(
        self,
        catalog_id: str,
        resource_type_id: str,
        resource_id: str,
        request_user_id: str,
        owner_group_id: str | None = UNCHANGED,
        approver_group_id: str | None = UNCHANGED,
    ) -> Resource:
        """Set or clear owner/approver groups.  Omitted arguments are left as they are."""
        request_user_id = require_user_id(request_user_id, field_name="request_user_id")
        if owner_group_id is not UNCHANGED and owner_group_id is not None:
            owner_group_id = require_group_id(owner_group_id, "owner_group_id")
        if approver_group_id is not UNCHANGED and approver_group_id is not None:
            approver_group_id = require_group_id(approver_group_id, "approver_group_id")

        with LogContext.bind(actor_id=request_user_id, catalog_id=catalog_id):
            definition = self._resolver.resolve_resource_type(catalog_id, resource_type_id).definition
            if owner_group_id is not UNCHANGED and not definition.owner_management:
                raise ValidationError(
                    f"Resource type {resource_type_id} does not support owner management",
                    "Owner group cannot be set for this resource type",
                )
            if approver_group_id is not UNCHANGED and not definition.approver_management:
                raise ValidationError(
                    f"Resource type {resource_type_id} does not support approver management",
                    "Approver group cannot be set for this resource type",
                )

            model = self._get_model(catalog_id, resource_type_id, resource_id)
            if model is None:
                raise ResourceNotFoundError(catalog_id, resource_type_id, resource_id)
            self._authz.require(
                self._authz.can_update_resource_governance(
                    catalog_id, resource_type_id, resource_id, request_user_id,
                ),
                request_user_id, "update_resource_governance",
            )

            if owner_group_id is not UNCHANGED:
                model.owner_group_id = owner_group_id
            if approver_group_id is not UNCHANGED:
                model.approver_group_id = approver_group_id
            self.session.flush()

            logger.info(
                "resource_governance_updated",
                extra={
                    "resource_id": resource_id,
                    "owner_group_id": model.owner_group_id,
                    "approver_group_id": model.approver_group_id,
                },
            )
            return model.to_dto()

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_resource(
        self, catalog_id: str, resource_type_id: str, resource_id: str, request_user_id: str,
    ) -> None:
        request_user_id = require_user_id(request_user_id, field_name="request_user_id")

        with LogContext.bind(actor_id=request_user_id, catalog_id=catalog_id):
            resource_type = self._resolver.resolve_resource_type(catalog_id, resource_type_id)
            if not resource_type.definition.is_deletable:
                raise ValidationError(
                    f"Resource type {catalog_id}/{resource_type_id} is not deletable",
                    "This resource type cannot be deleted",
                )
            model = self._get_model(catalog_id, resource_type_id, resource_id)
            if model is None:
                raise ResourceNotFoundError(catalog_id, resource_type_id, resource_id)
            self._authz.require(
                self._authz.can_edit_resource(catalog_id, resource_type_id, resource_id, request_user_id),
                request_user_id, "delete_resource",
            )
            if model.pending_update_request_id is not None:
                raise PendingUpdateConflictError(resource_id, str(model.pending_update_request_id))

            self._runner.call(
                "delete_resource", resource_type.handlers.delete_resource, resource_type_id, resource_id,
            )

            for notification in model.to_dto().audit_notifications:
                try:
                    self._scheduler.delete(notification.id)
                except Exception as exc:
                    logger.error(
                        "audit_notification_event_delete_failed",
                        extra={"event_id": notification.id, "error": str(exc)},
                    )

            self.session.delete(model)
            self.session.flush()
            logger.info(
                "resource_deleted",
                extra={"resource_type_id": resource_type_id, "resource_id": resource_id},
            )

    # ------------------------------------------------------------------

    def _get_model(
        self, catalog_id: str, resource_type_id: str, resource_id: str,
    ) -> ResourceModel | None:
        require_slug("resource_id", resource_id)
        return self.session.execute(
            select(ResourceModel).where(
                ResourceModel.catalog_id == catalog_id,
                ResourceModel.resource_type_id == resource_type_id,
                ResourceModel.resource_id == resource_id,
            )
        ).scalar_one_or_none()

    def _require_resource(self, catalog_id: str, resource_type_id: str, resource_id: str) -> Resource:
        resource = self._resolver.resolve_resource(catalog_id, resource_type_id, resource_id)
        if resource is None:
            raise ResourceNotFoundError(catalog_id, resource_type_id, resource_id)
        return resource
