"""
Built-in system catalog.

Hosts the ``resource-update`` approval flow used when a resource type
requires approval for parameter changes.  The target resource is named by
input parameters (it lives in another catalog); the approver group is the
target's parent resource approver group and is passed in at submit time.

The flow handlers run on the handler pool like any plugin handler and do
not touch hub storage.  Pending-update bookkeeping happens in
``ResourceUpdateService``, which the approval lifecycle calls on the
caller's thread.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from access_kernel.domain.approval import (
    ApprovedRequest,
    ApproverType,
    HandlerResult,
    InputParamValue,
    RevokedRequest,
)
from access_kernel.domain.catalog import (
    ApprovalFlowDefinition,
    ApproverSpec,
    CatalogDefinition,
    CatalogRegistry,
    InputParamSpec,
    ResourceTypeDefinition,
    ValidationInput,
)
from access_kernel.domain.resource import UpdateResourceInput
from access_kernel.exceptions import ValidationError

CATALOG_ID_PARAM = "catalogId"
RESOURCE_TYPE_ID_PARAM = "resourceTypeId"
RESOURCE_ID_PARAM = "resourceId"
UPDATE_PARAMS_PARAM = "updateParams"


@dataclass(frozen=True)
class ResourceUpdateTarget:
    """The resource and parameters a resource-update request carries."""

    catalog_id: str
    resource_type_id: str
    resource_id: str
    update_params: Mapping[str, Any]

    def to_input_params(self) -> dict[str, str]:
        return {
            CATALOG_ID_PARAM: self.catalog_id,
            RESOURCE_TYPE_ID_PARAM: self.resource_type_id,
            RESOURCE_ID_PARAM: self.resource_id,
            UPDATE_PARAMS_PARAM: json.dumps(dict(self.update_params), sort_keys=True),
        }

    @classmethod
    def from_input_params(cls, params: Mapping[str, InputParamValue]) -> ResourceUpdateTarget:
        try:
            update_params = json.loads(str(params[UPDATE_PARAMS_PARAM]))
            target = cls(
                catalog_id=str(params[CATALOG_ID_PARAM]),
                resource_type_id=str(params[RESOURCE_TYPE_ID_PARAM]),
                resource_id=str(params[RESOURCE_ID_PARAM]),
                update_params=update_params,
            )
        except (KeyError, json.JSONDecodeError) as exc:
            raise ValidationError(f"Malformed resource update parameters: {exc}") from None
        if not isinstance(target.update_params, dict):
            raise ValidationError("updateParams must be a JSON object")
        return target


class ResourceUpdateFlowHandlers:
    """validate/approve/revoke for the resource-update flow."""

    def __init__(self, registry: CatalogRegistry):
        self._registry = registry

    def _updatable_type(self, target: ResourceUpdateTarget) -> ResourceTypeDefinition:
        catalog = self._registry.get(target.catalog_id)
        if catalog is None:
            raise ValidationError(f"Catalog not found: {target.catalog_id}")
        resource_type = catalog.get_resource_type(target.resource_type_id)
        if resource_type is None:
            raise ValidationError(f"Resource type not found: {target.resource_type_id}")
        if not resource_type.is_updatable:
            raise ValidationError(f"Resource type {target.resource_type_id} is not updatable")
        return resource_type

    def validate(self, request: ValidationInput) -> HandlerResult:
        try:
            target = ResourceUpdateTarget.from_input_params(request.input_params)
            resource_type = self._updatable_type(target)
        except ValidationError as exc:
            return HandlerResult.failure(exc.system_message)
        if resource_type.handlers.get_resource(target.resource_type_id, target.resource_id) is None:
            return HandlerResult.failure(f"Resource not found: {target.resource_id}")
        return HandlerResult.success("Resource update request is valid")

    def approve(self, request: ApprovedRequest) -> HandlerResult:
        try:
            target = ResourceUpdateTarget.from_input_params(request.input_params_by_id())
            resource_type = self._updatable_type(target)
        except ValidationError as exc:
            return HandlerResult.failure(exc.system_message)
        resource_type.handlers.update_resource(
            UpdateResourceInput(
                resource_type_id=target.resource_type_id,
                resource_id=target.resource_id,
                params=target.update_params,
            )
        )
        return HandlerResult.success(f"Resource {target.resource_id} updated")

    def revoke(self, request: RevokedRequest) -> HandlerResult:
        return HandlerResult.failure("Resource updates cannot be revoked")


def build_system_catalog(
    registry: CatalogRegistry,
    catalog_id: str = "system",
    resource_update_flow_id: str = "resource-update",
) -> CatalogDefinition:
    """The system catalog definition.  ``registry`` is where target catalogs live."""
    return CatalogDefinition(
        id=catalog_id,
        name="System",
        description="Built-in catalog for hub workflows",
        approval_flows=(
            ApprovalFlowDefinition(
                id=resource_update_flow_id,
                name="Resource Update Approval",
                description="Approval for changing the parameters of a resource",
                handlers=ResourceUpdateFlowHandlers(registry),
                input_params=(
                    InputParamSpec(CATALOG_ID_PARAM, "Catalog ID"),
                    InputParamSpec(RESOURCE_TYPE_ID_PARAM, "Resource Type ID"),
                    InputParamSpec(RESOURCE_ID_PARAM, "Resource ID"),
                    InputParamSpec(
                        UPDATE_PARAMS_PARAM,
                        "Update Parameters",
                        description="Proposed parameters (JSON object)",
                    ),
                ),
                approver=ApproverSpec(ApproverType.REQUEST_SPECIFIED),
                enable_revoke=False,
            ),
        ),
    )
