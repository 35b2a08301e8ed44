"""
Catalog definitions, resolved views and the catalog registry
(``access_kernel.domain.catalog``).

Responsibility
--------------
Catalog plugins describe themselves in code: a ``CatalogDefinition`` holds
its approval flows (input schema, approver resolution, validate/approve/
revoke handlers) and resource types (capability flags, parent linkage,
CRUD handlers, update approval).  Definitions are immutable for the life
of the registry that holds them.

Who owns a catalog and who approves a flow changes at runtime and lives in
the database.  The resolver overlays those governance fields on the
definitions and returns the ``*View`` objects defined here.

Architecture position
---------------------
**Kernel domain layer** -- pure.  The registry is an ordinary object the
caller constructs and injects; nothing here is process-global.

Invariants enforced
-------------------
* A catalog id is registered at most once per registry.
* Flow and resource type ids are unique within their catalog.
* A flow whose approver type is ``resource`` names the resource type whose
  approver group it uses.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from access_kernel.domain.approval import (
    ApprovedRequest,
    ApproverType,
    AutoRevokeSpec,
    HandlerResult,
    InputParam,
    InputParamValue,
    InputResource,
    RevokedRequest,
)
from access_kernel.domain.resource import (
    AuditItemPage,
    CreateResourceInput,
    ResourceOutput,
    UpdateResourceInput,
)
from access_kernel.exceptions import ValidationError


# =========================================================================
# Handler contracts
# =========================================================================


@dataclass(frozen=True)
class ValidationInput:
    """What a flow's validate handler sees about a request being submitted."""

    catalog_id: str
    approval_flow_id: str
    request_user_id: str
    approver_id: str
    input_params: Mapping[str, InputParamValue]
    input_resources: Mapping[str, str]
    request_comment: str = ""
    auto_revoke_duration: str | None = None


class ApprovalFlowHandlers(Protocol):
    """
    Plugin hooks for one approval flow.

    Each hook reports its outcome as a HandlerResult.  A hook that raises
    or overruns the configured timeout is recorded as a failed result.
    """

    def validate(self, request: ValidationInput) -> HandlerResult:
        ...

    def approve(self, request: ApprovedRequest) -> HandlerResult:
        ...

    def revoke(self, request: RevokedRequest) -> HandlerResult:
        ...


class ResourceTypeHandlers(Protocol):
    """
    Plugin CRUD hooks for one resource type.

    Failures are raised; the hub reports them as provider errors.
    """

    def create_resource(self, request: CreateResourceInput) -> ResourceOutput:
        ...

    def get_resource(self, resource_type_id: str, resource_id: str) -> ResourceOutput | None:
        ...

    def update_resource(self, request: UpdateResourceInput) -> ResourceOutput:
        ...

    def delete_resource(self, resource_type_id: str, resource_id: str) -> None:
        ...

    def list_audit_items(
        self, resource_type_id: str, resource_id: str, pagination_token: str | None,
    ) -> AuditItemPage:
        ...


# =========================================================================
# Definitions
# =========================================================================


class InputParamType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class InputParamSpec:
    id: str
    name: str
    type: InputParamType = InputParamType.STRING
    required: bool = True
    description: str = ""

    def accepts(self, value: InputParamValue) -> bool:
        if self.type is InputParamType.BOOLEAN:
            return isinstance(value, bool)
        if self.type is InputParamType.NUMBER:
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        return isinstance(value, str)


@dataclass(frozen=True)
class InputResourceSpec:
    resource_type_id: str
    description: str = ""


@dataclass(frozen=True)
class ApproverSpec:
    """How the approver group is found.  ``resource_type_id`` is set for RESOURCE."""

    type: ApproverType = ApproverType.APPROVAL_FLOW
    resource_type_id: str | None = None

    def __post_init__(self) -> None:
        if self.type is ApproverType.RESOURCE and not self.resource_type_id:
            raise ValueError("resource approver requires resource_type_id")


@dataclass(frozen=True)
class ApprovalFlowDefinition:
    id: str
    name: str
    handlers: ApprovalFlowHandlers
    description: str = ""
    input_params: tuple[InputParamSpec, ...] = ()
    input_resources: tuple[InputResourceSpec, ...] = ()
    approver: ApproverSpec = ApproverSpec()
    enable_revoke: bool = True
    auto_revoke: AutoRevokeSpec | None = None


class UpdateApproverType(str, Enum):
    PARENT_RESOURCE = "parentResource"


@dataclass(frozen=True)
class UpdateApprover:
    """Updates need approval from the parent resource's approver group."""

    type: UpdateApproverType = UpdateApproverType.PARENT_RESOURCE


@dataclass(frozen=True)
class ResourceTypeDefinition:
    id: str
    name: str
    handlers: ResourceTypeHandlers
    description: str = ""
    is_creatable: bool = False
    is_updatable: bool = False
    is_deletable: bool = False
    owner_management: bool = False
    approver_management: bool = False
    parent_resource_type_id: str | None = None
    anyone_can_create: bool = False
    update_approver: UpdateApprover | None = None

    @property
    def requires_update_approval(self) -> bool:
        return self.update_approver is not None


@dataclass(frozen=True)
class CatalogDefinition:
    id: str
    name: str
    description: str = ""
    approval_flows: tuple[ApprovalFlowDefinition, ...] = ()
    resource_types: tuple[ResourceTypeDefinition, ...] = ()

    def __post_init__(self) -> None:
        flow_ids = [f.id for f in self.approval_flows]
        if len(flow_ids) != len(set(flow_ids)):
            raise ValueError(f"Duplicate approval flow id in catalog {self.id}")
        type_ids = [t.id for t in self.resource_types]
        if len(type_ids) != len(set(type_ids)):
            raise ValueError(f"Duplicate resource type id in catalog {self.id}")
        for flow in self.approval_flows:
            ref = flow.approver.resource_type_id
            if ref is not None and ref not in type_ids:
                raise ValueError(
                    f"Approval flow {self.id}/{flow.id} references unknown "
                    f"resource type {ref}"
                )

    def get_approval_flow(self, approval_flow_id: str) -> ApprovalFlowDefinition | None:
        return next((f for f in self.approval_flows if f.id == approval_flow_id), None)

    def get_resource_type(self, resource_type_id: str) -> ResourceTypeDefinition | None:
        return next((t for t in self.resource_types if t.id == resource_type_id), None)


# =========================================================================
# Resolved views (definition + governance overlay)
# =========================================================================


@dataclass(frozen=True)
class CatalogView:
    definition: CatalogDefinition
    owner_group_id: str | None = None

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def name(self) -> str:
        return self.definition.name


@dataclass(frozen=True)
class ApprovalFlowView:
    catalog_id: str
    definition: ApprovalFlowDefinition
    approver_group_id: str | None = None

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def handlers(self) -> ApprovalFlowHandlers:
        return self.definition.handlers


@dataclass(frozen=True)
class ResourceTypeView:
    catalog_id: str
    definition: ResourceTypeDefinition

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def handlers(self) -> ResourceTypeHandlers:
        return self.definition.handlers


# =========================================================================
# Registry
# =========================================================================


class CatalogRegistry:
    """Code-registered catalog definitions, keyed by catalog id."""

    def __init__(self, catalogs: Iterable[CatalogDefinition] = ()):
        self._catalogs: dict[str, CatalogDefinition] = {}
        for catalog in catalogs:
            self.register(catalog)

    def register(self, catalog: CatalogDefinition) -> None:
        if catalog.id in self._catalogs:
            raise ValueError(f"Catalog already registered: {catalog.id}")
        self._catalogs[catalog.id] = catalog

    def get(self, catalog_id: str) -> CatalogDefinition | None:
        return self._catalogs.get(catalog_id)

    def list(self) -> tuple[CatalogDefinition, ...]:
        return tuple(self._catalogs[k] for k in sorted(self._catalogs))

    def __contains__(self, catalog_id: object) -> bool:
        return catalog_id in self._catalogs


# =========================================================================
# Input schema checks
# =========================================================================


def check_input_params(
    flow: ApprovalFlowDefinition, params: Iterable[InputParam],
) -> tuple[InputParam, ...]:
    """Validate submitted params against the flow's declared parameters."""
    params = tuple(params)
    specs = {spec.id: spec for spec in flow.input_params}
    seen: set[str] = set()
    for param in params:
        if param.id in seen:
            raise ValidationError(f"Duplicate input parameter: {param.id}")
        seen.add(param.id)
        spec = specs.get(param.id)
        if spec is None:
            raise ValidationError(
                f"Unknown input parameter {param.id} for approval flow {flow.id}",
                f"Unknown input parameter: {param.id}",
            )
        if not spec.accepts(param.value):
            raise ValidationError(
                f"Input parameter {param.id} must be {spec.type.value}",
                f"Invalid value for {spec.name}",
            )
    missing = [spec.id for spec in flow.input_params if spec.required and spec.id not in seen]
    if missing:
        raise ValidationError(
            f"Missing required input parameters: {', '.join(missing)}",
            "Missing required input parameters",
        )
    return params


def check_input_resources(
    flow: ApprovalFlowDefinition, resources: Iterable[InputResource],
) -> tuple[InputResource, ...]:
    """Each declared resource type must be supplied exactly once, nothing more."""
    resources = tuple(resources)
    declared = {spec.resource_type_id for spec in flow.input_resources}
    supplied = [r.resource_type_id for r in resources]
    if len(supplied) != len(set(supplied)):
        raise ValidationError("Duplicate input resource type")
    unknown = set(supplied) - declared
    if unknown:
        raise ValidationError(
            f"Unknown input resource types for approval flow {flow.id}: {sorted(unknown)}",
            "Unknown input resource type",
        )
    missing = declared - set(supplied)
    if missing:
        raise ValidationError(
            f"Missing input resources: {sorted(missing)}",
            "Missing input resources",
        )
    return resources
