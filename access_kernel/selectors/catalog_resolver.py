"""
Module: access_kernel.selectors.catalog_resolver
Responsibility: Merge code-registered catalog definitions with the mutable
    governance records stored in the database.

Architecture position: Kernel > Selectors.  Reads governance and resource
    rows; never writes.

Invariants enforced:
    - A definition is required: governance rows alone never make a
      catalog, approval flow or resource type resolvable.
    - Governance fields (owner group, approver group) come from the
      database; everything else comes from the definition.
    - A missing governance row means "no group assigned".

Failure modes:
    - InvalidIdentifierError on malformed ids.
    - CatalogNotFoundError / ApprovalFlowNotFoundError /
      ResourceTypeNotFoundError when no definition exists.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from access_kernel.domain.catalog import (
    ApprovalFlowView,
    CatalogDefinition,
    CatalogRegistry,
    CatalogView,
    ResourceTypeView,
)
from access_kernel.domain.resource import Resource
from access_kernel.domain.validation import require_slug
from access_kernel.exceptions import (
    ApprovalFlowNotFoundError,
    CatalogNotFoundError,
    ResourceTypeNotFoundError,
)
from access_kernel.models.governance import (
    ApprovalFlowGovernanceModel,
    CatalogGovernanceModel,
)
from access_kernel.models.resource import ResourceModel
from access_kernel.selectors.base import BaseSelector


class CatalogResolver(BaseSelector):
    """Resolved, read-only view of catalogs, flows, resource types and resources."""

    def __init__(self, session: Session, registry: CatalogRegistry):
        super().__init__(session)
        self._registry = registry

    @property
    def registry(self) -> CatalogRegistry:
        return self._registry

    def _definition(self, catalog_id: str) -> CatalogDefinition:
        require_slug("catalog_id", catalog_id)
        definition = self._registry.get(catalog_id)
        if definition is None:
            raise CatalogNotFoundError(catalog_id)
        return definition

    def _catalog_owner(self, catalog_id: str) -> str | None:
        return self.session.execute(
            select(CatalogGovernanceModel.owner_group_id).where(
                CatalogGovernanceModel.catalog_id == catalog_id
            )
        ).scalar_one_or_none()

    def resolve(self, catalog_id: str) -> CatalogView:
        definition = self._definition(catalog_id)
        return CatalogView(definition=definition, owner_group_id=self._catalog_owner(catalog_id))

    def list_catalogs(self) -> tuple[CatalogView, ...]:
        definitions = self._registry.list()
        owners = dict(
            self.session.execute(
                select(CatalogGovernanceModel.catalog_id, CatalogGovernanceModel.owner_group_id)
            ).all()
        )
        return tuple(
            CatalogView(definition=d, owner_group_id=owners.get(d.id)) for d in definitions
        )

    def resolve_approval_flow(self, catalog_id: str, approval_flow_id: str) -> ApprovalFlowView:
        definition = self._definition(catalog_id)
        require_slug("approval_flow_id", approval_flow_id)
        flow = definition.get_approval_flow(approval_flow_id)
        if flow is None:
            raise ApprovalFlowNotFoundError(catalog_id, approval_flow_id)
        approver_group_id = self.session.execute(
            select(ApprovalFlowGovernanceModel.approver_group_id).where(
                ApprovalFlowGovernanceModel.catalog_id == catalog_id,
                ApprovalFlowGovernanceModel.approval_flow_id == approval_flow_id,
            )
        ).scalar_one_or_none()
        return ApprovalFlowView(
            catalog_id=catalog_id, definition=flow, approver_group_id=approver_group_id,
        )

    def resolve_resource_type(self, catalog_id: str, resource_type_id: str) -> ResourceTypeView:
        definition = self._definition(catalog_id)
        require_slug("resource_type_id", resource_type_id)
        resource_type = definition.get_resource_type(resource_type_id)
        if resource_type is None:
            raise ResourceTypeNotFoundError(catalog_id, resource_type_id)
        return ResourceTypeView(catalog_id=catalog_id, definition=resource_type)

    def resolve_resource(
        self, catalog_id: str, resource_type_id: str, resource_id: str,
    ) -> Resource | None:
        """The governance record of a resource, or None when it does not exist."""
        self.resolve_resource_type(catalog_id, resource_type_id)
        require_slug("resource_id", resource_id)
        model = self.session.execute(
            select(ResourceModel).where(
                ResourceModel.catalog_id == catalog_id,
                ResourceModel.resource_type_id == resource_type_id,
                ResourceModel.resource_id == resource_id,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def resolve_parent_resource(self, resource: Resource) -> Resource | None:
        """The parent of ``resource`` per its type's parent linkage, if any."""
        resource_type = self.resolve_resource_type(resource.catalog_id, resource.resource_type_id)
        parent_type_id = resource_type.definition.parent_resource_type_id
        if parent_type_id is None or resource.parent_resource_id is None:
            return None
        return self.resolve_resource(
            resource.catalog_id, parent_type_id, resource.parent_resource_id,
        )
