"""
access_kernel.services.governance_service -- Catalog owner and flow approver assignment.

Responsibility:
    Maintains the database side of catalog governance: which group owns a
    catalog and which group approves each approval flow.  Definitions stay
    in the registry; only these two fields are mutable.

Architecture position:
    Kernel > Services.  Writes ``CatalogGovernanceModel`` and
    ``ApprovalFlowGovernanceModel``; both are upserts keyed by id.

Invariants enforced:
    - Only admins change a catalog owner.
    - Admins and the catalog owner may set a flow's approver group.
    - The assigned group must be known to the identity provider.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from access_kernel.domain.catalog import ApprovalFlowView, CatalogView
from access_kernel.domain.providers import IdentityProvider
from access_kernel.domain.validation import require_group_id, require_user_id
from access_kernel.exceptions import ValidationError
from access_kernel.logging_config import LogContext, get_logger
from access_kernel.models.governance import (
    ApprovalFlowGovernanceModel,
    CatalogGovernanceModel,
)
from access_kernel.selectors.catalog_resolver import CatalogResolver
from access_kernel.services.authorization import AuthorizationEngine
from access_kernel.services.base import BaseService
from access_kernel.services.notification_service import NotificationService

logger = get_logger("services.governance")


class GovernanceService(BaseService):
    """Assigns catalog owner groups and approval flow approver groups."""

    def __init__(
        self,
        session: Session,
        resolver: CatalogResolver,
        authorization: AuthorizationEngine,
        identity: IdentityProvider,
        notifications: NotificationService,
    ):
        super().__init__(session)
        self._resolver = resolver
        self._authz = authorization
        self._identity = identity
        self._notifications = notifications

    def set_catalog_owner(
        self, catalog_id: str, owner_group_id: str, request_user_id: str,
    ) -> CatalogView:
        owner_group_id = require_group_id(owner_group_id, "owner_group_id")
        request_user_id = require_user_id(request_user_id, field_name="request_user_id")

        with LogContext.bind(actor_id=request_user_id, catalog_id=catalog_id):
            self._authz.require(
                self._authz.can_set_catalog_owner(catalog_id, request_user_id),
                request_user_id, "set_catalog_owner",
            )
            self._require_group(owner_group_id)

            model = self.session.execute(
                select(CatalogGovernanceModel).where(CatalogGovernanceModel.catalog_id == catalog_id)
            ).scalar_one_or_none()
            previous = model.owner_group_id if model else None
            if model is None:
                model = CatalogGovernanceModel(catalog_id=catalog_id, owner_group_id=owner_group_id)
                self.session.add(model)
            else:
                model.owner_group_id = owner_group_id
            self.session.flush()

            logger.info(
                "catalog_owner_set",
                extra={"previous_owner_group_id": previous, "owner_group_id": owner_group_id},
            )
            catalog = self._resolver.resolve(catalog_id)
            self._notifications.notify_catalog_owner_changed(
                catalog_id, catalog.name, owner_group_id, request_user_id,
            )
            return catalog

    def set_approval_flow_approver(
        self,
        catalog_id: str,
        approval_flow_id: str,
        approver_group_id: str,
        request_user_id: str,
    ) -> ApprovalFlowView:
        approver_group_id = require_group_id(approver_group_id, "approver_group_id")
        request_user_id = require_user_id(request_user_id, field_name="request_user_id")

        with LogContext.bind(actor_id=request_user_id, catalog_id=catalog_id):
            self._resolver.resolve_approval_flow(catalog_id, approval_flow_id)
            self._authz.require(
                self._authz.can_administer_catalog(catalog_id, request_user_id),
                request_user_id, "set_approval_flow_approver",
            )
            self._require_group(approver_group_id)

            model = self.session.execute(
                select(ApprovalFlowGovernanceModel).where(
                    ApprovalFlowGovernanceModel.catalog_id == catalog_id,
                    ApprovalFlowGovernanceModel.approval_flow_id == approval_flow_id,
                )
            ).scalar_one_or_none()
            if model is None:
                self.session.add(
                    ApprovalFlowGovernanceModel(
                        catalog_id=catalog_id,
                        approval_flow_id=approval_flow_id,
                        approver_group_id=approver_group_id,
                    )
                )
            else:
                model.approver_group_id = approver_group_id
            self.session.flush()

            logger.info(
                "approval_flow_approver_set",
                extra={"approval_flow_id": approval_flow_id, "approver_group_id": approver_group_id},
            )
            return self._resolver.resolve_approval_flow(catalog_id, approval_flow_id)

    def _require_group(self, group_id: str) -> None:
        if self._identity.get_group(group_id) is None:
            raise ValidationError(f"Group not found: {group_id}", "Group not found")
