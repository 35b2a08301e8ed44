"""
access_kernel.services.authorization -- who may do what.

Responsibility:
    One predicate per protected action, each returning an
    ``AuthorizationDecision``.  Predicates are composed from a few facts:
    admin membership, catalog ownership, resource ownership/approvership
    and parent-resource ownership, all looked up fresh on every call.

Architecture position:
    Services layer.  Reads through ``CatalogResolver`` and the identity
    provider; never writes.  Services call ``require()`` to turn a denial
    into ``PermissionDeniedError``.

Invariants:
    - Inputs are validated before any lookup; malformed ids raise
      ValidationError, never a silent deny.
    - A missing record (no governance row, no group, no resource) is a
      legitimate input and yields deny.
    - The system actor is accepted only where an operation opts in
      (revoke).
"""

from __future__ import annotations

from dataclasses import dataclass

from access_kernel.domain.approval import ApprovalRequest
from access_kernel.domain.catalog import UpdateApproverType
from access_kernel.domain.providers import IdentityProvider
from access_kernel.domain.resource import Resource
from access_kernel.domain.validation import (
    SYSTEM_USER_ID,
    require_group_id,
    require_slug,
    require_user_id,
)
from access_kernel.exceptions import PermissionDeniedError
from access_kernel.logging_config import get_logger
from access_kernel.selectors.catalog_resolver import CatalogResolver

logger = get_logger("services.authorization")


@dataclass(frozen=True)
class AuthorizationDecision:
    """Allow/deny with the reason that decided it."""

    allowed: bool
    reason: str = ""

    @classmethod
    def allow(cls, reason: str) -> AuthorizationDecision:
        return cls(True, reason)

    @classmethod
    def deny(cls, reason: str) -> AuthorizationDecision:
        return cls(False, reason)

    def __bool__(self) -> bool:
        return self.allowed


class AuthorizationEngine:
    """Authorization predicates for hub operations."""

    def __init__(
        self,
        resolver: CatalogResolver,
        identity: IdentityProvider,
        admin_group_id: str,
    ):
        self._resolver = resolver
        self._identity = identity
        self._admin_group_id = require_group_id(admin_group_id, "admin_group_id")

    # ------------------------------------------------------------------
    # Facts
    # ------------------------------------------------------------------

    def is_member(self, group_id: str | None, user_id: str) -> bool:
        if group_id is None:
            return False
        return self._identity.get_group_membership(group_id, user_id) is not None

    def is_admin(self, user_id: str) -> bool:
        user_id = require_user_id(user_id)
        return self.is_member(self._admin_group_id, user_id)

    def is_catalog_owner(self, catalog_id: str, user_id: str) -> bool:
        require_slug("catalog_id", catalog_id)
        user_id = require_user_id(user_id)
        if catalog_id not in self._resolver.registry:
            return False
        return self.is_member(self._resolver.resolve(catalog_id).owner_group_id, user_id)

    def is_resource_owner_or_approver(
        self, catalog_id: str, resource_type_id: str, resource_id: str, user_id: str,
    ) -> bool:
        user_id = require_user_id(user_id)
        resource = self._resolver.resolve_resource(catalog_id, resource_type_id, resource_id)
        if resource is None:
            return False
        if self.is_member(resource.owner_group_id, user_id):
            return True
        return self.is_member(self._effective_approver_group(resource), user_id)

    def is_parent_resource_owner(self, resource: Resource, user_id: str) -> bool:
        parent = self._resolver.resolve_parent_resource(resource)
        return parent is not None and self.is_member(parent.owner_group_id, user_id)

    def _effective_approver_group(self, resource: Resource) -> str | None:
        if resource.approver_group_id is not None:
            return resource.approver_group_id
        resource_type = self._resolver.resolve_resource_type(
            resource.catalog_id, resource.resource_type_id,
        )
        update_approver = resource_type.definition.update_approver
        if update_approver is None or update_approver.type is not UpdateApproverType.PARENT_RESOURCE:
            return None
        parent = self._resolver.resolve_parent_resource(resource)
        return parent.approver_group_id if parent is not None else None

    # ------------------------------------------------------------------
    # Approval requests
    # ------------------------------------------------------------------

    def can_submit(self, catalog_id: str, approval_flow_id: str, user_id: str) -> AuthorizationDecision:
        require_slug("catalog_id", catalog_id)
        require_slug("approval_flow_id", approval_flow_id)
        user_id = require_user_id(user_id, field_name="request_user_id")
        if self._identity.get_user(user_id) is None:
            return AuthorizationDecision.deny("unknown user")
        return AuthorizationDecision.allow("authenticated user")

    def can_decide(self, request: ApprovalRequest, user_id: str) -> AuthorizationDecision:
        """Approve and reject both require approver-group membership."""
        user_id = require_user_id(user_id)
        if self.is_member(request.approver_id, user_id):
            return AuthorizationDecision.allow("approver group member")
        return AuthorizationDecision.deny("not a member of the approver group")

    def can_revoke(self, request: ApprovalRequest, user_id: str) -> AuthorizationDecision:
        user_id = require_user_id(user_id, allow_system=True)
        if user_id == SYSTEM_USER_ID:
            return AuthorizationDecision.allow("system actor")
        if user_id == request.request_user_id:
            return AuthorizationDecision.allow("requester")
        if self.is_member(request.approver_id, user_id):
            return AuthorizationDecision.allow("approver group member")
        return AuthorizationDecision.deny("not the requester or an approver")

    def can_read_request(self, request: ApprovalRequest, user_id: str) -> AuthorizationDecision:
        user_id = require_user_id(user_id, field_name="request_user_id")
        if user_id == request.request_user_id:
            return AuthorizationDecision.allow("requester")
        if self.is_member(request.approver_id, user_id):
            return AuthorizationDecision.allow("approver group member")
        if self.is_catalog_owner(request.catalog_id, user_id):
            return AuthorizationDecision.allow("catalog owner")
        if self.is_admin(user_id):
            return AuthorizationDecision.allow("admin")
        return AuthorizationDecision.deny("not allowed to read this approval request")

    def can_list_by_flow(
        self, catalog_id: str, approval_flow_id: str, user_id: str,
    ) -> AuthorizationDecision:
        user_id = require_user_id(user_id, field_name="request_user_id")
        flow = self._resolver.resolve_approval_flow(catalog_id, approval_flow_id)
        if self.is_catalog_owner(catalog_id, user_id):
            return AuthorizationDecision.allow("catalog owner")
        if self.is_admin(user_id):
            return AuthorizationDecision.allow("admin")
        if self.is_member(flow.approver_group_id, user_id):
            return AuthorizationDecision.allow("approver group member")
        return AuthorizationDecision.deny("not allowed to list this approval flow")

    def can_list_by_requester(self, requester_id: str, user_id: str) -> AuthorizationDecision:
        requester_id = require_user_id(requester_id, field_name="requester_id")
        user_id = require_user_id(user_id, field_name="request_user_id")
        if requester_id == user_id:
            return AuthorizationDecision.allow("own requests")
        if self.is_admin(user_id):
            return AuthorizationDecision.allow("admin")
        return AuthorizationDecision.deny("not allowed to list another user's requests")

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    def can_create_resource(
        self,
        catalog_id: str,
        resource_type_id: str,
        parent_resource_id: str | None,
        user_id: str,
    ) -> AuthorizationDecision:
        user_id = require_user_id(user_id, field_name="request_user_id")
        resource_type = self._resolver.resolve_resource_type(catalog_id, resource_type_id)
        if resource_type.definition.anyone_can_create:
            return AuthorizationDecision.allow("anyone can create")
        if self.is_catalog_owner(catalog_id, user_id):
            return AuthorizationDecision.allow("catalog owner")
        parent_type_id = resource_type.definition.parent_resource_type_id
        if parent_type_id is not None and parent_resource_id is not None:
            parent = self._resolver.resolve_resource(catalog_id, parent_type_id, parent_resource_id)
            if parent is not None and self.is_member(parent.owner_group_id, user_id):
                return AuthorizationDecision.allow("parent resource owner")
        return AuthorizationDecision.deny("not allowed to create this resource type")

    def can_edit_resource(
        self, catalog_id: str, resource_type_id: str, resource_id: str, user_id: str,
    ) -> AuthorizationDecision:
        user_id = require_user_id(user_id, field_name="request_user_id")
        resource = self._resolver.resolve_resource(catalog_id, resource_type_id, resource_id)
        if resource is None:
            return AuthorizationDecision.deny("resource not found")
        if self.is_catalog_owner(catalog_id, user_id):
            return AuthorizationDecision.allow("catalog owner")
        if self.is_member(resource.owner_group_id, user_id):
            return AuthorizationDecision.allow("resource owner")
        if self.is_parent_resource_owner(resource, user_id):
            return AuthorizationDecision.allow("parent resource owner")
        return AuthorizationDecision.deny("not allowed to edit this resource")

    def can_update_resource_governance(
        self, catalog_id: str, resource_type_id: str, resource_id: str, user_id: str,
    ) -> AuthorizationDecision:
        user_id = require_user_id(user_id, field_name="request_user_id")
        resource = self._resolver.resolve_resource(catalog_id, resource_type_id, resource_id)
        if resource is None:
            return AuthorizationDecision.deny("resource not found")
        if self.is_catalog_owner(catalog_id, user_id):
            return AuthorizationDecision.allow("catalog owner")
        if self.is_parent_resource_owner(resource, user_id):
            return AuthorizationDecision.allow("parent resource owner")
        return AuthorizationDecision.deny("not allowed to change this resource's groups")

    # ------------------------------------------------------------------
    # Governance
    # ------------------------------------------------------------------

    def can_administer_catalog(self, catalog_id: str, user_id: str) -> AuthorizationDecision:
        user_id = require_user_id(user_id, field_name="request_user_id")
        self._resolver.resolve(catalog_id)
        if self.is_admin(user_id):
            return AuthorizationDecision.allow("admin")
        if self.is_catalog_owner(catalog_id, user_id):
            return AuthorizationDecision.allow("catalog owner")
        return AuthorizationDecision.deny("not an admin or catalog owner")

    def can_set_catalog_owner(self, catalog_id: str, user_id: str) -> AuthorizationDecision:
        user_id = require_user_id(user_id, field_name="request_user_id")
        self._resolver.resolve(catalog_id)
        if self.is_admin(user_id):
            return AuthorizationDecision.allow("admin")
        return AuthorizationDecision.deny("only admins may change a catalog owner")

    # ------------------------------------------------------------------

    def require(self, decision: AuthorizationDecision, user_id: str, action: str) -> None:
        """Raise PermissionDeniedError unless ``decision`` allows."""
        if decision.allowed:
            return
        logger.warning(
            "authorization_denied",
            extra={"user_id": user_id, "action": action, "reason": decision.reason},
        )
        raise PermissionDeniedError(user_id, action, decision.reason)
