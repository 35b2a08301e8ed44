"""
Tests for resource updates that need approval.

A role's parameter change is submitted to the system catalog's
resource-update flow, approved by the parent account's approver group, and
tracked on the role as its single pending update until a decision is made
or the update is canceled.
"""

from uuid import UUID, uuid4

import pytest
from sqlalchemy import select

from access_kernel.domain.approval import ApprovalRequestStatus, ApproverType
from access_kernel.exceptions import (
    PendingUpdateConflictError,
    PermissionDeniedError,
    ResourceNotFoundError,
    ValidationError,
)
from access_kernel.models.approval_request import ApprovalRequestModel
from access_kernel.services.notification_service import APPROVAL_REQUEST_EVENT
from access_kernel.services.resource_update_service import PENDING_UPDATE_GONE_MESSAGE

S = ApprovalRequestStatus


@pytest.fixture
def propose(hub, people, account_and_role):
    def _propose(params=None, user=None):
        return hub.resource_updates.update_resource_params_with_approval(
            "example", "role", account_and_role.role_id,
            params or {"policy": "admin"},
            user or people.requester,
            comment="need more access",
        )

    return _propose


def pending_of(hub, resource_id="admin-role"):
    return hub.resolver.resolve_resource("example", "role", resource_id).pending_update


class TestProposeUpdate:

    def test_submits_to_system_flow(self, hub, propose, people):
        request_id = propose()

        assert isinstance(request_id, UUID)
        request = hub.approvals.get_request(request_id, people.requester)
        assert request.status is S.PENDING
        assert request.catalog_id == "system"
        assert request.approval_flow_id == "resource-update"
        assert request.approver_type is ApproverType.REQUEST_SPECIFIED
        assert request.approver_id == people.resource_approvers
        assert request.input_params_by_id()["resourceId"] == "admin-role"

    def test_records_pending_update(self, hub, propose, people, deterministic_clock):
        request_id = propose({"policy": "admin", "ttl": 3})

        pending = pending_of(hub)
        assert pending.approval_request_id == request_id
        assert pending.request_user_id == people.requester
        assert pending.requested_at == deterministic_clock.now()
        assert dict(pending.proposed_params) == {"policy": "admin", "ttl": 3}

    def test_one_pending_update_at_a_time(self, propose, people):
        first = propose()

        with pytest.raises(PendingUpdateConflictError) as exc_info:
            propose({"policy": "other"}, user=people.outsider)

        assert exc_info.value.pending_request_id == str(first)

    def test_losing_proposal_stores_no_request(self, hub, propose, session, notifier, monkeypatch):
        """A rival proposal claims the role after validation but before the pending-update write."""
        prepare = hub.approvals.prepare_submission
        rival_ids = []

        def prepare_then_let_rival_in(*args, **kwargs):
            prepared = prepare(*args, **kwargs)
            if not rival_ids:
                rival_ids.append(None)
                rival_ids[0] = propose({"policy": "rival"})
            return prepared

        monkeypatch.setattr(hub.approvals, "prepare_submission", prepare_then_let_rival_in)

        with pytest.raises(PendingUpdateConflictError):
            propose()
        session.rollback()

        (rival_id,) = rival_ids
        system_requests = session.execute(
            select(ApprovalRequestModel.request_id, ApprovalRequestModel.status)
            .where(ApprovalRequestModel.catalog_id == "system")
        ).all()
        assert [tuple(row) for row in system_requests] == [(rival_id, "pending")]
        assert pending_of(hub).approval_request_id == rival_id
        notified = {
            m.property["request"]["request_id"]
            for m in notifier.messages_of_type(APPROVAL_REQUEST_EVENT)
        }
        assert notified == {str(rival_id)}

    def test_type_without_update_approval(self, hub, people, make_resource):
        make_resource("note", "n1")
        with pytest.raises(ValidationError):
            hub.resource_updates.update_resource_params_with_approval(
                "example", "note", "n1", {"text": "x"}, people.requester,
            )

    def test_unknown_resource(self, hub, people, account_and_role):
        with pytest.raises(ResourceNotFoundError):
            hub.resource_updates.update_resource_params_with_approval(
                "example", "role", "ghost", {"policy": "x"}, people.requester,
            )

    def test_parent_without_approver_group(self, hub, people, make_resource):
        make_resource("account", "dev")
        make_resource("role", "dev-role", parent_resource_id="dev")

        with pytest.raises(ValidationError):
            hub.resource_updates.update_resource_params_with_approval(
                "example", "role", "dev-role", {"policy": "x"}, people.requester,
            )
        assert pending_of(hub, "dev-role") is None

    def test_failed_validation_sets_no_pending_update(
        self, hub, propose, people, resource_handlers,
    ):
        """The plugin no longer knows the resource, so the system validate handler fails."""
        del resource_handlers.resources[("role", "admin-role")]

        request_id = propose()

        request = hub.approvals.get_request(request_id, people.requester)
        assert request.status is S.VALIDATION_FAILED
        assert "Resource not found" in request.validation_handler_result.message
        assert pending_of(hub) is None

    def test_params_must_be_a_mapping(self, hub, people, account_and_role):
        with pytest.raises(ValidationError):
            hub.resource_updates.update_resource_params_with_approval(
                "example", "role", "admin-role", ["policy"], people.requester,
            )

    def test_resource_service_delegates(self, hub, people, account_and_role):
        """update_resource_params on an approval-governed type returns the request id."""
        result = hub.resources.update_resource_params(
            "example", "role", "admin-role", {"policy": "admin"}, people.requester,
        )

        assert isinstance(result, UUID)
        assert pending_of(hub).approval_request_id == result


class TestDecision:

    def test_approve_applies_update_and_clears_pending(
        self, hub, propose, people, resource_handlers,
    ):
        request_id = propose()

        final = hub.approvals.approve(
            "system", "resource-update", request_id, people.resource_approver,
        )

        assert final.status is S.APPROVED_ACTION_SUCCEEDED
        assert resource_handlers.resources[("role", "admin-role")].params["policy"] == "admin"
        assert pending_of(hub) is None

    def test_reject_clears_pending_without_update(self, hub, propose, people, resource_handlers):
        request_id = propose()

        hub.approvals.reject("system", "resource-update", request_id, people.resource_approver)

        assert resource_handlers.resources[("role", "admin-role")].params["policy"] == "read-only"
        assert resource_handlers.updates == []
        assert pending_of(hub) is None

    def test_failed_update_clears_pending(self, hub, propose, people, resource_handlers):
        resource_handlers.update_error = RuntimeError("backend rejected policy")
        request_id = propose()

        final = hub.approvals.approve(
            "system", "resource-update", request_id, people.resource_approver,
        )

        assert final.status is S.APPROVED_ACTION_FAILED
        assert "backend rejected policy" in final.approved_handler_result.message
        assert pending_of(hub) is None

    def test_only_parent_approvers_decide(self, hub, propose, people):
        request_id = propose()
        for user in (people.approver, people.resource_owner, people.requester):
            with pytest.raises(PermissionDeniedError):
                hub.approvals.approve("system", "resource-update", request_id, user)

    def test_resource_updates_cannot_be_revoked(self, hub, propose, people):
        request_id = propose()
        hub.approvals.approve("system", "resource-update", request_id, people.resource_approver)

        with pytest.raises(ValidationError):
            hub.approvals.revoke("system", "resource-update", request_id, people.requester)

    def test_new_proposal_after_decision(self, hub, propose, people):
        first = propose()
        hub.approvals.reject("system", "resource-update", first, people.resource_approver)

        second = propose({"policy": "write"})

        assert second != first
        assert pending_of(hub).approval_request_id == second


class TestCancel:

    def test_requester_cancels(self, hub, propose, people):
        request_id = propose()

        hub.resource_updates.cancel_pending_resource_update(
            "example", "role", "admin-role", request_id, people.requester,
        )

        assert pending_of(hub) is None
        # the approval request itself is left untouched
        assert hub.approvals.get_request(request_id, people.requester).status is S.PENDING

    def test_approving_a_canceled_update_applies_nothing(
        self, hub, propose, people, resource_handlers,
    ):
        request_id = propose()
        hub.resource_updates.cancel_pending_resource_update(
            "example", "role", "admin-role", request_id, people.requester,
        )

        final = hub.approvals.approve(
            "system", "resource-update", request_id, people.resource_approver,
        )

        assert final.status is S.APPROVED_ACTION_FAILED
        assert final.approved_handler_result.message == PENDING_UPDATE_GONE_MESSAGE
        assert resource_handlers.updates == []

    def test_superseded_update_does_not_touch_the_new_one(
        self, hub, propose, people, resource_handlers,
    ):
        old = propose()
        hub.resource_updates.cancel_pending_resource_update(
            "example", "role", "admin-role", old, people.requester,
        )
        new = propose({"policy": "write"})

        hub.approvals.approve("system", "resource-update", old, people.resource_approver)

        assert resource_handlers.updates == []
        assert pending_of(hub).approval_request_id == new

    def test_parent_owner_may_cancel(self, hub, propose, people):
        request_id = propose()

        hub.resource_updates.cancel_pending_resource_update(
            "example", "role", "admin-role", request_id, people.resource_owner,
        )

        assert pending_of(hub) is None

    def test_outsider_cannot_cancel(self, hub, propose, people):
        request_id = propose()

        with pytest.raises(PermissionDeniedError):
            hub.resource_updates.cancel_pending_resource_update(
                "example", "role", "admin-role", request_id, people.outsider,
            )
        assert pending_of(hub).approval_request_id == request_id

    def test_mismatched_request_id(self, hub, propose, people):
        propose()
        with pytest.raises(ValidationError, match="belongs to"):
            hub.resource_updates.cancel_pending_resource_update(
                "example", "role", "admin-role", uuid4(), people.requester,
            )

    def test_nothing_pending(self, hub, people, account_and_role):
        with pytest.raises(ValidationError, match="no pending update"):
            hub.resource_updates.cancel_pending_resource_update(
                "example", "role", "admin-role", uuid4(), people.requester,
            )
