"""
Tests for ResourceService -- resource CRUD and owner/approver governance.
"""

import pytest

from access_kernel.exceptions import (
    ConflictError,
    PendingUpdateConflictError,
    PermissionDeniedError,
    ProviderError,
    ResourceNotFoundError,
    ValidationError,
)


class TestCreateResource:

    def test_catalog_owner_creates(self, hub, people, resource_handlers, captured_logs):
        resource = hub.resources.create_resource(
            "example", "account", people.catalog_owner, "Prod Account",
            params={"region": "eu"},
            owner_group_id=people.resource_owners,
            approver_group_id=people.resource_approvers,
        )

        assert resource.resource_id == "prod-account"
        assert resource.name == "Prod Account"
        assert resource.owner_group_id == people.resource_owners
        assert resource.approver_group_id == people.resource_approvers
        assert resource.pending_update is None
        assert resource.audit_notifications == ()
        assert ("account", "prod-account") in resource_handlers.resources
        assert hub.resolver.resolve_resource("example", "account", "prod-account") == resource
        assert any(r["message"] == "resource_created" for r in captured_logs())

    def test_outsider_cannot_create(self, hub, people, resource_handlers):
        with pytest.raises(PermissionDeniedError):
            hub.resources.create_resource("example", "account", people.outsider, "Prod")
        assert resource_handlers.resources == {}

    def test_anyone_can_create_notes(self, hub, people):
        note = hub.resources.create_resource("example", "note", people.outsider, "Todo")
        assert note.resource_id == "todo"

    def test_parent_owner_creates_child(self, hub, people, account_and_role):
        role = hub.resources.create_resource(
            "example", "role", people.resource_owner, "Reader",
            parent_resource_id=account_and_role.account_id,
        )
        assert role.parent_resource_id == "prod"

    def test_child_requires_parent(self, hub, people):
        with pytest.raises(ValidationError, match="requires a parent"):
            hub.resources.create_resource("example", "role", people.catalog_owner, "Reader")

    def test_parent_must_exist(self, hub, people):
        with pytest.raises(ResourceNotFoundError):
            hub.resources.create_resource(
                "example", "role", people.catalog_owner, "Reader", parent_resource_id="ghost",
            )

    def test_top_level_type_rejects_parent(self, hub, people, account_and_role):
        with pytest.raises(ValidationError, match="no parent resource type"):
            hub.resources.create_resource(
                "example", "account", people.catalog_owner, "Other",
                parent_resource_id=account_and_role.account_id,
            )

    def test_duplicate_resource(self, hub, people):
        hub.resources.create_resource("example", "note", people.requester, "Todo")
        with pytest.raises(ConflictError):
            hub.resources.create_resource("example", "note", people.requester, "Todo")

    def test_handler_failure_registers_nothing(self, hub, people, resource_handlers):
        resource_handlers.create_error = RuntimeError("quota")

        with pytest.raises(ProviderError, match="quota"):
            hub.resources.create_resource("example", "note", people.requester, "Todo")
        assert hub.resolver.resolve_resource("example", "note", "todo") is None

    def test_invalid_group_id(self, hub, people):
        with pytest.raises(ValidationError):
            hub.resources.create_resource(
                "example", "account", people.catalog_owner, "Prod", owner_group_id="owners",
            )


class TestGetResource:

    def test_record_and_handler_output(self, hub, account_and_role):
        resource, output = hub.resources.get_resource("example", "role", "admin-role")

        assert resource.parent_resource_id == "prod"
        assert output.params == {"policy": "read-only"}

    def test_handler_reports_nothing(self, hub, account_and_role, resource_handlers):
        del resource_handlers.resources[("role", "admin-role")]
        resource, output = hub.resources.get_resource("example", "role", "admin-role")
        assert resource.resource_id == "admin-role"
        assert output is None

    def test_unknown(self, hub):
        with pytest.raises(ResourceNotFoundError):
            hub.resources.get_resource("example", "role", "ghost")


class TestUpdateResourceParams:

    def test_direct_update(self, hub, people, make_resource):
        make_resource("note", "todo", params={"text": "a", "done": False})

        output = hub.resources.update_resource_params(
            "example", "note", "todo", {"done": True}, people.catalog_owner,
        )

        assert output.params == {"text": "a", "done": True}

    def test_direct_update_requires_edit_rights(self, hub, people, make_resource, resource_handlers):
        make_resource("note", "todo")
        with pytest.raises(PermissionDeniedError):
            hub.resources.update_resource_params("example", "note", "todo", {"x": 1}, people.outsider)
        assert resource_handlers.updates == []

    def test_not_updatable(self, hub, people, account_and_role):
        with pytest.raises(ValidationError, match="not updatable"):
            hub.resources.update_resource_params(
                "example", "account", "prod", {"x": 1}, people.catalog_owner,
            )

    def test_handler_failure(self, hub, people, make_resource, resource_handlers):
        make_resource("note", "todo")
        resource_handlers.update_error = RuntimeError("locked")
        with pytest.raises(ProviderError):
            hub.resources.update_resource_params(
                "example", "note", "todo", {"x": 1}, people.catalog_owner,
            )


class TestUpdateGovernance:

    def test_catalog_owner_sets_groups(self, hub, people, account_and_role):
        resource = hub.resources.update_resource_governance(
            "example", "account", "prod", people.catalog_owner,
            owner_group_id=people.approvers,
        )
        assert resource.owner_group_id == people.approvers
        assert resource.approver_group_id == people.resource_approvers

    def test_parent_owner_sets_child_groups(self, hub, people, account_and_role):
        resource = hub.resources.update_resource_governance(
            "example", "role", "admin-role", people.resource_owner,
            approver_group_id=people.approvers,
        )
        assert resource.approver_group_id == people.approvers

    def test_clear_group(self, hub, people, account_and_role):
        resource = hub.resources.update_resource_governance(
            "example", "account", "prod", people.catalog_owner, approver_group_id=None,
        )
        assert resource.approver_group_id is None
        assert resource.owner_group_id == people.resource_owners

    def test_resource_owner_cannot_change_own_groups(self, hub, people, account_and_role):
        with pytest.raises(PermissionDeniedError):
            hub.resources.update_resource_governance(
                "example", "account", "prod", people.resource_owner,
                owner_group_id=people.approvers,
            )

    def test_type_without_owner_management(self, hub, people, make_resource):
        make_resource("note", "todo")
        with pytest.raises(ValidationError, match="owner management"):
            hub.resources.update_resource_governance(
                "example", "note", "todo", people.catalog_owner, owner_group_id=people.approvers,
            )

    def test_unknown_resource(self, hub, people):
        with pytest.raises(ResourceNotFoundError):
            hub.resources.update_resource_governance(
                "example", "account", "ghost", people.catalog_owner, owner_group_id=None,
            )


class TestDeleteResource:

    def test_delete(self, hub, people, account_and_role, resource_handlers):
        hub.resources.delete_resource("example", "role", "admin-role", people.resource_owner)

        assert hub.resolver.resolve_resource("example", "role", "admin-role") is None
        assert ("role", "admin-role") not in resource_handlers.resources

    def test_delete_removes_audit_events(self, hub, people, account_and_role, scheduler):
        subscription = hub.audit_notifications.create_audit_notification(
            "example", "account", "prod", people.catalog_owner,
            "email", {"to": "audit@example.com"}, "0 9 * * 1",
        )
        assert scheduler.get(subscription.id) is not None

        hub.resources.delete_resource("example", "account", "prod", people.catalog_owner)

        assert scheduler.get(subscription.id) is None

    def test_scheduler_failure_is_logged(
        self, hub, people, account_and_role, scheduler, captured_logs,
    ):
        hub.audit_notifications.create_audit_notification(
            "example", "account", "prod", people.catalog_owner,
            "email", {"to": "audit@example.com"}, "0 9 * * 1",
        )
        scheduler.fail_on("delete", RuntimeError("scheduler offline"))

        hub.resources.delete_resource("example", "account", "prod", people.catalog_owner)

        assert hub.resolver.resolve_resource("example", "account", "prod") is None
        assert any(
            r["message"] == "audit_notification_event_delete_failed" for r in captured_logs()
        )

    def test_not_deletable(self, hub, people, make_resource):
        make_resource("note", "todo")
        with pytest.raises(ValidationError, match="not deletable"):
            hub.resources.delete_resource("example", "note", "todo", people.catalog_owner)

    def test_outsider_cannot_delete(self, hub, people, account_and_role):
        with pytest.raises(PermissionDeniedError):
            hub.resources.delete_resource("example", "account", "prod", people.outsider)

    def test_pending_update_blocks_delete(self, hub, people, account_and_role, resource_handlers):
        hub.resource_updates.update_resource_params_with_approval(
            "example", "role", "admin-role", {"policy": "admin"}, people.requester,
        )

        with pytest.raises(PendingUpdateConflictError):
            hub.resources.delete_resource("example", "role", "admin-role", people.resource_owner)
        assert ("role", "admin-role") in resource_handlers.resources
