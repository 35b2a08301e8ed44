"""
Pytest fixtures for the access hub test suite.

Provides:
- Structured logging configured once per session, LogContext cleared per test
- A fresh in-memory SQLite database per test
- In-memory identity / notification / scheduler providers
- An example catalog with recording fake handlers
- A fully wired ``AccessHub`` with catalog and flow governance in place
"""

import json
import logging
import threading
import time
from io import StringIO
from types import SimpleNamespace
from typing import Any
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

from access_config.schema import DatabaseConfig, HandlerConfig, HubConfig
from access_kernel.db.engine import build_engine, create_tables
from access_kernel.domain.approval import (
    ApproverType,
    AutoRevokeSpec,
    HandlerResult,
    InputParam,
)
from access_kernel.domain.catalog import (
    ApprovalFlowDefinition,
    ApproverSpec,
    CatalogDefinition,
    CatalogRegistry,
    InputParamSpec,
    InputParamType,
    InputResourceSpec,
    ResourceTypeDefinition,
    UpdateApprover,
)
from access_kernel.domain.clock import DeterministicClock
from access_kernel.domain.providers import Group, NotificationChannel, User
from access_kernel.domain.resource import AuditItem, AuditItemPage, ResourceOutput
from access_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from access_kernel.models.governance import (
    ApprovalFlowGovernanceModel,
    CatalogGovernanceModel,
)
from access_kernel.models.resource import ResourceModel
from access_kernel.providers.memory import (
    InMemoryIdentityProvider,
    InMemoryNotificationProvider,
    InMemorySchedulerProvider,
)
from access_kernel.services.handler_runner import HandlerRunner
from access_kernel.services.hub import AccessHub

ADMIN_GROUP_ID = "00000000-0000-4000-8000-000000000001"
EXAMPLE_CATALOG_ID = "example"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture access_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, hub):
            hub.approvals.submit(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_request_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("access_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database with the hub schema."""
    eng = build_engine("sqlite:///:memory:")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    sess = Session(bind=engine, expire_on_commit=False)
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


# =============================================================================
# People and providers
# =============================================================================


@pytest.fixture
def people():
    """User and group ids used across tests."""
    return SimpleNamespace(
        requester=str(uuid4()),
        approver=str(uuid4()),
        catalog_owner=str(uuid4()),
        admin=str(uuid4()),
        outsider=str(uuid4()),
        resource_owner=str(uuid4()),
        resource_approver=str(uuid4()),
        admins=ADMIN_GROUP_ID,
        approvers=str(uuid4()),
        catalog_owners=str(uuid4()),
        resource_owners=str(uuid4()),
        resource_approvers=str(uuid4()),
    )


@pytest.fixture
def identity(people):
    provider = InMemoryIdentityProvider()
    for name in (
        "requester", "approver", "catalog_owner", "admin",
        "outsider", "resource_owner", "resource_approver",
    ):
        user_id = getattr(people, name)
        provider.add_user(User(user_id=user_id, user_name=name, email=f"{name}@example.com"))

    provider.add_group(Group(group_id=people.admins, group_name="admins"))
    provider.add_group(
        Group(
            group_id=people.approvers,
            group_name="approvers",
            approval_request_notifications=(
                NotificationChannel("ch-approvers", "email", {"to": "approvers@example.com"}),
            ),
        )
    )
    provider.add_group(
        Group(
            group_id=people.catalog_owners,
            group_name="catalog-owners",
            group_member_notifications=(
                NotificationChannel("ch-owners", "slack", {"channel": "#owners"}),
            ),
        )
    )
    provider.add_group(Group(group_id=people.resource_owners, group_name="resource-owners"))
    provider.add_group(
        Group(
            group_id=people.resource_approvers,
            group_name="resource-approvers",
            approval_request_notifications=(
                NotificationChannel("ch-resource-approvers", "email", {"to": "ra@example.com"}),
            ),
        )
    )

    provider.add_membership(people.admins, people.admin)
    provider.add_membership(people.approvers, people.approver)
    provider.add_membership(people.catalog_owners, people.catalog_owner)
    provider.add_membership(people.resource_owners, people.resource_owner)
    provider.add_membership(people.resource_approvers, people.resource_approver)
    return provider


@pytest.fixture
def notifier():
    return InMemoryNotificationProvider(channel_types=("email", "slack"))


@pytest.fixture
def scheduler():
    return InMemorySchedulerProvider()


# =============================================================================
# Example catalog
# =============================================================================


class FakeFlowHandlers:
    """Approval flow handlers that record calls and return configurable results."""

    def __init__(self):
        self.validate_result = HandlerResult.success("valid")
        self.approve_result = HandlerResult.success("access granted")
        self.revoke_result = HandlerResult.success("access removed")
        self.approve_error: Exception | None = None
        self.approve_delay = 0.0
        self.calls: list[tuple[str, Any]] = []
        self._lock = threading.Lock()

    def _record(self, name: str, request: Any) -> None:
        with self._lock:
            self.calls.append((name, request))

    def calls_to(self, name: str) -> list[Any]:
        return [request for call, request in self.calls if call == name]

    def validate(self, request):
        self._record("validate", request)
        return self.validate_result

    def approve(self, request):
        self._record("approve", request)
        if self.approve_delay:
            time.sleep(self.approve_delay)
        if self.approve_error is not None:
            raise self.approve_error
        return self.approve_result

    def revoke(self, request):
        self._record("revoke", request)
        return self.revoke_result


class FakeResourceHandlers:
    """Resource type handlers backed by a dict, shared by every example type."""

    def __init__(self):
        self.resources: dict[tuple[str, str], ResourceOutput] = {}
        self.audit_items = [
            AuditItem("user", "alice", ("admin",)),
            AuditItem("user", "bob", ("read",)),
            AuditItem("group", "ops", ("write",)),
        ]
        self.page_size = 2
        self.update_error: Exception | None = None
        self.create_error: Exception | None = None
        self.updates: list[Any] = []

    def create_resource(self, request):
        if self.create_error is not None:
            raise self.create_error
        resource_id = request.name.lower().replace(" ", "-")
        output = ResourceOutput(resource_id, request.name, dict(request.params))
        self.resources[(request.resource_type_id, resource_id)] = output
        return output

    def get_resource(self, resource_type_id, resource_id):
        return self.resources.get((resource_type_id, resource_id))

    def update_resource(self, request):
        if self.update_error is not None:
            raise self.update_error
        current = self.resources[(request.resource_type_id, request.resource_id)]
        output = ResourceOutput(
            request.resource_id, current.name, {**current.params, **request.params},
        )
        self.resources[(request.resource_type_id, request.resource_id)] = output
        self.updates.append(request)
        return output

    def delete_resource(self, resource_type_id, resource_id):
        self.resources.pop((resource_type_id, resource_id), None)

    def list_audit_items(self, resource_type_id, resource_id, pagination_token):
        start = int(pagination_token or 0)
        end = start + self.page_size
        next_token = str(end) if end < len(self.audit_items) else None
        return AuditItemPage(tuple(self.audit_items[start:end]), next_token)


@pytest.fixture
def flow_handlers():
    return FakeFlowHandlers()


@pytest.fixture
def resource_handlers():
    return FakeResourceHandlers()


@pytest.fixture
def example_catalog(flow_handlers, resource_handlers):
    return CatalogDefinition(
        id=EXAMPLE_CATALOG_ID,
        name="Example",
        description="Catalog used by the test suite",
        approval_flows=(
            ApprovalFlowDefinition(
                id="grant",
                name="Grant access",
                handlers=flow_handlers,
                input_params=(
                    InputParamSpec("reason", "Reason"),
                    InputParamSpec("days", "Days", InputParamType.NUMBER, required=False),
                ),
                approver=ApproverSpec(ApproverType.APPROVAL_FLOW),
                auto_revoke=AutoRevokeSpec(enabled=True, max_duration="P7D"),
            ),
            ApprovalFlowDefinition(
                id="role-access",
                name="Role access",
                handlers=flow_handlers,
                input_resources=(InputResourceSpec("role"),),
                approver=ApproverSpec(ApproverType.RESOURCE, "role"),
            ),
            ApprovalFlowDefinition(
                id="escalate",
                name="Escalation",
                handlers=flow_handlers,
                approver=ApproverSpec(ApproverType.REQUEST_SPECIFIED),
                enable_revoke=False,
            ),
        ),
        resource_types=(
            ResourceTypeDefinition(
                id="account",
                name="Account",
                handlers=resource_handlers,
                is_creatable=True,
                is_deletable=True,
                owner_management=True,
                approver_management=True,
            ),
            ResourceTypeDefinition(
                id="role",
                name="Role",
                handlers=resource_handlers,
                is_creatable=True,
                is_updatable=True,
                is_deletable=True,
                owner_management=True,
                approver_management=True,
                parent_resource_type_id="account",
                update_approver=UpdateApprover(),
            ),
            ResourceTypeDefinition(
                id="note",
                name="Note",
                handlers=resource_handlers,
                is_creatable=True,
                is_updatable=True,
                anyone_can_create=True,
            ),
        ),
    )


@pytest.fixture
def registry(example_catalog):
    return CatalogRegistry([example_catalog])


# =============================================================================
# Hub
# =============================================================================


@pytest.fixture
def hub_config():
    return HubConfig(
        config_id="test",
        admin_group_id=ADMIN_GROUP_ID,
        database=DatabaseConfig(url="sqlite:///:memory:"),
        handlers=HandlerConfig(timeout_seconds=2.0, max_workers=4),
    )


@pytest.fixture
def runner(hub_config):
    handler_runner = HandlerRunner(
        timeout_seconds=hub_config.handlers.timeout_seconds,
        max_workers=hub_config.handlers.max_workers,
    )
    yield handler_runner
    handler_runner.shutdown(wait=True)


@pytest.fixture
def governance_rows(session, people):
    """Catalog owner and approval flow approver assignments for the example catalog."""
    session.add(CatalogGovernanceModel(catalog_id=EXAMPLE_CATALOG_ID, owner_group_id=people.catalog_owners))
    session.add(
        ApprovalFlowGovernanceModel(
            catalog_id=EXAMPLE_CATALOG_ID,
            approval_flow_id="grant",
            approver_group_id=people.approvers,
        )
    )
    session.flush()


@pytest.fixture
def hub(
    session, hub_config, registry, identity, notifier, scheduler, runner,
    deterministic_clock, governance_rows,
):
    return AccessHub(
        session,
        hub_config,
        registry,
        identity,
        notifier,
        scheduler,
        runner,
        clock=deterministic_clock,
        auto_commit=True,
    )


@pytest.fixture
def make_resource(session, resource_handlers):
    """Register a resource both with the fake handler store and the hub."""

    def _make(
        resource_type_id: str,
        resource_id: str,
        *,
        parent_resource_id: str | None = None,
        owner_group_id: str | None = None,
        approver_group_id: str | None = None,
        params: dict | None = None,
    ) -> ResourceModel:
        resource_handlers.resources[(resource_type_id, resource_id)] = ResourceOutput(
            resource_id, resource_id.title(), dict(params or {}),
        )
        model = ResourceModel(
            catalog_id=EXAMPLE_CATALOG_ID,
            resource_type_id=resource_type_id,
            resource_id=resource_id,
            name=resource_id.title(),
            parent_resource_id=parent_resource_id,
            owner_group_id=owner_group_id,
            approver_group_id=approver_group_id,
            audit_notifications=[],
        )
        session.add(model)
        session.flush()
        return model

    return _make


@pytest.fixture
def account_and_role(make_resource, people):
    """An account with owner/approver groups and a role under it."""
    make_resource(
        "account", "prod",
        owner_group_id=people.resource_owners,
        approver_group_id=people.resource_approvers,
    )
    make_resource(
        "role", "admin-role",
        parent_resource_id="prod",
        params={"policy": "read-only"},
    )
    return SimpleNamespace(account_id="prod", role_id="admin-role")


@pytest.fixture
def submit_grant(hub, people):
    """Submit a request against the ``grant`` flow."""

    def _submit(
        reason: str = "on-call",
        requester: str | None = None,
        auto_revoke_duration: str | None = None,
    ):
        return hub.approvals.submit(
            EXAMPLE_CATALOG_ID,
            "grant",
            requester or people.requester,
            input_params=[InputParam("reason", reason)],
            request_comment="please",
            auto_revoke_duration=auto_revoke_duration,
        )

    return _submit
