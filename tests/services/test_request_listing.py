"""
Tests for approval request listing by flow and by requester.

Covers keyset pagination (newest first), date range filters, limit
bounds, malformed tokens and who may list what.
"""

from datetime import datetime, timedelta, timezone

import pytest

from access_kernel.domain.approval import DateRange, InputParam
from access_kernel.exceptions import PermissionDeniedError, ValidationError


@pytest.fixture
def five_requests(hub, people, deterministic_clock):
    """Five grant requests one minute apart; returned oldest first."""
    requests = []
    for i in range(5):
        requests.append(
            hub.approvals.submit(
                "example", "grant", people.requester,
                input_params=[InputParam("reason", f"r{i}")],
            )
        )
        deterministic_clock.advance(60)
    return requests


def collect_pages(list_page, limit):
    ids, token, pages = [], None, 0
    while True:
        page = list_page(limit=limit, pagination_token=token)
        ids.extend(r.request_id for r in page.items)
        pages += 1
        token = page.pagination_token
        if token is None:
            return ids, pages


class TestListByApprovalFlow:

    def test_newest_first_across_pages(self, hub, people, five_requests):
        def list_page(**kwargs):
            return hub.approvals.list_by_approval_flow("example", "grant", people.approver, **kwargs)

        ids, pages = collect_pages(list_page, limit=2)

        assert ids == [r.request_id for r in reversed(five_requests)]
        assert pages == 3

    def test_exact_page_has_no_token(self, hub, people, five_requests):
        page = hub.approvals.list_by_approval_flow("example", "grant", people.approver, limit=5)
        assert len(page.items) == 5
        assert page.pagination_token is None

    def test_date_range_is_inclusive(self, hub, people, five_requests):
        window = DateRange(
            start=five_requests[1].request_date,
            end=five_requests[3].request_date,
        )

        page = hub.approvals.list_by_approval_flow(
            "example", "grant", people.catalog_owner, date_range=window,
        )

        assert [r.request_id for r in page.items] == [
            five_requests[3].request_id,
            five_requests[2].request_id,
            five_requests[1].request_id,
        ]

    def test_other_flows_excluded(self, hub, people, five_requests):
        hub.approvals.submit("example", "escalate", people.requester, approver_id=people.approvers)
        page = hub.approvals.list_by_approval_flow("example", "grant", people.admin)
        assert {r.approval_flow_id for r in page.items} == {"grant"}

    @pytest.mark.parametrize("reader", ["approver", "catalog_owner", "admin"])
    def test_allowed_listers(self, hub, people, five_requests, reader):
        page = hub.approvals.list_by_approval_flow("example", "grant", getattr(people, reader))
        assert len(page.items) == 5

    def test_requester_cannot_list_flow(self, hub, people, five_requests):
        with pytest.raises(PermissionDeniedError):
            hub.approvals.list_by_approval_flow("example", "grant", people.requester)


class TestListByRequester:

    def test_own_requests(self, hub, people, five_requests):
        def list_page(**kwargs):
            return hub.approvals.list_by_requester(people.requester, **kwargs)

        ids, _ = collect_pages(list_page, limit=3)

        assert ids == [r.request_id for r in reversed(five_requests)]

    def test_other_users_requests_are_private(self, hub, people, five_requests):
        with pytest.raises(PermissionDeniedError):
            hub.approvals.list_by_requester(people.requester, caller_user_id=people.approver)

    def test_admin_may_list_for_anyone(self, hub, people, five_requests):
        page = hub.approvals.list_by_requester(people.requester, caller_user_id=people.admin)
        assert len(page.items) == 5

    def test_empty(self, hub, people):
        page = hub.approvals.list_by_requester(people.outsider)
        assert page.items == ()
        assert page.pagination_token is None


class TestListingInput:

    @pytest.mark.parametrize("limit", [0, -1, 201, True, 2.5])
    def test_limit_bounds(self, hub, people, limit):
        with pytest.raises(ValidationError):
            hub.approvals.list_by_requester(people.requester, limit=limit)

    @pytest.mark.parametrize("token", ["not-base64!", "e30=", "eyJyZXF1ZXN0X2RhdGUiOiAieCJ9"])
    def test_malformed_token(self, hub, people, token):
        with pytest.raises(ValidationError):
            hub.approvals.list_by_requester(people.requester, pagination_token=token)

    def test_date_range_must_be_ordered(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        with pytest.raises(ValidationError):
            DateRange(start=now, end=now - timedelta(seconds=1))

    def test_date_range_must_be_aware(self):
        with pytest.raises(ValidationError):
            DateRange(start=datetime(2024, 1, 1), end=datetime(2024, 1, 2))
