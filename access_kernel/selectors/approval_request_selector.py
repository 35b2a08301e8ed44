"""
Module: access_kernel.selectors.approval_request_selector
Responsibility: Read access to approval requests: get by id, and keyset
    paginated listing by approval flow or by requester.

Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - Listing order is ``request_date`` descending, then ``request_id``
      descending, so the keyset cursor is stable under concurrent inserts
      of newer requests.
    - ``limit`` is clamped to 1..max_limit by the caller; the selector
      fetches ``limit + 1`` rows to decide whether a next page exists.

Failure modes:
    - ValidationError on a pagination token that does not decode.
"""

from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.sql import Select

from access_kernel.domain.approval import ApprovalRequest, DateRange, Page
from access_kernel.exceptions import ValidationError
from access_kernel.models.approval_request import ApprovalRequestModel
from access_kernel.selectors.base import BaseSelector


def encode_pagination_token(request_date: datetime, request_id: UUID) -> str:
    raw = json.dumps({"request_date": request_date.isoformat(), "request_id": str(request_id)})
    return base64.urlsafe_b64encode(raw.encode()).decode()


def decode_pagination_token(token: str) -> tuple[datetime, UUID]:
    try:
        data = json.loads(base64.urlsafe_b64decode(token.encode()).decode())
        request_date = datetime.fromisoformat(data["request_date"])
        request_id = UUID(data["request_id"])
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError):
        raise ValidationError(
            f"Malformed pagination token: {token!r}", "Invalid pagination token",
        ) from None
    if request_date.tzinfo is None:
        raise ValidationError("Pagination token date is not timezone-aware", "Invalid pagination token")
    return request_date, request_id


class ApprovalRequestSelector(BaseSelector):
    """Queries over ``approval_requests``."""

    def get(self, request_id: UUID) -> ApprovalRequest | None:
        model = self.session.execute(
            select(ApprovalRequestModel).where(ApprovalRequestModel.request_id == request_id)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def get_status(self, request_id: UUID) -> str | None:
        return self.session.execute(
            select(ApprovalRequestModel.status).where(ApprovalRequestModel.request_id == request_id)
        ).scalar_one_or_none()

    def list_by_approval_flow(
        self,
        catalog_id: str,
        approval_flow_id: str,
        *,
        limit: int,
        date_range: DateRange | None = None,
        pagination_token: str | None = None,
    ) -> Page:
        stmt = select(ApprovalRequestModel).where(
            ApprovalRequestModel.catalog_id == catalog_id,
            ApprovalRequestModel.approval_flow_id == approval_flow_id,
        )
        return self._page(stmt, limit, date_range, pagination_token)

    def list_by_requester(
        self,
        request_user_id: str,
        *,
        limit: int,
        date_range: DateRange | None = None,
        pagination_token: str | None = None,
    ) -> Page:
        stmt = select(ApprovalRequestModel).where(
            ApprovalRequestModel.request_user_id == request_user_id,
        )
        return self._page(stmt, limit, date_range, pagination_token)

    def _page(
        self,
        stmt: Select,
        limit: int,
        date_range: DateRange | None,
        pagination_token: str | None,
    ) -> Page:
        if date_range is not None:
            stmt = stmt.where(
                ApprovalRequestModel.request_date >= date_range.start,
                ApprovalRequestModel.request_date <= date_range.end,
            )
        if pagination_token is not None:
            after_date, after_id = decode_pagination_token(pagination_token)
            stmt = stmt.where(
                or_(
                    ApprovalRequestModel.request_date < after_date,
                    and_(
                        ApprovalRequestModel.request_date == after_date,
                        ApprovalRequestModel.request_id < after_id,
                    ),
                )
            )
        stmt = stmt.order_by(
            ApprovalRequestModel.request_date.desc(),
            ApprovalRequestModel.request_id.desc(),
        ).limit(limit + 1)

        models = list(self.session.execute(stmt).scalars())
        has_more = len(models) > limit
        models = models[:limit]
        token = None
        if has_more:
            last = models[-1]
            token = encode_pagination_token(last.request_date, last.request_id)
        return Page(items=tuple(m.to_dto() for m in models), pagination_token=token)
