"""
access_kernel.services.approval_request_service -- Approval request lifecycle.

Responsibility:
    Drives one approval request from submission through decision to action
    outcome and, optionally, revocation:

        submit : (new)                   -> validationFailed | pending
        approve: pending                 -> approved -> approvedAction{Succeeded,Failed}
        reject : pending                 -> rejected
        revoke : approvedActionSucceeded -> revoked  -> revokedAction{Succeeded,Failed}

    Also serves reads: get by id and paginated listing by flow or requester.

Architecture position:
    Kernel > Services.  Composes the catalog resolver, the authorization
    engine, the handler runner, the notification service and the scheduler
    provider.  Hub-internal flows (resource update) plug in through
    ``ApprovalLifecycleHook``.

Invariants enforced:
    - Every status change is a single conditional UPDATE
      (``WHERE request_id = :id AND status = :expected``).  A zero row
      count is a Conflict; nothing is overwritten and nothing is retried.
    - Phase fields are written together with the status that owns them,
      so a stored row always matches exactly one request variant.
    - With ``auto_commit=True`` the intermediate approved/revoked state is
      committed before the action handler runs.
    - Handler failures are recorded on the request, never raised.
    - Notifications and auto-revoke scheduling run only after the change
      they report is committed: at once with ``auto_commit=True``,
      otherwise when the caller commits through ``session_scope()`` or
      ``AccessHub.commit()``.  A rollback drops them.
    - Notification and auto-revoke scheduling failures are logged only.

Failure modes:
    - ValidationError on malformed input, schema mismatch, bad auto-revoke
      duration, unresolvable approver group, or revoke on a flow with
      revoke disabled.
    - PermissionDeniedError when the actor may not perform the action.
    - NotFoundError for unknown catalogs, flows, resources and requests.
    - ApprovalRequestStatusConflictError when the request is not in the
      status the transition requires.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any, Protocol
from uuid import UUID, uuid4

from sqlalchemy import update
from sqlalchemy.orm import Session

from access_kernel.domain.approval import (
    ApprovalRequest,
    ApprovalRequestStatus,
    ApprovedActionSucceededRequest,
    ApprovedRequest,
    ApproverType,
    DateRange,
    HandlerResult,
    InputParam,
    InputResource,
    Page,
    PendingRequest,
    ValidationFailedRequest,
    approval_request_from_fields,
    approval_request_to_fields,
    is_valid_transition,
    validate_auto_revoke_duration,
)
from access_kernel.domain.catalog import (
    ApprovalFlowView,
    ValidationInput,
    check_input_params,
    check_input_resources,
)
from access_kernel.domain.clock import Clock, SystemClock
from access_kernel.domain.providers import SchedulerProvider
from access_kernel.domain.scheduling import auto_revoke_event_id, build_auto_revoke_event
from access_kernel.domain.validation import (
    require_group_id,
    require_request_id,
    require_slug,
    require_text,
    require_user_id,
)
from access_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    ApprovalRequestStatusConflictError,
    ResourceNotFoundError,
    ValidationError,
)
from access_kernel.logging_config import LogContext, get_logger
from access_kernel.models.approval_request import ApprovalRequestModel
from access_kernel.selectors.approval_request_selector import ApprovalRequestSelector
from access_kernel.selectors.catalog_resolver import CatalogResolver
from access_kernel.services.authorization import AuthorizationEngine
from access_kernel.services.base import BaseService
from access_kernel.services.handler_runner import HandlerRunner
from access_kernel.services.notification_service import NotificationService

logger = get_logger("services.approval_request")

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200


class ApprovalLifecycleHook(Protocol):
    """
    Hub-internal extension point for flows whose bookkeeping lives in hub
    storage.  Hooks run on the caller's thread with the caller's session.
    """

    def applies_to(self, catalog_id: str, approval_flow_id: str) -> bool:
        ...

    def before_approve_action(self, request: ApprovedRequest) -> HandlerResult | None:
        """Return a result to skip the approve handler, or None to run it."""
        ...

    def after_decision(self, request: ApprovalRequest) -> None:
        """Called once the approve outcome or the rejection is recorded."""
        ...


class ApprovalRequestService(BaseService):
    """Approval request state machine with CAS-guarded transitions."""

    def __init__(
        self,
        session: Session,
        resolver: CatalogResolver,
        authorization: AuthorizationEngine,
        runner: HandlerRunner,
        notifications: NotificationService,
        scheduler: SchedulerProvider,
        clock: Clock | None = None,
        hooks: Iterable[ApprovalLifecycleHook] = (),
        auto_commit: bool = False,
        default_list_limit: int = DEFAULT_LIST_LIMIT,
        max_list_limit: int = MAX_LIST_LIMIT,
    ):
        super().__init__(session, auto_commit=auto_commit)
        self._resolver = resolver
        self._authz = authorization
        self._runner = runner
        self._notifications = notifications
        self._scheduler = scheduler
        self._clock = clock or SystemClock()
        self._hooks: list[ApprovalLifecycleHook] = list(hooks)
        self._selector = ApprovalRequestSelector(session)
        self._default_list_limit = default_list_limit
        self._max_list_limit = max_list_limit

    def add_hook(self, hook: ApprovalLifecycleHook) -> None:
        self._hooks.append(hook)

    # ==================================================================
    # Submit
    # ==================================================================

    def submit(
        self,
        catalog_id: str,
        approval_flow_id: str,
        request_user_id: str,
        input_params: Sequence[InputParam] = (),
        input_resources: Sequence[InputResource] = (),
        request_comment: str = "",
        auto_revoke_duration: str | None = None,
        approver_id: str | None = None,
    ) -> ApprovalRequest:
        """Validate and record a new request; returns it as pending or validationFailed.

        ``approver_id`` is only accepted (and then required) for flows whose
        approver type is ``requestSpecified``.
        """
        request, flow = self.prepare_submission(
            catalog_id,
            approval_flow_id,
            request_user_id,
            input_params=input_params,
            input_resources=input_resources,
            request_comment=request_comment,
            auto_revoke_duration=auto_revoke_duration,
            approver_id=approver_id,
        )
        return self.record_submission(request, flow)

    def prepare_submission(
        self,
        catalog_id: str,
        approval_flow_id: str,
        request_user_id: str,
        input_params: Sequence[InputParam] = (),
        input_resources: Sequence[InputResource] = (),
        request_comment: str = "",
        auto_revoke_duration: str | None = None,
        approver_id: str | None = None,
    ) -> tuple[ApprovalRequest, ApprovalFlowView]:
        """
        Check a submission and run its validate handler without writing anything.

        Returns the request in its post-validation status together with the
        resolved flow.  Callers that must store other rows in the same
        transaction write those first and then call ``record_submission``.
        """
        require_slug("catalog_id", catalog_id)
        require_slug("approval_flow_id", approval_flow_id)
        request_user_id = require_user_id(request_user_id, field_name="request_user_id")
        request_comment = require_text("request_comment", request_comment)

        with LogContext.bind(actor_id=request_user_id, catalog_id=catalog_id):
            flow = self._resolver.resolve_approval_flow(catalog_id, approval_flow_id)
            self._authz.require(
                self._authz.can_submit(catalog_id, approval_flow_id, request_user_id),
                request_user_id, "submit_approval_request",
            )

            params = check_input_params(flow.definition, input_params)
            resources = check_input_resources(flow.definition, input_resources)
            for item in resources:
                if self._resolver.resolve_resource(
                    catalog_id, item.resource_type_id, item.resource_id,
                ) is None:
                    raise ResourceNotFoundError(catalog_id, item.resource_type_id, item.resource_id)

            if auto_revoke_duration is not None:
                validate_auto_revoke_duration(auto_revoke_duration, flow.definition.auto_revoke)

            approver_type = flow.definition.approver.type
            resolved_approver_id = self._resolve_approver(flow, resources, approver_id)

            validation_result = self._runner.run(
                "validate",
                flow.handlers.validate,
                ValidationInput(
                    catalog_id=catalog_id,
                    approval_flow_id=approval_flow_id,
                    request_user_id=request_user_id,
                    approver_id=resolved_approver_id,
                    input_params={p.id: p.value for p in params},
                    input_resources={r.resource_type_id: r.resource_id for r in resources},
                    request_comment=request_comment,
                    auto_revoke_duration=auto_revoke_duration,
                ),
            )

            variant = PendingRequest if validation_result.is_success else ValidationFailedRequest
            request = variant(
                request_id=uuid4(),
                catalog_id=catalog_id,
                approval_flow_id=approval_flow_id,
                request_user_id=request_user_id,
                approver_type=approver_type,
                approver_id=resolved_approver_id,
                input_params=params,
                input_resources=resources,
                request_date=self._clock.now(),
                request_comment=request_comment,
                auto_revoke_duration=auto_revoke_duration,
                validation_handler_result=validation_result,
            )
            return request, flow

    def record_submission(self, request: ApprovalRequest, flow: ApprovalFlowView) -> ApprovalRequest:
        """Store a prepared request; its approvers are notified once it is committed."""
        with LogContext.bind(actor_id=request.request_user_id, catalog_id=request.catalog_id):
            self.session.add(ApprovalRequestModel.from_dto(request))
            self._commit()

            logger.info(
                "approval_request_submitted",
                extra={
                    "request_id": str(request.request_id),
                    "approval_flow_id": request.approval_flow_id,
                    "status": request.status.value,
                    "approver_id": request.approver_id,
                },
            )
            self._after_commit(lambda: self._notifications.notify_approval_request(request, flow))
            return request

    def _resolve_approver(
        self,
        flow: ApprovalFlowView,
        resources: Sequence[InputResource],
        approver_id: str | None,
    ) -> str:
        spec = flow.definition.approver
        if spec.type is ApproverType.REQUEST_SPECIFIED:
            if approver_id is None:
                raise ValidationError(
                    f"Approval flow {flow.catalog_id}/{flow.id} requires an approver id",
                    "Approver is required",
                )
            return require_group_id(approver_id, "approver_id")

        if approver_id is not None:
            raise ValidationError(
                f"Approval flow {flow.catalog_id}/{flow.id} does not accept an approver id",
                "Approver cannot be specified for this approval flow",
            )

        if spec.type is ApproverType.APPROVAL_FLOW:
            if flow.approver_group_id is None:
                raise ValidationError(
                    f"Approval flow {flow.catalog_id}/{flow.id} has no approver group",
                    "Approver group is not set for this approval flow",
                )
            return flow.approver_group_id

        # ApproverType.RESOURCE
        target = next((r for r in resources if r.resource_type_id == spec.resource_type_id), None)
        if target is None:
            raise ValidationError(
                f"Approval flow {flow.catalog_id}/{flow.id} needs an input resource "
                f"of type {spec.resource_type_id} to resolve its approver",
                "Approver resource is missing",
            )
        resource = self._resolver.resolve_resource(
            flow.catalog_id, target.resource_type_id, target.resource_id,
        )
        if resource is None or resource.approver_group_id is None:
            raise ValidationError(
                f"Resource {target.resource_type_id}/{target.resource_id} has no approver group",
                "Approver group is not set for the resource",
            )
        return resource.approver_group_id

    # ==================================================================
    # Approve / reject
    # ==================================================================

    def approve(
        self,
        catalog_id: str,
        approval_flow_id: str,
        request_id: UUID | str,
        user_id_who_approved: str,
        approved_comment: str = "",
    ) -> ApprovalRequest:
        """pending -> approved -> approvedActionSucceeded | approvedActionFailed."""
        request_uuid = require_request_id(request_id)
        user_id = require_user_id(user_id_who_approved, field_name="user_id_who_approved")
        approved_comment = require_text("approved_comment", approved_comment)

        with LogContext.bind(request_id=str(request_uuid), actor_id=user_id, catalog_id=catalog_id):
            flow, current = self._load_for_flow(catalog_id, approval_flow_id, request_uuid)
            self._authz.require(self._authz.can_decide(current, user_id), user_id, "approve_approval_request")

            approved_values = {
                "approved_date": self._clock.now(),
                "user_id_who_approved": user_id,
                "approved_comment": approved_comment,
            }
            self._transition(
                request_uuid,
                ApprovalRequestStatus.PENDING,
                ApprovalRequestStatus.APPROVED,
                approved_values,
            )
            self._commit()
            approved = self._advance(current, ApprovalRequestStatus.APPROVED, approved_values)

            hook = self._hook_for(catalog_id, approval_flow_id)
            handler_result = hook.before_approve_action(approved) if hook else None
            if handler_result is None:
                handler_result = self._runner.run("approve", flow.handlers.approve, approved)

            outcome = (
                ApprovalRequestStatus.APPROVED_ACTION_SUCCEEDED
                if handler_result.is_success
                else ApprovalRequestStatus.APPROVED_ACTION_FAILED
            )
            self._transition(
                request_uuid,
                ApprovalRequestStatus.APPROVED,
                outcome,
                {"approved_handler_result": handler_result.to_dict()},
            )
            final = self._advance(approved, outcome, {"approved_handler_result": handler_result})
            if hook:
                hook.after_decision(final)
            self._commit()

            logger.info(
                "approval_request_approved",
                extra={
                    "request_id": str(request_uuid),
                    "status": final.status.value,
                    "handler_success": handler_result.is_success,
                },
            )

            def publish() -> None:
                if isinstance(final, ApprovedActionSucceededRequest) and final.auto_revoke_duration:
                    self._schedule_auto_revoke(final)
                self._notifications.notify_approval_request(final, flow)

            self._after_commit(publish)
            return final

    def reject(
        self,
        catalog_id: str,
        approval_flow_id: str,
        request_id: UUID | str,
        user_id_who_rejected: str,
        reject_comment: str = "",
    ) -> ApprovalRequest:
        """pending -> rejected.  No handler runs."""
        request_uuid = require_request_id(request_id)
        user_id = require_user_id(user_id_who_rejected, field_name="user_id_who_rejected")
        reject_comment = require_text("reject_comment", reject_comment)

        with LogContext.bind(request_id=str(request_uuid), actor_id=user_id, catalog_id=catalog_id):
            flow, current = self._load_for_flow(catalog_id, approval_flow_id, request_uuid)
            self._authz.require(self._authz.can_decide(current, user_id), user_id, "reject_approval_request")

            rejected_values = {
                "rejected_date": self._clock.now(),
                "user_id_who_rejected": user_id,
                "reject_comment": reject_comment,
            }
            self._transition(
                request_uuid,
                ApprovalRequestStatus.PENDING,
                ApprovalRequestStatus.REJECTED,
                rejected_values,
            )
            rejected = self._advance(current, ApprovalRequestStatus.REJECTED, rejected_values)
            hook = self._hook_for(catalog_id, approval_flow_id)
            if hook:
                hook.after_decision(rejected)
            self._commit()

            logger.info("approval_request_rejected", extra={"request_id": str(request_uuid)})
            self._after_commit(lambda: self._notifications.notify_approval_request(rejected, flow))
            return rejected

    # ==================================================================
    # Revoke
    # ==================================================================

    def revoke(
        self,
        catalog_id: str,
        approval_flow_id: str,
        request_id: UUID | str,
        user_id_who_revoked: str,
        revoked_comment: str = "",
    ) -> ApprovalRequest:
        """approvedActionSucceeded -> revoked -> revokedActionSucceeded | revokedActionFailed."""
        request_uuid = require_request_id(request_id)
        user_id = require_user_id(
            user_id_who_revoked, allow_system=True, field_name="user_id_who_revoked",
        )
        revoked_comment = require_text("revoked_comment", revoked_comment)

        with LogContext.bind(request_id=str(request_uuid), actor_id=user_id, catalog_id=catalog_id):
            flow, current = self._load_for_flow(catalog_id, approval_flow_id, request_uuid)
            if not flow.definition.enable_revoke:
                raise ValidationError(
                    f"Revoke is disabled for approval flow {catalog_id}/{approval_flow_id}",
                    "This approval flow does not support revoke",
                )
            self._authz.require(self._authz.can_revoke(current, user_id), user_id, "revoke_approval_request")

            revoked_values = {
                "revoked_date": self._clock.now(),
                "user_id_who_revoked": user_id,
                "revoked_comment": revoked_comment,
            }
            self._transition(
                request_uuid,
                ApprovalRequestStatus.APPROVED_ACTION_SUCCEEDED,
                ApprovalRequestStatus.REVOKED,
                revoked_values,
            )
            self._commit()
            revoked = self._advance(current, ApprovalRequestStatus.REVOKED, revoked_values)

            handler_result = self._runner.run("revoke", flow.handlers.revoke, revoked)
            outcome = (
                ApprovalRequestStatus.REVOKED_ACTION_SUCCEEDED
                if handler_result.is_success
                else ApprovalRequestStatus.REVOKED_ACTION_FAILED
            )
            self._transition(
                request_uuid,
                ApprovalRequestStatus.REVOKED,
                outcome,
                {"revoked_handler_result": handler_result.to_dict()},
            )
            self._commit()
            final = self._advance(revoked, outcome, {"revoked_handler_result": handler_result})

            logger.info(
                "approval_request_revoked",
                extra={
                    "request_id": str(request_uuid),
                    "status": final.status.value,
                    "handler_success": handler_result.is_success,
                },
            )

            def publish() -> None:
                if final.auto_revoke_duration:
                    self._delete_auto_revoke(request_uuid)
                self._notifications.notify_approval_request(final, flow)

            self._after_commit(publish)
            return final

    # ==================================================================
    # Reads
    # ==================================================================

    def get_request(self, request_id: UUID | str, request_user_id: str) -> ApprovalRequest:
        request_uuid = require_request_id(request_id)
        user_id = require_user_id(request_user_id, field_name="request_user_id")
        request = self._selector.get(request_uuid)
        if request is None:
            raise ApprovalRequestNotFoundError(str(request_uuid))
        self._authz.require(self._authz.can_read_request(request, user_id), user_id, "get_approval_request")
        return request

    def list_by_approval_flow(
        self,
        catalog_id: str,
        approval_flow_id: str,
        request_user_id: str,
        date_range: DateRange | None = None,
        limit: int | None = None,
        pagination_token: str | None = None,
    ) -> Page:
        user_id = require_user_id(request_user_id, field_name="request_user_id")
        self._authz.require(
            self._authz.can_list_by_flow(catalog_id, approval_flow_id, user_id),
            user_id, "list_approval_requests_by_flow",
        )
        return self._selector.list_by_approval_flow(
            catalog_id,
            approval_flow_id,
            limit=self._check_limit(limit),
            date_range=date_range,
            pagination_token=pagination_token,
        )

    def list_by_requester(
        self,
        request_user_id: str,
        date_range: DateRange | None = None,
        limit: int | None = None,
        pagination_token: str | None = None,
        caller_user_id: str | None = None,
    ) -> Page:
        """List a requester's own requests.  Admins may pass ``caller_user_id``."""
        requester = require_user_id(request_user_id, field_name="request_user_id")
        caller = requester if caller_user_id is None else require_user_id(
            caller_user_id, field_name="caller_user_id",
        )
        self._authz.require(
            self._authz.can_list_by_requester(requester, caller),
            caller, "list_approval_requests_by_requester",
        )
        return self._selector.list_by_requester(
            requester,
            limit=self._check_limit(limit),
            date_range=date_range,
            pagination_token=pagination_token,
        )

    def _check_limit(self, limit: int | None) -> int:
        if limit is None:
            return self._default_list_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= self._max_list_limit:
            raise ValidationError(
                f"limit must be an integer within 1..{self._max_list_limit}, got {limit!r}",
                "Invalid limit",
            )
        return limit

    # ==================================================================
    # Internals
    # ==================================================================

    def _load_for_flow(
        self, catalog_id: str, approval_flow_id: str, request_id: UUID,
    ) -> tuple[ApprovalFlowView, ApprovalRequest]:
        flow = self._resolver.resolve_approval_flow(catalog_id, approval_flow_id)
        request = self._selector.get(request_id)
        if (
            request is None
            or request.catalog_id != catalog_id
            or request.approval_flow_id != approval_flow_id
        ):
            raise ApprovalRequestNotFoundError(str(request_id))
        return flow, request

    def _hook_for(self, catalog_id: str, approval_flow_id: str) -> ApprovalLifecycleHook | None:
        return next((h for h in self._hooks if h.applies_to(catalog_id, approval_flow_id)), None)

    def _transition(
        self,
        request_id: UUID,
        expected: ApprovalRequestStatus,
        target: ApprovalRequestStatus,
        values: dict[str, Any],
    ) -> None:
        """Compare-and-swap the status; raises Conflict when the row is not in ``expected``."""
        if not is_valid_transition(expected, target):
            raise ValueError(f"Invalid approval request transition {expected.value} -> {target.value}")

        result = self.session.execute(
            update(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.request_id == request_id,
                ApprovalRequestModel.status == expected.value,
            )
            .values(status=target.value, **values)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            actual = self._selector.get_status(request_id)
            logger.warning(
                "approval_request_transition_conflict",
                extra={
                    "request_id": str(request_id),
                    "expected_status": expected.value,
                    "target_status": target.value,
                    "actual_status": actual,
                },
            )
            raise ApprovalRequestStatusConflictError(str(request_id), expected.value, actual)

        logger.info(
            "approval_request_transitioned",
            extra={
                "request_id": str(request_id),
                "from_status": expected.value,
                "to_status": target.value,
            },
        )

    @staticmethod
    def _advance(
        request: ApprovalRequest, status: ApprovalRequestStatus, values: dict[str, Any],
    ) -> ApprovalRequest:
        fields = approval_request_to_fields(request)
        fields.update(values)
        return approval_request_from_fields(status, fields)

    def _schedule_auto_revoke(self, request: ApprovedActionSucceededRequest) -> None:
        event = build_auto_revoke_event(request)
        try:
            self._scheduler.create(event)
        except Exception as exc:
            logger.error(
                "auto_revoke_schedule_failed",
                extra={
                    "request_id": str(request.request_id),
                    "event_id": event.id,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return
        logger.info(
            "auto_revoke_scheduled",
            extra={
                "request_id": str(request.request_id),
                "event_id": event.id,
                "fire_at": event.schedule_pattern.time.isoformat(),
            },
        )

    def _delete_auto_revoke(self, request_id: UUID) -> None:
        event_id = auto_revoke_event_id(request_id)
        try:
            self._scheduler.delete(event_id)
        except Exception as exc:
            logger.error(
                "auto_revoke_delete_failed",
                extra={
                    "request_id": str(request_id),
                    "event_id": event_id,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return
        logger.info("auto_revoke_deleted", extra={"request_id": str(request_id), "event_id": event_id})
