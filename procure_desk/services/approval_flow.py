"""
Approval submission flow: collect an approve/reject decision and submit it.

    idle -> collecting_decision -> submitting -> settled
                     ^                  |
                     +---- error -------+

A failed submission lands back in ``collecting_decision`` with the error
message set and the comments kept, so the actor can retry as-is. Nothing is
retried automatically and the request snapshot is never updated locally;
the ``on_settled`` callback decides how to refresh it.
"""

import inspect
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union
from loguru import logger
from pydantic import BaseModel
from ..core.errors import (
    ApiError,
    ApprovalNotPermittedError,
    FlowStateError,
    ProcureDeskError,
    SessionExpiredError,
)
from ..models.request import Actor, PurchaseRequest
from .approval_rules import ApprovalEligibilityRules, create_approval_rules
from .error_messages import DEFAULT_APPROVAL_ERROR, extract_error_message
from .events import ApprovalSettledEvent

COMMENTS_REQUIRED_MESSAGE = "Comments are required when rejecting a request."


class FlowState(str, Enum):
    IDLE = "idle"
    COLLECTING_DECISION = "collecting_decision"
    SUBMITTING = "submitting"
    SETTLED = "settled"


class DecisionType(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class SubmissionOutcome(str, Enum):
    SETTLED = "settled"
    ERROR = "error"
    VALIDATION_FAILED = "validation_failed"


class SubmissionResult(BaseModel):
    outcome: SubmissionOutcome
    request_id: Any
    decision: DecisionType
    comments: str | None = None
    message: str | None = None
    status_code: int | None = None  # Upstream status on error
    response: Any = None


SettledCallback = Callable[[ApprovalSettledEvent], Union[None, Awaitable[None]]]


class ApprovalSubmissionFlow:
    """
    Drives one actor's decision on one request.

    Args:
        client: Object exposing ``approve_request(request_id, approved, comments)``
        request: Request snapshot the decision is about
        actor: Current actor from the session provider
        rules: Eligibility rules (defaults to settings-driven rules)
        on_settled: Called with an ApprovalSettledEvent after the server accepts
    """

    def __init__(
        self,
        client,
        request: PurchaseRequest,
        actor: Actor,
        rules: ApprovalEligibilityRules = None,
        on_settled: Optional[SettledCallback] = None,
    ):
        self.client = client
        self.request = request
        self.actor = actor
        self.rules = rules or create_approval_rules()
        self.on_settled = on_settled

        self.state = FlowState.IDLE
        self.decision: DecisionType | None = None
        self.comments: str = ""
        self.error: str | None = None

    @property
    def request_id(self) -> Any:
        return self.request.id

    @property
    def is_submitting(self) -> bool:
        return self.state == FlowState.SUBMITTING

    @property
    def comments_required(self) -> bool:
        return self.decision == DecisionType.REJECT

    @property
    def can_submit(self) -> bool:
        """Whether the submit control should be enabled"""
        if self.state != FlowState.COLLECTING_DECISION:
            return False
        return not (self.comments_required and not self.comments.strip())

    def begin(self, decision: DecisionType | str) -> None:
        """Enter collecting_decision for ``decision``; clears comments and any previous error"""
        if self.state in (FlowState.SUBMITTING, FlowState.SETTLED):
            raise FlowStateError(f"Cannot start a new decision while {self.state.value}")

        eligibility = self.rules.evaluate(self.request, self.actor)
        if not eligibility.eligible:
            raise ApprovalNotPermittedError(
                "You are not allowed to act on this request.",
                suggestion=eligibility.reason,
            )

        self.decision = DecisionType(decision)
        self.comments = ""
        self.error = None
        self.state = FlowState.COLLECTING_DECISION

    def cancel(self) -> None:
        """Close the decision surface; ignored while a submission is in flight"""
        if self.state == FlowState.SUBMITTING:
            return
        self.state = FlowState.IDLE
        self.decision = None
        self.comments = ""
        self.error = None

    def _result(
        self,
        outcome: SubmissionOutcome,
        comments: str | None,
        message: str | None = None,
        status_code: int | None = None,
        response: Any = None,
    ) -> SubmissionResult:
        return SubmissionResult(
            outcome=outcome,
            request_id=self.request_id,
            decision=self.decision,
            comments=comments,
            message=message,
            status_code=status_code,
            response=response,
        )

    async def submit(self) -> SubmissionResult:
        """
        Submit the collected decision with exactly one network call.

        Raises:
            FlowStateError: when no decision is being collected or one is in flight
            SessionExpiredError: when the session could not be refreshed
        """
        if self.state == FlowState.SUBMITTING:
            raise FlowStateError("An approval is already being submitted for this request.")
        if self.state != FlowState.COLLECTING_DECISION:
            raise FlowStateError("Choose approve or reject before submitting.")

        comments = self.comments.strip() or None
        if self.comments_required and comments is None:
            self.error = COMMENTS_REQUIRED_MESSAGE
            logger.info("Rejection blocked: comments missing", request_id=self.request_id)
            return self._result(SubmissionOutcome.VALIDATION_FAILED, None, message=self.error)

        approved = self.decision == DecisionType.APPROVE
        self.state = FlowState.SUBMITTING
        self.error = None

        try:
            response = await self.client.approve_request(self.request_id, approved, comments)
        except SessionExpiredError:
            self.state = FlowState.COLLECTING_DECISION
            raise
        except ProcureDeskError as e:
            body = e.body if isinstance(e, ApiError) else None
            self.error = extract_error_message(body, DEFAULT_APPROVAL_ERROR)
            self.state = FlowState.COLLECTING_DECISION
            logger.warning(
                "Approval submission failed",
                request_id=self.request_id,
                decision=self.decision.value,
                error=self.error,
            )
            return self._result(SubmissionOutcome.ERROR, comments, message=self.error, status_code=e.status_code)

        self.state = FlowState.SETTLED
        logger.info(
            "Approval submission settled",
            request_id=self.request_id,
            decision=self.decision.value,
            actor_id=self.actor.id if self.actor else None,
        )

        if self.on_settled is not None:
            event = ApprovalSettledEvent(
                request_id=self.request_id,
                decision=self.decision.value,
                comments=comments,
                response=response,
            )
            outcome = self.on_settled(event)
            if inspect.isawaitable(outcome):
                await outcome

        return self._result(SubmissionOutcome.SETTLED, comments, response=response)
