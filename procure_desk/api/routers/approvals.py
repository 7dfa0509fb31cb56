from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel
from ..deps import DecisionResponse, PendingApprovalResponse, PendingApprovalsResponse, get_actor, get_client
from ...core.errors import CommentsRequiredError, ProcureDeskError
from ...models.request import Actor
from ...services.api_client import ProcurementApiClient
from ...services.approval_flow import ApprovalSubmissionFlow, DecisionType, SubmissionOutcome
from ...services.approval_rules import EligibilityDecision, create_approval_rules
from ...services.events import ApprovalSettledEvent
from ...services.pending_approvals import PendingApprovalsQueue

router = APIRouter(prefix="/approvals", tags=["approvals"])


class DecisionRequest(BaseModel):
    """Request body for POST /approvals/{request_id}"""
    decision: DecisionType
    comments: str | None = None


@router.get("/pending", response_model=PendingApprovalsResponse)
async def list_pending(
    client: ProcurementApiClient = Depends(get_client),
    actor: Actor = Depends(get_actor),
):
    """
    Pending approvals for the caller, each annotated with whether the caller
    may act on it and which approval level is next.
    """
    queue = PendingApprovalsQueue(client, actor)
    items = await queue.refresh()
    return PendingApprovalsResponse(
        total=len(items),
        actionable=len(queue.actionable()),
        requests=[
            PendingApprovalResponse(
                request=item.request,
                eligible=item.eligible,
                decision_source=item.eligibility.source,
                next_level=item.eligibility.next_level,
                approval_level_label=item.approval_level_label,
                reason=item.eligibility.reason,
            )
            for item in items
        ],
    )


@router.get("/{request_id}/eligibility", response_model=EligibilityDecision)
async def eligibility(
    request_id: str,
    client: ProcurementApiClient = Depends(get_client),
    actor: Actor = Depends(get_actor),
):
    request = await client.get_request(request_id)
    return create_approval_rules().evaluate(request, actor)


@router.post("/{request_id}", response_model=DecisionResponse)
async def decide(
    request_id: str,
    body: DecisionRequest,
    client: ProcurementApiClient = Depends(get_client),
    actor: Actor = Depends(get_actor),
):
    """
    Approve or reject a request on behalf of the caller.

    The request is re-fetched once the server accepts the decision; the
    local snapshot is never patched.
    """
    request = await client.get_request(request_id)
    refreshed = {}

    async def on_settled(event: ApprovalSettledEvent):
        # Decision is already recorded upstream
        try:
            refreshed["request"] = await client.get_request(event.request_id)
        except ProcureDeskError as e:
            logger.warning("Could not re-fetch settled request", request_id=event.request_id, error=e.message)

    flow = ApprovalSubmissionFlow(client, request, actor, on_settled=on_settled)
    flow.begin(body.decision)
    flow.comments = body.comments or ""
    result = await flow.submit()

    if result.outcome == SubmissionOutcome.VALIDATION_FAILED:
        raise CommentsRequiredError(result.message)

    if result.outcome == SubmissionOutcome.ERROR:
        logger.warning("Decision rejected upstream", request_id=request_id, status_code=result.status_code)
        return JSONResponse(status_code=result.status_code or 502, content={"detail": result.message})

    return DecisionResponse(
        request_id=result.request_id,
        decision=result.decision.value,
        comments=result.comments,
        request=refreshed.get("request"),
    )
