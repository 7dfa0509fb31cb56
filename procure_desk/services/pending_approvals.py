"""
Pending-approvals queue: the list view's consumer of the authorization engine.

Requests are never patched locally after a decision; a settled request is
dropped from the list and the next refresh brings the server's truth.
"""

from typing import Any
from loguru import logger
from pydantic import BaseModel
from ..models.request import Actor, PurchaseRequest
from .approval_rules import ApprovalEligibilityRules, EligibilityDecision, approval_level_label, create_approval_rules
from .events import ApprovalSettledEvent


class PendingApprovalItem(BaseModel):
    request: PurchaseRequest
    eligibility: EligibilityDecision
    approval_level_label: str

    @property
    def eligible(self) -> bool:
        return self.eligibility.eligible


class PendingApprovalsQueue:
    def __init__(self, client, actor: Actor, rules: ApprovalEligibilityRules = None):
        self.client = client
        self.actor = actor
        self.rules = rules or create_approval_rules()
        self.items: list[PendingApprovalItem] = []
        self.last_settled: ApprovalSettledEvent | None = None

    def _annotate(self, request: PurchaseRequest) -> PendingApprovalItem:
        return PendingApprovalItem(
            request=request,
            eligibility=self.rules.evaluate(request, self.actor),
            approval_level_label=approval_level_label(request.amount, self.rules.config.level_two_threshold),
        )

    async def refresh(self) -> list[PendingApprovalItem]:
        requests = await self.client.get_pending_approvals()
        self.items = [self._annotate(r) for r in requests]
        logger.info(
            "Pending approvals loaded",
            total=len(self.items),
            actionable=sum(1 for item in self.items if item.eligible),
        )
        return self.items

    def actionable(self) -> list[PendingApprovalItem]:
        return [item for item in self.items if item.eligible]

    def get(self, request_id: Any) -> PendingApprovalItem | None:
        for item in self.items:
            if str(item.request.id) == str(request_id):
                return item
        return None

    def handle_settled(self, event: ApprovalSettledEvent) -> None:
        """``on_settled`` callback for ApprovalSubmissionFlow: drop the request from the list"""
        self.items = [item for item in self.items if str(item.request.id) != str(event.request_id)]
        self.last_settled = event
        logger.info("Removed settled request from pending list", request_id=event.request_id, decision=event.decision)
