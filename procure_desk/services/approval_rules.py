"""
Business rules deciding whether an actor may approve or reject a request.

The procurement API is authoritative: when it sends ``can_approve`` for the
current actor, that value is returned as-is. The level computation below is a
fallback mirror of server policy, used only when the hint is missing.
"""

from decimal import Decimal
from loguru import logger
from typing import Dict, Any, Literal
from pydantic import BaseModel
from ..models.request import Actor, PurchaseRequest, RequestStatus, Role

# Sentinel authority that exceeds every approval level
ADMIN_AUTHORITY = 999

ROLE_AUTHORITY = {
    Role.ADMIN.value: ADMIN_AUTHORITY,
    Role.APPROVER_LEVEL_2.value: 2,
    Role.APPROVER_LEVEL_1.value: 1,
}


def authority_level(role: str | Role | None) -> int:
    """Map a role to its approval authority; roles without authority map to 0"""
    if isinstance(role, Role):
        role = role.value
    return ROLE_AUTHORITY.get(role, 0)


def derive_required_levels(amount: Decimal | float | int | str | None, threshold: float = 1000.0) -> list[int]:
    """Levels the server requires by default: level 1 up to the threshold, levels 1 and 2 above it"""
    amount = Decimal(str(amount or 0))
    if amount <= Decimal(str(threshold)):
        return [1]
    return [1, 2]


def approval_level_label(amount: Decimal | float | int | str | None, threshold: float = 1000.0) -> str:
    """Short label of the approval chain a request of this amount goes through"""
    levels = derive_required_levels(amount, threshold)
    return "Level " + " & ".join(str(level) for level in levels)


class EligibilityDecision(BaseModel):
    """Result of an eligibility check with explanation"""
    eligible: bool
    reason: str
    source: Literal["server", "local"]
    checks: Dict[str, bool]
    actor_level: int
    required_levels: list[int] = []
    pending_levels: list[int] = []
    next_level: int | None = None
    metadata: Dict[str, Any] = {}


class ApprovalRulesConfig(BaseModel):
    """Configuration for the fallback level computation (loaded from environment)"""
    level_two_threshold: float = 1000.0


class ApprovalEligibilityRules:
    """
    Pure decision function over an immutable request snapshot and an actor.

    Precedence, evaluated in order:
    1. A request that is not pending is never actionable, for any actor.
    2. A server-supplied ``can_approve`` is returned exclusively.
    3. An actor without authority (level 0) is never eligible.
    4. Otherwise the next unsatisfied required level decides; admin authority
       bypasses the ordering.

    Neither the request nor the actor is mutated.
    """

    def __init__(self, config: ApprovalRulesConfig = None):
        self.config = config or ApprovalRulesConfig()

    def required_levels(self, request: PurchaseRequest) -> list[int]:
        if request.required_approval_levels:
            return sorted(set(request.required_approval_levels))
        return derive_required_levels(request.amount, self.config.level_two_threshold)

    @staticmethod
    def satisfied_levels(request: PurchaseRequest) -> set[int]:
        return {a.approval_level for a in request.approvals if a.approved is True}

    def pending_levels(self, request: PurchaseRequest) -> list[int]:
        satisfied = self.satisfied_levels(request)
        return [level for level in self.required_levels(request) if level not in satisfied]

    def evaluate(self, request: PurchaseRequest, actor: Actor) -> EligibilityDecision:
        """
        Decide whether ``actor`` may act on ``request``.

        Args:
            request: Request snapshot (must not be None)
            actor: Current actor from the session provider

        Returns:
            EligibilityDecision with the eligible flag, reason and check details
        """
        if request is None:
            raise ValueError("request is required")

        level = authority_level(actor.role if actor else None)
        checks: Dict[str, bool] = {}

        is_pending = request.status == RequestStatus.PENDING.value
        checks["request_pending"] = is_pending
        if not is_pending:
            return self._decide(
                request, actor, False, "local", checks, level,
                reason=f"Request is {request.status}, not pending",
            )

        checks["server_hint_present"] = request.can_approve is not None
        if request.can_approve is not None:
            return self._decide(
                request, actor, request.can_approve, "server", checks, level,
                reason="Server hint: " + ("can approve" if request.can_approve else "cannot approve"),
            )

        has_authority = level > 0
        checks["actor_has_authority"] = has_authority
        if not has_authority:
            return self._decide(
                request, actor, False, "local", checks, level,
                reason=f"Role '{actor.role if actor else None}' has no approval authority",
            )

        required = self.required_levels(request)
        pending = self.pending_levels(request)
        checks["levels_outstanding"] = bool(pending)
        if not pending:
            return self._decide(
                request, actor, False, "local", checks, level,
                reason="All required approval levels are already satisfied",
                required=required, pending=pending,
            )

        next_level = min(pending)
        meets_level = level >= next_level or level == ADMIN_AUTHORITY
        checks["meets_next_level"] = meets_level
        if meets_level:
            reason = f"Actor level {level} can act on level {next_level}"
        else:
            reason = f"Awaiting level {next_level} approval (actor level {level})"

        return self._decide(
            request, actor, meets_level, "local", checks, level,
            reason=reason, required=required, pending=pending, next_level=next_level,
        )

    def _decide(
        self,
        request: PurchaseRequest,
        actor: Actor,
        eligible: bool,
        source: str,
        checks: Dict[str, bool],
        level: int,
        reason: str,
        required: list[int] | None = None,
        pending: list[int] | None = None,
        next_level: int | None = None,
    ) -> EligibilityDecision:
        logger.debug(
            "Approval eligibility decision",
            request_id=request.id,
            actor_id=actor.id if actor else None,
            eligible=eligible,
            source=source,
            checks=checks,
        )
        return EligibilityDecision(
            eligible=eligible,
            reason=reason,
            source=source,
            checks=checks,
            actor_level=level,
            required_levels=required or [],
            pending_levels=pending or [],
            next_level=next_level,
            metadata={
                "request_id": request.id,
                "status": request.status,
                "actor_role": actor.role if actor else None,
                "config": self.config.model_dump(),
            },
        )


_default_rules = ApprovalEligibilityRules()


def is_eligible(request: PurchaseRequest, actor: Actor, rules: ApprovalEligibilityRules = None) -> bool:
    """Whether approve/reject controls should be offered to ``actor`` for ``request``"""
    return (rules or _default_rules).evaluate(request, actor).eligible


def create_approval_rules(level_two_threshold: float = None) -> ApprovalEligibilityRules:
    """
    Factory function to create eligibility rules with optional overrides.

    Uses environment variables as defaults, can be overridden per call.
    """
    from ..core.config import settings

    config = ApprovalRulesConfig(
        level_two_threshold=level_two_threshold if level_two_threshold is not None else getattr(settings, 'approval_level_two_threshold', 1000.0)
    )

    return ApprovalEligibilityRules(config)
