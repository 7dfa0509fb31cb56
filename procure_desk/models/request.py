from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from pydantic import BaseModel, Field, field_validator, model_validator


class Role(str, Enum):
    STAFF = "staff"
    APPROVER_LEVEL_1 = "approver_level_1"
    APPROVER_LEVEL_2 = "approver_level_2"
    FINANCE = "finance"
    ADMIN = "admin"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Actor(BaseModel):
    """Identity making a decision, as supplied by the session provider"""
    id: int | str | None = None
    role: str = Role.STAFF.value
    username: str | None = None
    email: str | None = None

    model_config = {"frozen": True}


class Approval(BaseModel):
    """One decision record on a purchase request"""
    approval_level: int = Field(ge=1)
    approved: bool
    comments: str | None = None
    approver: Any = None
    created_at: datetime | None = None

    model_config = {"frozen": True}


class PurchaseRequest(BaseModel):
    """
    Snapshot of a purchase request as returned by the procurement API.

    ``can_approve`` is the server's per-actor hint; ``None`` means the server
    omitted it and the client falls back to its own level computation.
    """
    id: int | str
    title: str = ""
    description: str = ""
    amount: Decimal = Decimal("0")
    priority: str = Priority.MEDIUM.value
    status: str = RequestStatus.PENDING.value
    vendor_name: str | None = None
    vendor_email: str | None = None
    created_by: Any = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    required_approval_levels: list[int] | None = None
    approvals: list[Approval] = Field(default_factory=list)
    can_approve: bool | None = None

    model_config = {"frozen": True}

    @field_validator("amount", mode="before")
    @classmethod
    def _blank_amount_is_zero(cls, value):
        if value in (None, ""):
            return Decimal("0")
        return value

    @field_validator("approvals", mode="before")
    @classmethod
    def _null_approvals_is_empty(cls, value):
        return value or []


class ApprovalSubmission(BaseModel):
    """Body of ``POST /api/requests/{id}/approve/``"""
    approved: bool
    comments: str | None = None

    @field_validator("comments")
    @classmethod
    def _strip_comments(cls, value):
        if value is None:
            return None
        return value.strip() or None

    @model_validator(mode="after")
    def _rejection_needs_comments(self):
        if not self.approved and not self.comments:
            raise ValueError("Comments are required when rejecting a request.")
        return self
