"""
Events emitted by the dashboard flows to their callers.

Callers react to them without the flows knowing about views:
- the pending-approvals queue drops a settled request from its list
- the detail endpoint re-fetches the request from the server
"""

from datetime import datetime, UTC
from typing import Any, Optional
from dataclasses import dataclass


@dataclass
class ApprovalSettledEvent:
    """
    Event emitted when an approval decision was accepted by the server.

    The server response is attached as-is; callers must not derive the
    request's new state from it and re-fetch instead.
    """

    request_id: Any
    decision: str  # "approve" or "reject"
    comments: Optional[str]
    response: Any = None
    event_type: str = "ApprovalSettled"
    timestamp: Optional[str] = None

    def __post_init__(self):
        """Set timestamp if not provided"""
        if self.timestamp is None:
            self.timestamp = datetime.now(UTC).isoformat()

    @property
    def approved(self) -> bool:
        return self.decision == "approve"


@dataclass
class ProcessingProgress:
    """Partial progress of a document extraction, surfaced while polling"""

    state: str  # idle | uploading | processing | completed | failed
    request_id: Any
    job_id: Optional[str] = None
    job_status: Optional[str] = None
    attempt: int = 0
    max_attempts: int = 0
    message: Optional[str] = None
