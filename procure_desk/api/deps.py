import asyncio
from decimal import Decimal
from typing import Any, AsyncIterator
from fastapi import Depends, Header, HTTPException
from pydantic import BaseModel
from ..models.request import Actor, PurchaseRequest
from ..services.api_client import ProcurementApiClient
from ..services.document_pipeline import DocumentExtractionPipeline
from ..services.extraction_types import DocumentType, ExtractionResult
from ..services.form_merge import RequestFormState
from ..services.session import InMemorySessionStore


class PendingApprovalResponse(BaseModel):
    request: PurchaseRequest
    eligible: bool
    decision_source: str
    next_level: int | None = None
    approval_level_label: str
    reason: str


class PendingApprovalsResponse(BaseModel):
    total: int
    actionable: int
    requests: list[PendingApprovalResponse]


class DecisionResponse(BaseModel):
    request_id: Any
    decision: str
    comments: str | None = None
    request: PurchaseRequest | None = None  # Re-fetched from the server


class ExtractResponse(BaseModel):
    request_id: Any
    document_type: DocumentType
    job_id: str
    attempts: int = 0
    result: ExtractionResult
    file_info: dict[str, Any] = {}
    form: RequestFormState | None = None  # Present when a form was sent for merging
    total_amount: Decimal | None = None


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_client(
    authorization: str | None = Header(default=None),
    x_refresh_token: str | None = Header(default=None),
) -> AsyncIterator[ProcurementApiClient]:
    """Per-request API client built from the caller's forwarded tokens"""
    token = _bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    session = InMemorySessionStore(access_token=token, refresh_token=x_refresh_token)
    async with ProcurementApiClient(session) as client:
        yield client


async def get_actor(client: ProcurementApiClient = Depends(get_client)) -> Actor:
    actor = client.session.get_actor()
    if actor is None:
        actor = await client.get_profile()
        client.session.set_actor(actor)
    return actor


def get_sleep():
    """Sleep used between status polls (overridden in tests)"""
    return asyncio.sleep


def get_pipeline(
    client: ProcurementApiClient = Depends(get_client),
    sleep=Depends(get_sleep),
) -> DocumentExtractionPipeline:
    return DocumentExtractionPipeline(client, sleep=sleep)
