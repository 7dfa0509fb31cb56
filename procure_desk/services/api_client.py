"""
Async client for the remote procurement REST API.

Every call carries the session's bearer token. A 401 triggers exactly one
token refresh, after which the original call is retried once; when refresh is
impossible or fails the session is cleared and SessionExpiredError is raised.
"""

from typing import Any
import httpx
from loguru import logger
from ..core.config import settings
from ..core.errors import ApiError, SessionExpiredError, TransportError
from ..models.request import Actor, ApprovalSubmission, PurchaseRequest
from .extraction_types import ProcessingJob
from .session import SessionStore


def is_retryable_error(exc: Exception) -> bool:
    """Transport failures and 5xx answers are transient; everything else is final"""
    if isinstance(exc, TransportError):
        return True
    if isinstance(exc, ApiError):
        return exc.status_code >= 500
    return False


def _response_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class ProcurementApiClient:
    def __init__(
        self,
        session: SessionStore,
        base_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.session = session
        self.base_url = (base_url or settings.procurement_api_url).rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else settings.procurement_api_timeout,
        )

    async def __aenter__(self) -> "ProcurementApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ---------- transport ----------

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        token = self.session.get_access_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            return await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.RequestError as e:
            logger.warning("Procurement API unreachable", method=method, path=path, error=str(e))
            raise TransportError(f"Could not reach the procurement service: {e}") from e

    async def _refresh_access_token(self) -> None:
        refresh_token = self.session.get_refresh_token()
        if not refresh_token:
            self.session.clear()
            raise SessionExpiredError("Your session has expired.")

        try:
            response = await self._client.post(settings.token_refresh_path, json={"refresh": refresh_token})
        except httpx.RequestError as e:
            self.session.clear()
            raise SessionExpiredError("Your session has expired.") from e

        access = None
        if response.is_success:
            body = _response_body(response)
            access = body.get("access") if isinstance(body, dict) else None

        if not access:
            logger.warning("Token refresh failed, clearing session", status_code=response.status_code)
            self.session.clear()
            raise SessionExpiredError("Your session has expired.")

        self.session.set_access_token(access)
        logger.info("Access token refreshed")

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        response = await self._send(method, path, **kwargs)

        if response.status_code == 401:
            logger.info("Access token rejected, attempting refresh", method=method, path=path)
            await self._refresh_access_token()
            response = await self._send(method, path, **kwargs)

        if response.is_error:
            body = _response_body(response)
            logger.warning(
                "Procurement API error",
                method=method,
                path=path,
                status_code=response.status_code,
            )
            raise ApiError(response.status_code, body)

        return _response_body(response)

    # ---------- identity ----------

    async def get_profile(self) -> Actor:
        body = await self._request("GET", "/api/auth/profile/")
        return Actor.model_validate(body)

    # ---------- requests & approvals ----------

    async def get_request(self, request_id: int | str) -> PurchaseRequest:
        body = await self._request("GET", f"/api/requests/{request_id}/")
        return PurchaseRequest.model_validate(body)

    async def get_pending_approvals(self) -> list[PurchaseRequest]:
        body = await self._request("GET", "/api/pending-approvals/")
        if isinstance(body, dict):
            body = body.get("results") or []
        return [PurchaseRequest.model_validate(item) for item in body or []]

    async def approve_request(self, request_id: int | str, approved: bool, comments: str | None) -> Any:
        payload = ApprovalSubmission(approved=approved, comments=comments)
        logger.info("Submitting approval decision", request_id=request_id, approved=payload.approved)
        return await self._request("POST", f"/api/requests/{request_id}/approve/", json=payload.model_dump())

    # ---------- documents ----------

    async def upload_proforma(self, request_id: int | str, filename: str, content: bytes, content_type: str) -> dict:
        files = {"proforma": (filename, content, content_type)}
        return await self._request("POST", f"/api/documents/upload-proforma/{request_id}/", files=files) or {}

    async def upload_receipt(self, request_id: int | str, filename: str, content: bytes, content_type: str) -> dict:
        files = {"receipt": (filename, content, content_type)}
        return await self._request("POST", f"/api/requests/{request_id}/receipt/", files=files) or {}

    async def trigger_processing(
        self,
        request_id: int | str,
        document_type: str,
        processing_type: str,
        file_path: str | None = None,
    ) -> dict:
        payload = {"document_type": document_type, "processing_type": processing_type}
        if file_path:
            payload["file_path"] = file_path
        return await self._request("POST", f"/api/documents/comet-process/{request_id}/", json=payload) or {}

    async def get_processing_status(self, request_id: int | str, job_id: str) -> ProcessingJob:
        body = await self._request("GET", f"/api/documents/comet-status/{request_id}/{job_id}/") or {}
        if not isinstance(body, dict):
            body = {}
        return ProcessingJob.model_validate({**body, "job_id": str(job_id), "request_id": request_id})

    async def get_processing_jobs(self, request_id: int | str) -> list[dict]:
        body = await self._request("GET", f"/api/documents/jobs/{request_id}/")
        if isinstance(body, dict):
            body = body.get("results") or []
        return list(body or [])
