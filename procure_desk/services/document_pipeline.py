"""
Document upload & extraction pipeline.

    idle -> uploading -> processing -> completed
                 |            |
                 +-> failed <-+

One upload call, one trigger call, then a bounded status-poll loop against
the server-side extraction job. The loop is an explicit state machine that
checks a CancellationToken before every transition, so an abandoned flow
applies no late results.
"""

import asyncio
import hashlib
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union
from loguru import logger
from pydantic import BaseModel, ValidationError
from ..core.config import settings
from ..core.errors import (
    ApiError,
    DocumentTooLargeError,
    DocumentValidationError,
    DuplicateJobError,
    JobAccessDeniedError,
    JobFailedError,
    JobNotFoundError,
    ProcessingCancelledError,
    ProcessingStartError,
    ProcessingTimeoutError,
    ProcureDeskError,
    SessionExpiredError,
    TransportError,
    UploadError,
)
from .api_client import is_retryable_error
from .error_messages import extract_error_message
from .events import ProcessingProgress
from .extraction_types import (
    PROCESSING_TYPES,
    DocumentType,
    ExtractionResult,
    JobStatus,
    ProcessingJob,
)

Sleep = Callable[[float], Awaitable[Any]]
ProgressCallback = Callable[[ProcessingProgress], Union[None, Awaitable[None]]]


# ---------- validation ----------

@dataclass(frozen=True)
class UploadedDocument:
    filename: str
    content: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def fingerprint(self) -> str:
        return hashlib.sha256(self.content).hexdigest()


def _allowed_types() -> set[str]:
    return {t.strip().lower() for t in settings.upload_allowed_types.split(",") if t.strip()}


def validate_document(
    filename: str,
    content_type: str | None,
    size: int,
    max_bytes: int | None = None,
    allowed_types: set[str] | None = None,
) -> None:
    """
    Reject unsupported or oversized files before any network call.

    Raises:
        DocumentValidationError: MIME type is not PDF/JPEG/PNG
        DocumentTooLargeError: file is larger than the upload limit
    """
    allowed = allowed_types or _allowed_types()
    limit = max_bytes if max_bytes is not None else settings.upload_max_bytes
    mime = (content_type or "").split(";")[0].strip().lower()

    if mime not in allowed:
        logger.info("Rejected document type", filename=filename, content_type=content_type)
        raise DocumentValidationError("Please upload a PDF or image file (JPG, PNG)")

    if size > limit:
        logger.info("Rejected oversized document", filename=filename, size=size, limit=limit)
        raise DocumentTooLargeError(f"File size must be less than {limit // (1024 * 1024)}MB")


# ---------- polling ----------

class PollingPolicy(BaseModel):
    """
    Poll timing for one extraction job.

    The interval stays flat for the first ``backoff_after`` attempts, then
    grows by ``backoff_factor`` per attempt up to ``max_interval``.
    """
    interval: float = 3.0
    max_interval: float = 8.0
    backoff_after: int = 10
    backoff_factor: float = 1.1
    max_attempts: int = 30
    max_transport_errors: int = 5

    @classmethod
    def for_document_type(cls, document_type: DocumentType | str) -> "PollingPolicy":
        document_type = DocumentType(document_type)
        max_attempts = (
            settings.poll_max_attempts_receipt
            if document_type == DocumentType.RECEIPT
            else settings.poll_max_attempts_proforma
        )
        return cls(
            interval=settings.poll_interval_seconds,
            max_interval=settings.poll_max_interval_seconds,
            backoff_after=settings.poll_backoff_after,
            backoff_factor=settings.poll_backoff_factor,
            max_attempts=max_attempts,
            max_transport_errors=settings.poll_max_transport_errors,
        )

    def delay_after(self, attempt: int) -> float:
        """Seconds to wait after the 1-based ``attempt`` before polling again"""
        if attempt <= self.backoff_after:
            return self.interval
        grown = self.interval * self.backoff_factor ** (attempt - self.backoff_after)
        return min(grown, self.max_interval)

    def elapsed_bound(self) -> float:
        """Total sleep across a loop that exhausts every attempt"""
        return sum(self.delay_after(a) for a in range(1, self.max_attempts))


class CancellationToken:
    """Liveness flag owned by whoever started the flow (view, request handler)"""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self, job_id: str | None = None) -> None:
        if self._cancelled:
            raise ProcessingCancelledError("Document processing was cancelled", job_id=job_id)


async def _notify(callback: Optional[ProgressCallback], progress: ProcessingProgress) -> None:
    if callback is None:
        return
    outcome = callback(progress)
    if inspect.isawaitable(outcome):
        await outcome


def _job_from_api_error(e: ApiError, request_id: Any, job_id: str) -> ProcessingJob | None:
    """Map status-endpoint HTTP errors that describe a terminal job onto a job snapshot"""
    body = e.body if isinstance(e.body, dict) else {}
    status = body.get("status")
    if status in (JobStatus.NOT_FOUND.value, JobStatus.ACCESS_DENIED.value, JobStatus.FAILED.value):
        return ProcessingJob.model_validate({**body, "job_id": job_id, "request_id": request_id})
    if e.status_code == 404:
        return ProcessingJob(job_id=job_id, request_id=request_id, status=JobStatus.NOT_FOUND.value)
    if e.status_code == 403:
        return ProcessingJob(job_id=job_id, request_id=request_id, status=JobStatus.ACCESS_DENIED.value)
    return None


class JobPoller:
    """
    Polls one job until it reaches a terminal status.

    Terminal statuses are never retried. Transport errors and 5xx answers are
    retried until ``max_transport_errors`` happen in a row. Every status call,
    failed or not, counts toward ``max_attempts``.
    """

    def __init__(
        self,
        client,
        policy: PollingPolicy,
        sleep: Sleep = asyncio.sleep,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: CancellationToken | None = None,
    ):
        self.client = client
        self.policy = policy
        self.sleep = sleep
        self.on_progress = on_progress
        self.cancel_token = cancel_token or CancellationToken()
        self.attempts = 0

    async def poll(self, request_id: Any, job_id: str) -> dict:
        """
        Returns:
            The job's ``result`` payload once it completes

        Raises:
            JobFailedError, JobNotFoundError, JobAccessDeniedError: terminal job states
            ProcessingTimeoutError: attempts exhausted or backend unreachable
            ProcessingCancelledError: the token was cancelled
        """
        consecutive_failures = 0
        max_attempts = self.policy.max_attempts

        for attempt in range(1, max_attempts + 1):
            self.cancel_token.raise_if_cancelled(job_id)
            self.attempts = attempt

            try:
                job = await self.client.get_processing_status(request_id, job_id)
            except SessionExpiredError:
                raise
            except ValidationError as e:
                raise JobFailedError("Document processing returned an unreadable job status", job_id=job_id) from e
            except (ApiError, TransportError) as e:
                job = _job_from_api_error(e, request_id, job_id) if isinstance(e, ApiError) else None
                if job is None and not is_retryable_error(e):
                    raise JobFailedError(
                        extract_error_message(e.body, "Document processing failed"),
                        job_id=job_id,
                    ) from e
                if job is None:
                    consecutive_failures += 1
                    logger.warning(
                        "Processing status check failed",
                        request_id=request_id,
                        job_id=job_id,
                        attempt=attempt,
                        consecutive_failures=consecutive_failures,
                        error=e.message,
                    )
                    if consecutive_failures >= self.policy.max_transport_errors:
                        raise ProcessingTimeoutError(
                            f"Document processing status could not be retrieved after "
                            f"{consecutive_failures} consecutive attempts: {e.message}",
                            job_id=job_id,
                        ) from e

            # Stale-response guard: the flow may have been abandoned while we awaited
            self.cancel_token.raise_if_cancelled(job_id)

            if job is not None:
                consecutive_failures = 0
                logger.debug(
                    "Processing status",
                    request_id=request_id,
                    job_id=job_id,
                    attempt=attempt,
                    status=job.status,
                )
                self._raise_for_terminal(job)
                if job.status == JobStatus.COMPLETED.value:
                    logger.info("Processing job completed", request_id=request_id, job_id=job_id, attempts=attempt)
                    return job.result or {}

                await _notify(self.on_progress, ProcessingProgress(
                    state="processing",
                    request_id=request_id,
                    job_id=job_id,
                    job_status=job.status,
                    attempt=attempt,
                    max_attempts=max_attempts,
                ))

            if attempt < max_attempts:
                await self.sleep(self.policy.delay_after(attempt))

        bound = self.policy.elapsed_bound()
        logger.warning("Processing job timed out", request_id=request_id, job_id=job_id, attempts=max_attempts)
        raise ProcessingTimeoutError(
            f"Document processing timed out after {max_attempts} attempts (~{bound:.0f} seconds)",
            job_id=job_id,
        )

    @staticmethod
    def _raise_for_terminal(job: ProcessingJob) -> None:
        if not job.is_terminal:
            return
        if job.status == JobStatus.FAILED.value:
            raise JobFailedError(job.error or "Document processing failed", job_id=job.job_id)
        if job.status == JobStatus.NOT_FOUND.value:
            raise JobNotFoundError("Processing job expired or was not found", job_id=job.job_id)
        if job.status == JobStatus.ACCESS_DENIED.value:
            raise JobAccessDeniedError("Access denied to this processing job", job_id=job.job_id)


# ---------- pipeline ----------

class PipelineState(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ExtractionOutcome(BaseModel):
    request_id: Any
    document_type: DocumentType
    job_id: str
    file_path: str | None = None
    result: ExtractionResult
    file_info: dict[str, Any] = {}
    attempts: int = 0


# (request_id, document fingerprint) pairs with a poll loop outstanding
_ACTIVE_JOBS: set[tuple[str, str]] = set()


class DocumentExtractionPipeline:
    """
    Turns a selected file into structured request data.

    Args:
        client: ProcurementApiClient (or anything with the same document methods)
        sleep: Awaitable sleep used between polls (injectable for tests)
        on_progress: Receives a ProcessingProgress on every state change and poll
        active_jobs: Registry used to refuse a second loop for the same upload
    """

    def __init__(
        self,
        client,
        sleep: Sleep = asyncio.sleep,
        on_progress: Optional[ProgressCallback] = None,
        active_jobs: set[tuple[str, str]] | None = None,
    ):
        self.client = client
        self.sleep = sleep
        self.on_progress = on_progress
        self.active_jobs = _ACTIVE_JOBS if active_jobs is None else active_jobs
        self.state = PipelineState.IDLE

    async def _transition(self, state: PipelineState, request_id: Any, **details) -> None:
        self.state = state
        await _notify(self.on_progress, ProcessingProgress(state=state.value, request_id=request_id, **details))

    async def _upload(self, request_id: Any, document: UploadedDocument, document_type: DocumentType) -> str | None:
        upload = self.client.upload_receipt if document_type == DocumentType.RECEIPT else self.client.upload_proforma
        try:
            response = await upload(request_id, document.filename, document.content, document.content_type)
        except SessionExpiredError:
            raise
        except ProcureDeskError as e:
            body = e.body if isinstance(e, ApiError) else None
            raise UploadError(extract_error_message(body, "File upload failed")) from e

        if not response.get("success", False):
            raise UploadError(response.get("error") or "File upload failed")

        logger.info("Document uploaded", request_id=request_id, file_path=response.get("file_path"))
        return response.get("file_path")

    async def _trigger(self, request_id: Any, document_type: DocumentType, file_path: str | None) -> str:
        try:
            response = await self.client.trigger_processing(
                request_id,
                document_type=document_type.value,
                processing_type=PROCESSING_TYPES[document_type],
                file_path=file_path,
            )
        except SessionExpiredError:
            raise
        except ProcureDeskError as e:
            body = e.body if isinstance(e, ApiError) else None
            raise ProcessingStartError(extract_error_message(body, "Could not start document processing")) from e

        job_id = response.get("job_id")
        if not response.get("success", False) or not job_id:
            raise ProcessingStartError(response.get("error") or "Could not start document processing")

        logger.info("Processing job started", request_id=request_id, job_id=job_id, document_type=document_type.value)
        return str(job_id)

    async def process(
        self,
        request_id: Any,
        document: UploadedDocument,
        document_type: DocumentType | str = DocumentType.PROFORMA,
        cancel_token: CancellationToken | None = None,
        policy: PollingPolicy | None = None,
    ) -> ExtractionOutcome:
        """
        Upload, start the extraction job and poll it to a terminal state.

        Raises:
            DocumentValidationError: before any network call
            DuplicateJobError: a loop is already running for this request and file
            UploadError, ProcessingStartError: upload or trigger failed (terminal)
            JobError subclasses: terminal job outcome, timeout or cancellation
        """
        document_type = DocumentType(document_type)
        cancel_token = cancel_token or CancellationToken()
        policy = policy or PollingPolicy.for_document_type(document_type)

        validate_document(document.filename, document.content_type, document.size)

        key = (str(request_id), document.fingerprint)
        if key in self.active_jobs:
            raise DuplicateJobError("This document is already being processed for this request.")
        self.active_jobs.add(key)

        try:
            await self._transition(PipelineState.UPLOADING, request_id)
            file_path = await self._upload(request_id, document, document_type)
            cancel_token.raise_if_cancelled()

            job_id = await self._trigger(request_id, document_type, file_path)
            cancel_token.raise_if_cancelled(job_id)
            await self._transition(PipelineState.PROCESSING, request_id, job_id=job_id, max_attempts=policy.max_attempts)

            poller = JobPoller(
                self.client,
                policy,
                sleep=self.sleep,
                on_progress=self.on_progress,
                cancel_token=cancel_token,
            )
            payload = await poller.poll(request_id, job_id)
            cancel_token.raise_if_cancelled(job_id)

            try:
                result = ExtractionResult.from_payload(payload)
            except ValidationError as e:
                raise JobFailedError("Document processing returned an unreadable result", job_id=job_id) from e
            await self._transition(PipelineState.COMPLETED, request_id, job_id=job_id, attempt=poller.attempts)
            return ExtractionOutcome(
                request_id=request_id,
                document_type=document_type,
                job_id=job_id,
                file_path=file_path,
                result=result,
                file_info={"name": document.filename, "size": document.size, "type": document.content_type},
                attempts=poller.attempts,
            )
        except ProcessingCancelledError:
            logger.info("Document processing cancelled", request_id=request_id)
            raise
        except ProcureDeskError as e:
            logger.warning(
                "Document processing failed",
                request_id=request_id,
                error_type=type(e).__name__,
                error=e.message,
            )
            await self._transition(PipelineState.FAILED, request_id, message=e.message)
            raise
        finally:
            self.active_jobs.discard(key)
