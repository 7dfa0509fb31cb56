"""
Error taxonomy for the procurement dashboard core.

Every error carries a user-facing ``message``; flows catch these at their
boundary and turn them into text, so none of them should crash the caller.
"""

from typing import Any


class ProcureDeskError(Exception):
    """Base class for all errors raised by the dashboard core"""

    status_code: int = 400
    suggestion: str | None = None

    def __init__(self, message: str, suggestion: str | None = None):
        super().__init__(message)
        self.message = message
        if suggestion is not None:
            self.suggestion = suggestion


# ---------- Validation (client-local, user-correctable) ----------

class DocumentValidationError(ProcureDeskError):
    status_code = 415


class DocumentTooLargeError(DocumentValidationError):
    status_code = 413


class CommentsRequiredError(ProcureDeskError):
    status_code = 422


# ---------- Authorization / flow misuse ----------

class ApprovalNotPermittedError(ProcureDeskError):
    status_code = 403


class FlowStateError(ProcureDeskError):
    status_code = 409


# ---------- Remote API ----------

class ApiError(ProcureDeskError):
    """Non-2xx response from the procurement API"""

    def __init__(self, status_code: int, body: Any = None, message: str | None = None):
        super().__init__(message or f"Procurement API returned {status_code}")
        self.status_code = status_code
        self.body = body


class TransportError(ProcureDeskError):
    """Network-level failure talking to the procurement API (retryable)"""

    status_code = 502


class SessionExpiredError(ProcureDeskError):
    status_code = 401
    suggestion = "Please sign in again."


# ---------- Upload & extraction ----------

class UploadError(ProcureDeskError):
    status_code = 502
    suggestion = "Please reselect the file and try again."


class ProcessingStartError(ProcureDeskError):
    status_code = 502
    suggestion = "Please try uploading the document again."


class JobError(ProcureDeskError):
    """Terminal extraction job outcome; never retried"""

    status_code = 502

    def __init__(self, message: str, job_id: str | None = None, suggestion: str | None = None):
        super().__init__(message, suggestion)
        self.job_id = job_id


class JobFailedError(JobError):
    suggestion = "The document may be unreadable. Try a clearer scan or enter the details manually."


class JobNotFoundError(JobError):
    status_code = 404
    suggestion = "The processing job expired. Please upload the document again."


class JobAccessDeniedError(JobError):
    status_code = 403
    suggestion = "You do not have access to documents for this request."


class ProcessingTimeoutError(JobError):
    status_code = 504
    suggestion = "Processing is taking longer than expected. Please try again later."


class ProcessingCancelledError(JobError):
    status_code = 409


class DuplicateJobError(ProcureDeskError):
    status_code = 409
    suggestion = "This document is already being processed."
