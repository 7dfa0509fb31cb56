import re
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from pydantic import BaseModel, Field, field_validator
from .error_messages import extract_error_message


class DocumentType(str, Enum):
    PROFORMA = "proforma"
    RECEIPT = "receipt"


# processing_type sent with the trigger call, per document type
PROCESSING_TYPES = {
    DocumentType.PROFORMA: "extract_data",
    DocumentType.RECEIPT: "validate_receipt",
}


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"


TERMINAL_JOB_STATUSES = frozenset({
    JobStatus.COMPLETED.value,
    JobStatus.FAILED.value,
    JobStatus.NOT_FOUND.value,
    JobStatus.ACCESS_DENIED.value,
})

# Currency symbols, codes and thousands separators around an amount
_NON_NUMERIC = re.compile(r"[^0-9.\-]")


def lenient_text(value: Any) -> str | None:
    """Scalars become strings; blanks and nested structures become None"""
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return None
    text = str(value).strip()
    return text or None


def lenient_decimal(value: Any) -> Decimal | None:
    """
    Parse an extracted amount, tolerating formatting like ``"$1,200.50"``.

    Anything that still is not a number becomes None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        text = str(value)
    elif isinstance(value, str):
        text = _NON_NUMERIC.sub("", value)
    else:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


class ProcessingJob(BaseModel):
    """Status snapshot of a server-side extraction job"""
    job_id: str
    request_id: int | str | None = None
    status: str = JobStatus.QUEUED.value
    result: dict[str, Any] | None = None
    error: str | None = None
    debug_info: dict[str, Any] | None = None

    @field_validator("job_id", mode="before")
    @classmethod
    def _job_id_text(cls, value):
        return lenient_text(value) or ""

    @field_validator("status", mode="before")
    @classmethod
    def _status_text(cls, value):
        return (lenient_text(value) or JobStatus.QUEUED.value).lower()

    @field_validator("error", mode="before")
    @classmethod
    def _error_text(cls, value):
        if isinstance(value, (dict, list)):
            return extract_error_message(value, "Document processing failed")
        return lenient_text(value)

    @field_validator("result", "debug_info", mode="before")
    @classmethod
    def _dict_or_none(cls, value):
        return value if isinstance(value, dict) else None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


class ExtractedVendor(BaseModel):
    name: str | None = None
    email: str | None = None
    address: str | None = None
    phone: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _text(cls, value):
        return lenient_text(value)


class ExtractedLineItem(BaseModel):
    description: str | None = None
    quantity: Decimal | None = None
    unit_price: Decimal | None = None
    total_price: Decimal | None = None

    @field_validator("description", mode="before")
    @classmethod
    def _text(cls, value):
        return lenient_text(value)

    @field_validator("quantity", "unit_price", "total_price", mode="before")
    @classmethod
    def _amount(cls, value):
        return lenient_decimal(value)


class ExtractedTotals(BaseModel):
    subtotal: Decimal | None = None
    tax: Decimal | None = None
    total: Decimal | None = None
    currency: str | None = None

    @field_validator("subtotal", "tax", "total", mode="before")
    @classmethod
    def _amount(cls, value):
        return lenient_decimal(value)

    @field_validator("currency", mode="before")
    @classmethod
    def _text(cls, value):
        return lenient_text(value)


class ExtractionResult(BaseModel):
    vendor: ExtractedVendor = Field(default_factory=ExtractedVendor)
    items: list[ExtractedLineItem] = Field(default_factory=list)
    totals: ExtractedTotals = Field(default_factory=ExtractedTotals)
    reference: str | None = None
    document_date: str | None = None
    payment_terms: str | None = None
    confidence: float | None = None
    raw: dict[str, Any] = Field(default_factory=dict)  # Untouched job result

    @field_validator("reference", "document_date", "payment_terms", mode="before")
    @classmethod
    def _text(cls, value):
        return lenient_text(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value):
        number = lenient_decimal(value)
        return float(number) if number is not None else None

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> "ExtractionResult":
        """
        Normalize a completed job's ``result`` into an ExtractionResult.

        The extraction service answers in one of two shapes:
        nested (``{"vendor": {"name": ...}, "totals": {...}}``) or
        flat (``{"vendor_name": ..., "subtotal": ..., "total": ...}``).
        """
        if not isinstance(payload, dict):
            payload = {}

        vendor = payload.get("vendor")
        if isinstance(vendor, dict):
            vendor_data = vendor
        else:
            vendor_data = {
                "name": payload.get("vendor_name") or (vendor if isinstance(vendor, str) else None),
                "email": payload.get("vendor_email"),
                "address": payload.get("vendor_address"),
                "phone": payload.get("vendor_phone"),
            }

        totals = payload.get("totals")
        if not isinstance(totals, dict):
            totals = {
                "subtotal": payload.get("subtotal"),
                "tax": payload.get("tax"),
                "total": payload.get("total"),
                "currency": payload.get("currency"),
            }

        items = payload.get("items")
        items = [item for item in items if isinstance(item, dict)] if isinstance(items, list) else []

        return cls(
            vendor=ExtractedVendor.model_validate(vendor_data),
            items=[ExtractedLineItem.model_validate(item) for item in items],
            totals=ExtractedTotals.model_validate(totals),
            reference=payload.get("reference") or payload.get("reference_number") or payload.get("receipt_number"),
            document_date=payload.get("date") or payload.get("document_date"),
            payment_terms=payload.get("terms") or payload.get("payment_terms"),
            confidence=payload.get("confidence"),
            raw=payload,
        )
