"""
Merge extracted document fields into the in-progress request-creation form.

Only fields the extraction actually populated overwrite the form; anything
the extraction left empty keeps the value the user already typed.
"""

from decimal import Decimal, InvalidOperation
from typing import Any
from loguru import logger
from pydantic import BaseModel, Field
from ..models.request import Priority
from .extraction_types import ExtractionResult


def _to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, "") else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


class LineItemForm(BaseModel):
    description: str = ""
    quantity: Decimal | str = Decimal("1")
    unit_price: Decimal | str = ""
    brand: str = ""
    model: str = ""
    specifications: str = ""

    @property
    def total_price(self) -> Decimal:
        return _to_decimal(self.quantity) * _to_decimal(self.unit_price)


class RequestFormState(BaseModel):
    title: str = ""
    description: str = ""
    priority: str = Priority.MEDIUM.value
    vendor_name: str = ""
    vendor_email: str = ""
    expected_delivery_date: str | None = None
    items: list[LineItemForm] = Field(default_factory=lambda: [LineItemForm()])

    @property
    def total_amount(self) -> Decimal:
        return sum((item.total_price for item in self.items), Decimal("0"))


def merge_extraction(form: RequestFormState, result: ExtractionResult) -> RequestFormState:
    """
    Return a copy of ``form`` with the populated extraction fields applied.

    - vendor name / email overwrite only when extracted and non-empty
    - line items replace the form's items only when at least one item with a
      description was extracted; brand/model/specifications start blank
    """
    updates: dict[str, Any] = {}

    if result.vendor.name:
        updates["vendor_name"] = result.vendor.name
    if result.vendor.email:
        updates["vendor_email"] = result.vendor.email

    extracted_items = [
        LineItemForm(
            description=item.description,
            quantity=item.quantity if item.quantity is not None else Decimal("1"),
            unit_price=item.unit_price if item.unit_price is not None else "",
        )
        for item in result.items
        if item.description
    ]
    if extracted_items:
        updates["items"] = extracted_items

    logger.info("Merged extraction into request form", fields=sorted(updates))
    return form.model_copy(update=updates, deep=True)
