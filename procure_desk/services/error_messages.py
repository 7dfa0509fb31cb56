"""
Turn procurement API error bodies into a single human-readable message.

Shared by every flow that talks to the approval and processing endpoints so
each call site agrees on how an error body reads.
"""

from typing import Any

DEFAULT_APPROVAL_ERROR = "Failed to process approval. Please try again."


def _first_text(value: Any) -> str | None:
    """A non-empty string, or the first element of a list when that is one"""
    if isinstance(value, str):
        return value or None
    if isinstance(value, (list, tuple)) and value and isinstance(value[0], str):
        return value[0] or None
    return None


def extract_error_message(body: Any, fallback: str = DEFAULT_APPROVAL_ERROR) -> str:
    """
    Pick the message to show for an error response body.

    Precedence:
    1. the body itself when it is a string
    2. ``detail``
    3. ``message``
    4. ``error``
    5. ``non_field_errors[0]``
    6. the first ``field: message`` pair whose value is a string or a list
       starting with a string
    7. ``fallback``

    Examples:
        >>> extract_error_message({"vendor_email": ["This field is required."]})
        'vendor_email: This field is required.'
        >>> extract_error_message("Server error")
        'Server error'
    """
    if isinstance(body, str):
        return body.strip() or fallback

    if not isinstance(body, dict):
        return fallback

    for key in ("detail", "message", "error"):
        text = _first_text(body.get(key))
        if text:
            return text

    text = _first_text(body.get("non_field_errors"))
    if text:
        return text

    for field, value in body.items():
        text = _first_text(value)
        if text:
            return f"{field}: {text}"

    return fallback
