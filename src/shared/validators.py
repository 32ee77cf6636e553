"""Validation utilities for the receipt ledger application."""

from typing import Optional
from datetime import datetime

from dateutil import parser as date_parser

from .exceptions import ValidationError


RECEIPT_TYPES = ["expense", "income"]

RECEIPT_STATUSES = ["pending", "approved", "rejected"]

# Fields a user may change on a batch record
EDITABLE_BATCH_FIELDS = [
    "batch_name",
    "customer_name",
    "notes",
    "period_start",
    "period_end",
    "period_label",
]


def validate_receipt_type(receipt_type: Optional[str]) -> str:
    """
    Validate receipt type, defaulting to expense.

    Args:
        receipt_type: Receipt type to validate

    Returns:
        Validated receipt type

    Raises:
        ValidationError: If type is not a known receipt type
    """
    if not receipt_type:
        return "expense"

    if not isinstance(receipt_type, str):
        raise ValidationError("Receipt type must be a string")

    receipt_type = receipt_type.lower()

    if receipt_type not in RECEIPT_TYPES:
        raise ValidationError(
            f"Invalid receipt type. Must be one of: {', '.join(RECEIPT_TYPES)}"
        )

    return receipt_type


def validate_receipt_status(status: str) -> str:
    """
    Validate receipt review status.

    Args:
        status: Status to validate

    Returns:
        Validated status

    Raises:
        ValidationError: If status is invalid
    """
    if not status:
        raise ValidationError("Status is required")

    if not isinstance(status, str):
        raise ValidationError("Status must be a string")

    status = status.lower()

    if status not in RECEIPT_STATUSES:
        raise ValidationError(
            f"Invalid status. Must be one of: {', '.join(RECEIPT_STATUSES)}"
        )

    return status


def validate_date(date_str: str) -> str:
    """
    Validate date format (ISO 8601: YYYY-MM-DD).

    Args:
        date_str: Date string to validate

    Returns:
        Validated date string

    Raises:
        ValidationError: If date is invalid
    """
    if not date_str:
        raise ValidationError("Date is required")

    try:
        datetime.strptime(date_str, '%Y-%m-%d')
        return date_str
    except ValueError:
        raise ValidationError("Invalid date format. Use YYYY-MM-DD")


def validate_period(period_start: Optional[str], period_end: Optional[str]) -> None:
    """
    Validate that a period window is well ordered.

    Args:
        period_start: ISO timestamp or date of the first day
        period_end: ISO timestamp or date of the last day

    Raises:
        ValidationError: If either bound is unparseable or start is after end
    """
    if not period_start or not period_end:
        return

    try:
        start = date_parser.isoparse(period_start)
        end = date_parser.isoparse(period_end)
    except (ValueError, TypeError):
        raise ValidationError("Invalid period dates. Use ISO 8601")

    if start.date() > end.date():
        raise ValidationError("Period start must not be after period end")


def sanitize_string(value: str, max_length: Optional[int] = None) -> str:
    """
    Sanitize string input.

    Args:
        value: String to sanitize
        max_length: Optional maximum length

    Returns:
        Sanitized string

    Raises:
        ValidationError: If string is invalid
    """
    if not isinstance(value, str):
        raise ValidationError("Value must be a string")

    value = value.strip()

    if max_length and len(value) > max_length:
        raise ValidationError(f"Value exceeds maximum length of {max_length}")

    return value
