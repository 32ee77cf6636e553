"""Batch (period) data models."""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class BatchCreate(BaseModel):
    """Batch creation request model."""

    batch_name: str = Field(..., description="Display name of the batch")
    customer_name: Optional[str] = Field(None, description="Customer the receipts belong to")
    notes: Optional[str] = None
    period_start: Optional[str] = Field(None, description="ISO start of the period")
    period_end: Optional[str] = Field(None, description="ISO end of the period")
    period_label: Optional[str] = None


class Batch(BaseModel):
    """Batch model with its cached aggregates."""

    batch_id: str
    batch_name: str
    customer_name: Optional[str] = None
    notes: Optional[str] = None
    status: str = "open"  # open, processing, completed
    lifecycle_stage: str = "draft"  # draft, collecting, waiting, ready_to_close, completed
    period_start: Optional[str] = None
    period_end: Optional[str] = None
    period_label: Optional[str] = None
    last_upload_at: Optional[str] = None
    next_reminder_at: Optional[str] = None
    total_receipts: int = 0
    processed_receipts: int = 0
    rejected_receipts: int = 0
    total_amount: float = 0.0
    income_total: float = 0.0
    expense_total: float = 0.0
    finalized_date: Optional[str] = None
    version: int = 0
    created_date: str
    updated_date: str

    class Config:
        """Pydantic config."""
        from_attributes = True


class LifecycleSnapshot(BaseModel):
    """Derived batch state written back after receipts change."""

    total_amount: float
    income_total: float
    expense_total: float
    stats: Dict[str, Any]
    lifecycle_stage: str
    status: str
