"""Receipt data models."""

from typing import Any, List, Optional
from pydantic import BaseModel, Field, field_validator

from ledger.calculations import parse_number


class LineItem(BaseModel):
    """One line of a receipt. Negative quantities or prices are credits."""

    description: str = ""
    quantity: float = 0.0
    unit_price: float = 0.0
    total: float = 0.0

    @field_validator('quantity', 'unit_price', 'total', mode='before')
    @classmethod
    def _coerce_number(cls, value: Any) -> float:
        return parse_number(value)

    @field_validator('description', mode='before')
    @classmethod
    def _coerce_description(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()


class ReceiptData(BaseModel):
    """Editable receipt fields, as extracted or entered during review."""

    type: str = Field(default="expense", description="expense or income")
    status: str = Field(default="pending", description="pending, approved or rejected")
    vendor_name: Optional[str] = None
    receipt_number: Optional[str] = None
    date: Optional[str] = Field(None, description="Receipt date (YYYY-MM-DD)")
    total_amount: float = 0.0
    vat_amount: float = 0.0
    currency: Optional[str] = None
    payment_method: Optional[str] = None
    category: Optional[str] = None
    notes: Optional[str] = None
    receipt_image_url: Optional[str] = None
    line_items: List[LineItem] = []

    @field_validator('total_amount', 'vat_amount', mode='before')
    @classmethod
    def _coerce_amount(cls, value: Any) -> float:
        return parse_number(value)

    @field_validator('line_items', mode='before')
    @classmethod
    def _coerce_line_items(cls, value: Any) -> list:
        if not value:
            return []
        return [item for item in value if item]


class Receipt(ReceiptData):
    """Stored receipt record."""

    batch_id: str
    receipt_id: str
    created_date: str
    updated_date: str

    class Config:
        """Pydantic config."""
        from_attributes = True
