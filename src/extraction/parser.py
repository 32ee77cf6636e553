"""Normalization of extracted receipt data."""

import os
import re
import logging
from typing import Dict, Any, Optional
from datetime import datetime, timezone

from dateutil import parser as date_parser

from ledger.calculations import parse_number, item_total, round2, receipt_subtotal, validate_receipt

logger = logging.getLogger(__name__)

# Currency symbols and codes around printed amounts
_NON_NUMERIC = re.compile(r'[^0-9.,\-]')

# A comma followed by one or two final digits marks decimals, as in "12,50"
_DECIMAL_COMMA = re.compile(r',\d{1,2}$')


def _numeric_text(value: str) -> str:
    """
    Strip an amount down to a plain number.

    "1,180.00" and "1.180,00" both give "1180.00". A lone comma with three
    digits after it is a thousands separator.
    """
    text = _NON_NUMERIC.sub('', value)

    if _DECIMAL_COMMA.search(text):
        text = text.replace('.', '').replace(',', '.')
    else:
        text = text.replace(',', '')

    return text.strip('.')


def _amount(value: Any) -> float:
    if isinstance(value, str):
        value = _numeric_text(value)
    return round2(value)


class ExtractionParser:
    """Cleans raw extraction output into receipt fields."""

    def __init__(self, default_currency: Optional[str] = None):
        self.default_currency = default_currency or os.environ.get('DEFAULT_CURRENCY', 'ILS')

    def normalize(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        """
        Normalize raw extracted data.

        Args:
            raw: Extracted fields; values may be text as read from the document

        Returns:
            Receipt data with numeric amounts, an ISO date, cleaned line items
            and a ``validation`` result
        """
        line_items = [
            item for item in (self._clean_item(i) for i in raw.get('line_items') or [])
            if item
        ]

        receipt = {
            'type': raw.get('type') or 'expense',
            'status': 'pending',
            'vendor_name': self._clean_text(raw.get('vendor_name')),
            'receipt_number': self._clean_text(raw.get('receipt_number')),
            'date': self._normalize_date(raw.get('date')),
            'total_amount': _amount(raw.get('total_amount')),
            'vat_amount': _amount(raw.get('vat_amount')),
            'currency': (self._clean_text(raw.get('currency')) or self.default_currency).upper(),
            'payment_method': self._clean_text(raw.get('payment_method')),
            'category': self._clean_text(raw.get('category')),
            'line_items': line_items,
            'confidence_score': round2(raw.get('confidence_score')),
        }

        # If total is missing but we have items, total is subtotal + VAT
        if not receipt['total_amount'] and line_items:
            receipt['total_amount'] = round2(receipt_subtotal(receipt) + receipt['vat_amount'])
            logger.info(f"Calculated total from line items and VAT: {receipt['total_amount']}")

        receipt['validation'] = validate_receipt(receipt)
        if not receipt['validation']['is_valid']:
            logger.warning(f"Extracted totals inconsistent: {'; '.join(receipt['validation']['issues'])}")

        return receipt

    @staticmethod
    def _clean_text(value: Any) -> Optional[str]:
        if value is None:
            return None

        cleaned = ' '.join(str(value).split())
        return cleaned or None

    @staticmethod
    def _normalize_date(value: Any) -> Optional[str]:
        """Normalize a date to YYYY-MM-DD; day-first unless the text is ISO."""
        if not value:
            return None

        text = str(value).strip()
        try:
            parsed = date_parser.isoparse(text)
        except ValueError:
            try:
                parsed = date_parser.parse(text, dayfirst=True, fuzzy=True)
            except (ValueError, OverflowError):
                logger.warning(f"Failed to parse date: {value}")
                return None

        if parsed.date() > datetime.now(timezone.utc).date():
            logger.warning(f"Future date detected: {text}")

        return parsed.strftime('%Y-%m-%d')

    @staticmethod
    def _clean_item(item: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Clean a line item; returns None for an empty one."""
        if not item:
            return None

        description = ExtractionParser._clean_text(item.get('description')) or ""
        has_quantity = item.get('quantity') not in (None, '')
        quantity = parse_number(_numeric_text(str(item['quantity']))) if has_quantity else 1.0
        unit_price = _amount(item.get('unit_price'))
        total = _amount(item.get('total'))

        if not description and not unit_price and not total:
            return None

        # If total is missing but we have quantity and price, calculate it
        if not total and unit_price:
            total = item_total(quantity, unit_price)

        # If unit price is missing, derive it from the total
        if not unit_price and total:
            unit_price = round2(total / quantity) if quantity else total

        return {
            'description': description,
            'quantity': quantity,
            'unit_price': unit_price,
            'total': total
        }
