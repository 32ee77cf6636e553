"""
Money calculations for receipts.

Every monetary value is rounded to the cent with ``round2``, half away from
zero, on the decimal representation of the number. None of the functions in
this module raise on malformed input: unparseable numbers count as 0.
"""

import math
import re
from collections.abc import Mapping
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

CENT = Decimal('0.01')

DEFAULT_VAT_PERCENT = 18

# Allowed difference between items + VAT and the stated grand total
TOTAL_TOLERANCE = Decimal('0.10')

# Allowed difference between quantity x unit price and a line total
ITEM_TOLERANCE = Decimal('0.01')

_NUMBER_PREFIX = re.compile(r'\s*[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?')


def parse_number(value: Any) -> float:
    """
    Parse a numeric value, preserving its sign.

    Empty strings, None, NaN, infinities and text without a leading number
    all parse to 0. Text with a leading number parses to that number, so
    ``"12.50 ILS"`` is 12.5.
    """
    if value is None or value == '':
        return 0.0

    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    else:
        text = str(value)
        try:
            number = float(text)
        except ValueError:
            match = _NUMBER_PREFIX.match(text)
            if not match:
                return 0.0
            number = float(match.group(0))

    if not math.isfinite(number):
        return 0.0
    return number


def _to_decimal(value: Any) -> Decimal:
    return Decimal(repr(parse_number(value)))


def _quantize(value: Decimal) -> float:
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


def round2(value: Any) -> float:
    """Round a value to the nearest cent."""
    return _quantize(_to_decimal(value))


def item_total(quantity: Any, unit_price: Any) -> float:
    """Line total for quantity x unit price. Negative inputs are credits."""
    return round2(parse_number(quantity) * parse_number(unit_price))


def _item_field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def sum_line_items(line_items: Optional[List[Any]]) -> float:
    """
    Sum the ``total`` of every line item.

    The totals are added exactly as decimals and rounded once, so the result
    does not depend on item order.
    """
    if not line_items or not isinstance(line_items, (list, tuple)):
        return 0.0

    subtotal = sum((_to_decimal(_item_field(item, 'total')) for item in line_items), Decimal('0'))
    return _quantize(subtotal)


def receipt_subtotal(receipt: Optional[Mapping]) -> float:
    """Subtotal (line items before VAT) of a receipt."""
    if not receipt:
        return 0.0
    return sum_line_items(receipt.get('line_items'))


def validate_receipt(receipt: Optional[Mapping]) -> Dict[str, Any]:
    """
    Check a receipt's numbers for internal consistency.

    Args:
        receipt: Receipt data with ``line_items``, ``vat_amount`` and ``total_amount``

    Returns:
        ``{'is_valid': bool, 'issues': [str]}`` with one issue per violation
    """
    issues = []

    if not receipt:
        return {'is_valid': True, 'issues': issues}

    line_items = receipt.get('line_items') or []
    items_sum = sum_line_items(line_items)
    vat_amount = parse_number(receipt.get('vat_amount'))
    total_amount = parse_number(receipt.get('total_amount'))

    if line_items:
        expected_total = _quantize(_to_decimal(items_sum) + _to_decimal(vat_amount))
        if abs(_to_decimal(expected_total) - _to_decimal(total_amount)) > TOTAL_TOLERANCE:
            issues.append(
                f"Items subtotal ({items_sum:.2f}) + VAT ({vat_amount:.2f}) = {expected_total:.2f}, "
                f"but the total is {total_amount:.2f}"
            )

    for index, item in enumerate(line_items, start=1):
        quantity = parse_number(_item_field(item, 'quantity'))
        unit_price = parse_number(_item_field(item, 'unit_price'))
        stated_total = parse_number(_item_field(item, 'total'))
        expected = item_total(quantity, unit_price)

        if abs(_to_decimal(expected) - _to_decimal(stated_total)) > ITEM_TOLERANCE:
            issues.append(
                f"Item {index}: {quantity:g} x {unit_price:.2f} = {expected:.2f}, "
                f"but the item total is {stated_total:.2f}"
            )

    return {'is_valid': not issues, 'issues': issues}


def recalculate_receipt(
    receipt: Optional[Mapping],
    recalculate_item_totals: bool = False,
    recalculate_vat: bool = False,
    vat_percent: Any = DEFAULT_VAT_PERCENT,
    recalculate_grand_total: bool = True
) -> Dict[str, Any]:
    """
    Recompute a receipt's derived money fields.

    Steps run in order, each reading the previous step's output: item totals,
    then VAT, then the grand total. The input is left untouched.

    Args:
        receipt: Receipt data
        recalculate_item_totals: Overwrite each item total with quantity x unit price
        recalculate_vat: Overwrite VAT with subtotal x vat_percent / 100
        vat_percent: VAT rate used when recalculating VAT
        recalculate_grand_total: Overwrite the grand total with subtotal + VAT

    Returns:
        A new receipt dictionary
    """
    receipt = receipt or {}

    line_items = [
        dict(item) if isinstance(item, Mapping) else item
        for item in (receipt.get('line_items') or [])
    ]

    if recalculate_item_totals:
        line_items = [
            {**item, 'total': item_total(item.get('quantity'), item.get('unit_price'))}
            if isinstance(item, Mapping) else item
            for item in line_items
        ]

    items_sum = sum_line_items(line_items)

    vat_amount = parse_number(receipt.get('vat_amount'))
    if recalculate_vat:
        vat_amount = _quantize(_to_decimal(items_sum) * _to_decimal(vat_percent) / 100)

    total_amount = parse_number(receipt.get('total_amount'))
    if recalculate_grand_total:
        total_amount = _quantize(_to_decimal(items_sum) + _to_decimal(vat_amount))

    return {
        **receipt,
        'line_items': line_items,
        'vat_amount': vat_amount,
        'total_amount': total_amount
    }
