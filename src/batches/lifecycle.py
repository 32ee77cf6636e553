"""
Batch lifecycle derivation.

A batch's lifecycle stage is derived from its receipts, in priority order:

1. ``completed`` when the stored stage or the status is completed (terminal)
2. ``draft`` when the batch has no receipts
3. ``ready_to_close`` when no receipt is pending
4. ``waiting`` when the last upload is at least ``REMINDER_DELAY_HOURS`` old
5. ``collecting`` otherwise
"""

import calendar
import math
import os
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
import logging

from boto3.dynamodb.conditions import Key
from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from shared.dynamodb import DynamoDBClient
from ledger.calculations import parse_number, round2
from batches.models import LifecycleSnapshot

logger = logging.getLogger(__name__)

REMINDER_DELAY_HOURS = 48
REMINDER_DELAY = timedelta(hours=REMINDER_DELAY_HOURS)

HEBREW_MONTHS = [
    "ינואר", "פברואר", "מרץ", "אפריל", "מאי", "יוני",
    "יולי", "אוגוסט", "ספטמבר", "אוקטובר", "נובמבר", "דצמבר",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_datetime(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp into an aware UTC datetime, or None."""
    if not value:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = date_parser.isoparse(str(value))
        except (ValueError, OverflowError):
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_iso(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime the way it is stored: UTC, milliseconds, ``Z`` suffix."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def format_period_label(reference: datetime, locale: Optional[str] = None) -> str:
    """Human label for the month containing ``reference``."""
    locale = (locale or os.environ.get('PERIOD_LABEL_LOCALE', 'he')).lower()

    if locale.startswith('he'):
        return f"תקופת {HEBREW_MONTHS[reference.month - 1]} {reference.year}"
    return f"Period {calendar.month_name[reference.month]} {reference.year}"


def get_default_period_meta(reference_date: Any = None, locale: Optional[str] = None) -> Dict[str, str]:
    """
    Calendar-month window containing a reference date.

    Args:
        reference_date: Date, datetime or ISO string (default: now)
        locale: Label locale, ``he`` or ``en`` (default: PERIOD_LABEL_LOCALE)

    Returns:
        Dictionary with period_start, period_end (both inclusive) and period_label
    """
    reference = to_datetime(reference_date) or utcnow()

    last_day = calendar.monthrange(reference.year, reference.month)[1]
    start = datetime(reference.year, reference.month, 1, tzinfo=timezone.utc)
    end = datetime(reference.year, reference.month, last_day, 23, 59, 59, 999000, tzinfo=timezone.utc)

    return {
        'period_start': format_iso(start),
        'period_end': format_iso(end),
        'period_label': format_period_label(reference, locale),
    }


def get_next_period_meta(previous_batch: Optional[Dict[str, Any]], locale: Optional[str] = None) -> Dict[str, str]:
    """Period of the month after a previous batch's period end."""
    period_end = to_datetime((previous_batch or {}).get('period_end'))
    if not period_end:
        return get_default_period_meta(locale=locale)
    return get_default_period_meta(period_end + relativedelta(months=1), locale)


def ensure_period_meta(batch: Dict[str, Any]) -> Dict[str, str]:
    if batch.get('period_start') and batch.get('period_end') and batch.get('period_label'):
        return {
            'period_start': batch['period_start'],
            'period_end': batch['period_end'],
            'period_label': batch['period_label'],
        }
    return get_default_period_meta(batch.get('created_date'))


def stats_from_receipts(receipts: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
    """
    Count receipts by review status and find the latest upload.

    Any status other than approved or rejected counts as pending.
    """
    stats = {'total': 0, 'approved': 0, 'pending': 0, 'rejected': 0, 'last_upload': None}

    for receipt in receipts or []:
        stats['total'] += 1

        status = receipt.get('status')
        if status == 'approved':
            stats['approved'] += 1
        elif status == 'rejected':
            stats['rejected'] += 1
        else:
            stats['pending'] += 1

        created = to_datetime(
            receipt.get('created_date') or receipt.get('updated_date') or receipt.get('date')
        )
        if created and (stats['last_upload'] is None or created > stats['last_upload']):
            stats['last_upload'] = created

    return stats


def stats_from_batch(batch: Dict[str, Any]) -> Dict[str, Any]:
    """Rebuild receipt statistics from a batch's cached counters."""
    total = int(parse_number(batch.get('total_receipts')))
    processed = int(parse_number(batch.get('processed_receipts')))
    rejected = int(parse_number(batch.get('rejected_receipts')))

    return {
        'total': total,
        'approved': max(processed - rejected, 0),
        'pending': max(total - processed, 0),
        'rejected': rejected,
        'last_upload': (
            to_datetime(batch.get('last_upload_at'))
            or to_datetime(batch.get('updated_date'))
            or to_datetime(batch.get('created_date'))
        ),
    }


def compute_stage(
    stored_stage: Optional[str],
    status: Optional[str],
    stats: Dict[str, Any],
    last_upload: Optional[datetime],
    now: Optional[datetime] = None
) -> str:
    """Derive the lifecycle stage; see the module docstring for the rules."""
    if stored_stage == 'completed' or status == 'completed':
        return 'completed'
    if stats['total'] == 0:
        return 'draft'
    if stats['pending'] == 0:
        return 'ready_to_close'

    if last_upload and (now or utcnow()) - last_upload >= REMINDER_DELAY:
        return 'waiting'

    return 'collecting'


def approved_totals(receipts: List[Dict[str, Any]]) -> Tuple[float, float]:
    """Income and expense totals over approved receipts."""
    approved = [r for r in receipts if r.get('status') == 'approved']

    income_total = math.fsum(
        parse_number(r.get('total_amount')) for r in approved if r.get('type') == 'income'
    )
    expense_total = math.fsum(
        parse_number(r.get('total_amount')) for r in approved if r.get('type') != 'income'
    )

    return round2(income_total), round2(expense_total)


def _serialize_stats(stats: Dict[str, Any]) -> Dict[str, Any]:
    return {**stats, 'last_upload': format_iso(stats['last_upload'])}


def enrich_batch_lifecycle(
    batch: Optional[Dict[str, Any]],
    receipts: Optional[List[Dict[str, Any]]] = None,
    now: Optional[datetime] = None
) -> Optional[Dict[str, Any]]:
    """
    Project a batch's derived lifecycle fields without touching storage.

    Args:
        batch: Stored batch record
        receipts: The batch's receipts; when omitted the cached counters are used
        now: Reference time for the reminder delay (default: now)

    Returns:
        A new dictionary: the batch merged with its period window, stage,
        timestamps, totals and ``derived_stats``
    """
    if batch is None:
        return None

    if receipts is not None:
        stats = stats_from_receipts(receipts)
    else:
        stats = stats_from_batch(batch)

    last_upload = stats['last_upload'] or to_datetime(batch.get('last_upload_at'))

    stage = compute_stage(
        stored_stage=batch.get('lifecycle_stage'),
        status=batch.get('status'),
        stats=stats,
        last_upload=last_upload,
        now=now
    )

    if batch.get('next_reminder_at'):
        next_reminder_at = batch['next_reminder_at']
    else:
        next_reminder_at = format_iso(last_upload + REMINDER_DELAY) if last_upload else None

    if receipts is not None:
        income_total, expense_total = approved_totals(receipts)
    else:
        income_total = parse_number(batch.get('income_total'))
        expense_total = parse_number(batch.get('expense_total'))

    return {
        **batch,
        **ensure_period_meta(batch),
        'lifecycle_stage': stage,
        'last_upload_at': format_iso(last_upload),
        'next_reminder_at': next_reminder_at,
        'derived_stats': _serialize_stats(stats),
        'income_total': income_total,
        'expense_total': expense_total,
        'total_receipts': stats['total'],
        'processed_receipts': stats['total'] - stats['pending'],
    }


class LifecycleService:
    """Recomputes and persists a batch's lifecycle snapshot."""

    def __init__(
        self,
        receipts_table: Optional[DynamoDBClient] = None,
        batches_table: Optional[DynamoDBClient] = None
    ):
        """Initialize lifecycle service."""
        self.receipts_table = receipts_table or DynamoDBClient(os.environ.get('RECEIPTS_TABLE'))
        self.batches_table = batches_table or DynamoDBClient(os.environ.get('BATCHES_TABLE'))

    def list_batch_receipts(self, batch_id: str) -> List[Dict[str, Any]]:
        """Every receipt of a batch, across all result pages."""
        return self.receipts_table.query_all(Key('batch_id').eq(batch_id))

    def update_batch_lifecycle_snapshot(
        self,
        batch_id: str,
        current_status: Optional[str] = None,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Recompute a batch's aggregates from its receipts and store them.

        Must run after every receipt create, update or delete.

        Args:
            batch_id: Batch ID
            current_status: The batch's status before the change
            expected_version: When given, only write if the stored version matches
            now: Reference time (default: now)

        Returns:
            The computed snapshot

        Raises:
            ConflictError: If the batch is missing or its version changed
            DatabaseError: If reading receipts or writing the batch fails
        """
        now = now or utcnow()

        receipts = self.list_batch_receipts(batch_id)
        stats = stats_from_receipts(receipts)

        income_total, expense_total = approved_totals(receipts)
        total_amount = round2(income_total + expense_total)

        last_upload = stats['last_upload']
        reminder = last_upload + REMINDER_DELAY if last_upload else None

        if current_status == 'completed':
            status = 'completed'
        elif not receipts:
            status = 'open'
        else:
            status = 'processing'

        if status == 'completed':
            lifecycle_stage = 'completed'
        else:
            lifecycle_stage = compute_stage(None, status, stats, last_upload, now)

        fields = {
            'total_receipts': stats['total'],
            'processed_receipts': stats['total'] - stats['pending'],
            'rejected_receipts': stats['rejected'],
            'total_amount': total_amount,
            'income_total': income_total,
            'expense_total': expense_total,
            'last_upload_at': format_iso(last_upload),
            'next_reminder_at': format_iso(reminder),
            'lifecycle_stage': lifecycle_stage,
            'status': status,
            'updated_date': format_iso(now),
        }

        condition = "attribute_exists(batch_id)"
        condition_values = {}
        if expected_version is not None:
            condition += " AND (attribute_not_exists(#version) OR #version = :expected_version)"
            condition_values[':expected_version'] = expected_version

        self.batches_table.update_fields(
            key={'batch_id': batch_id},
            fields=fields,
            condition_expression=condition,
            condition_values=condition_values,
            increment='version'
        )

        logger.info(
            f"Batch {batch_id} snapshot: {stats['total']} receipts, "
            f"stage {lifecycle_stage}, status {status}"
        )

        return LifecycleSnapshot(
            total_amount=total_amount,
            income_total=income_total,
            expense_total=expense_total,
            stats=_serialize_stats(stats),
            lifecycle_stage=lifecycle_stage,
            status=status
        ).model_dump()
