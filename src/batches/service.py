"""Batch service for managing receipt periods."""

import os
import uuid
from typing import Dict, Any, Optional
import logging
from boto3.dynamodb.conditions import Key

from shared.dynamodb import DynamoDBClient
from shared.validators import EDITABLE_BATCH_FIELDS, validate_period, sanitize_string
from shared.exceptions import ValidationError, NotFoundError
from batches.models import Batch, BatchCreate
from batches.lifecycle import (
    LifecycleService,
    enrich_batch_lifecycle,
    format_iso,
    get_default_period_meta,
    get_next_period_meta,
    utcnow,
)

logger = logging.getLogger(__name__)
logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO'))


class BatchService:
    """Service for managing batches and their cached lifecycle state."""

    def __init__(
        self,
        batches_table: Optional[DynamoDBClient] = None,
        receipts_table: Optional[DynamoDBClient] = None,
        lifecycle: Optional[LifecycleService] = None
    ):
        """Initialize batch service."""
        self.batches_table = batches_table or DynamoDBClient(os.environ.get('BATCHES_TABLE'))
        self.receipts_table = receipts_table or DynamoDBClient(os.environ.get('RECEIPTS_TABLE'))
        self.lifecycle = lifecycle or LifecycleService(
            receipts_table=self.receipts_table,
            batches_table=self.batches_table
        )

    def create_batch(
        self,
        batch_name: str,
        customer_name: Optional[str] = None,
        notes: Optional[str] = None,
        period_start: Optional[str] = None,
        period_end: Optional[str] = None,
        period_label: Optional[str] = None,
        previous_batch_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a new batch.

        Missing period fields are filled from the month after the previous
        batch when ``previous_batch_id`` is given, else from the current month.

        Args:
            batch_name: Display name
            customer_name: Optional customer name
            notes: Optional notes
            period_start: Optional ISO start of the period
            period_end: Optional ISO end of the period
            period_label: Optional period label
            previous_batch_id: Optional batch this one follows

        Returns:
            Created batch, enriched with lifecycle fields

        Raises:
            ValidationError: If the name is empty or the period is inverted
            NotFoundError: If the previous batch does not exist
        """
        request = BatchCreate(
            batch_name=sanitize_string(batch_name or "", max_length=200),
            customer_name=customer_name,
            notes=notes,
            period_start=period_start,
            period_end=period_end,
            period_label=period_label
        )

        if not request.batch_name:
            raise ValidationError("Batch name is required")

        if previous_batch_id:
            default_period = get_next_period_meta(self._get_stored_batch(previous_batch_id))
        else:
            default_period = get_default_period_meta()

        period = {
            'period_start': request.period_start or default_period['period_start'],
            'period_end': request.period_end or default_period['period_end'],
            'period_label': request.period_label or default_period['period_label'],
        }
        validate_period(period['period_start'], period['period_end'])

        now = format_iso(utcnow())
        batch = Batch(
            batch_id=str(uuid.uuid4()),
            batch_name=request.batch_name,
            customer_name=request.customer_name,
            notes=request.notes,
            status='open',
            lifecycle_stage='draft',
            created_date=now,
            updated_date=now,
            **period
        ).model_dump()

        self.batches_table.put_item(batch)
        logger.info(f"Created batch {batch['batch_id']} ({batch['period_label']})")

        return enrich_batch_lifecycle(batch, receipts=[])

    def _get_stored_batch(self, batch_id: str) -> Dict[str, Any]:
        batch = self.batches_table.get_item({'batch_id': batch_id})

        if not batch:
            raise NotFoundError(f"Batch {batch_id} not found")

        return batch

    def get_batch(self, batch_id: str, include_receipts: bool = True) -> Dict[str, Any]:
        """
        Get batch by ID.

        Args:
            batch_id: Batch ID
            include_receipts: Derive stats from the receipts rather than cached counters

        Returns:
            Enriched batch; with ``include_receipts`` it also carries ``receipts``

        Raises:
            NotFoundError: If batch not found
        """
        batch = self._get_stored_batch(batch_id)

        if not include_receipts:
            return enrich_batch_lifecycle(batch)

        receipts = self.lifecycle.list_batch_receipts(batch_id)
        enriched = enrich_batch_lifecycle(batch, receipts=receipts)
        enriched['receipts'] = receipts

        return enriched

    def list_batches(self) -> Dict[str, Any]:
        """
        List all batches, newest first, grouped by lifecycle.

        Returns:
            Dictionary with ``batches`` and the ``open``, ``processing`` and
            ``completed`` groups
        """
        batches = [enrich_batch_lifecycle(batch) for batch in self.batches_table.scan_all()]
        batches.sort(key=lambda b: b.get('created_date') or '', reverse=True)

        groups = {'open': [], 'processing': [], 'completed': []}

        for batch in batches:
            groups[self._group_of(batch)].append(batch)

        return {
            'batches': batches,
            'count': len(batches),
            **groups
        }

    @staticmethod
    def _group_of(batch: Dict[str, Any]) -> str:
        stage = batch.get('lifecycle_stage')
        status = batch.get('status')

        if stage == 'completed' or status == 'completed':
            return 'completed'
        if stage == 'draft' or status == 'open':
            return 'open'
        return 'processing'

    def update_batch(self, batch_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update a batch's descriptive fields.

        Args:
            batch_id: Batch ID
            updates: Fields to update; only name, customer, notes and period are editable

        Returns:
            Updated batch, enriched from its cached counters

        Raises:
            NotFoundError: If batch not found
            ValidationError: If validation fails
        """
        batch = self._get_stored_batch(batch_id)

        ignored = sorted(set(updates) - set(EDITABLE_BATCH_FIELDS))
        if ignored:
            logger.warning(f"Ignoring non-editable batch fields for {batch_id}: {', '.join(ignored)}")

        fields = {k: v for k, v in updates.items() if k in EDITABLE_BATCH_FIELDS}
        if not fields:
            raise ValidationError("No editable fields to update")

        if 'batch_name' in fields:
            fields['batch_name'] = sanitize_string(fields['batch_name'] or "", max_length=200)
            if not fields['batch_name']:
                raise ValidationError("Batch name is required")

        validate_period(
            fields.get('period_start', batch.get('period_start')),
            fields.get('period_end', batch.get('period_end'))
        )

        fields['updated_date'] = format_iso(utcnow())

        updated = self.batches_table.update_fields(key={'batch_id': batch_id}, fields=fields)
        logger.info(f"Updated batch {batch_id}")

        return enrich_batch_lifecycle(updated)

    def finalize_batch(self, batch_id: str) -> Dict[str, Any]:
        """
        Close a batch. Completed is terminal: later receipt changes keep it completed.

        Args:
            batch_id: Batch ID

        Returns:
            Finalized batch

        Raises:
            NotFoundError: If batch not found
        """
        self._get_stored_batch(batch_id)

        now = utcnow()
        updated = self.batches_table.update_fields(
            key={'batch_id': batch_id},
            fields={
                'status': 'completed',
                'lifecycle_stage': 'completed',
                'finalized_date': now.strftime('%Y-%m-%d'),
                'updated_date': format_iso(now),
            },
            increment='version'
        )

        logger.info(f"Finalized batch {batch_id}")
        return enrich_batch_lifecycle(updated)

    def delete_batch(self, batch_id: str) -> int:
        """
        Delete a batch and all of its receipts.

        Args:
            batch_id: Batch ID

        Returns:
            Number of receipts deleted

        Raises:
            NotFoundError: If batch not found
        """
        self._get_stored_batch(batch_id)

        receipts = self.receipts_table.query_all(Key('batch_id').eq(batch_id))
        keys = [{'batch_id': batch_id, 'receipt_id': r['receipt_id']} for r in receipts]

        if keys:
            self.receipts_table.batch_delete(keys)

        self.batches_table.delete_item({'batch_id': batch_id})

        logger.info(f"Deleted batch {batch_id} with {len(keys)} receipts")
        return len(keys)

