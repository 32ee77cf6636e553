"""Receipt service for managing receipts within a batch."""

import os
import uuid
from typing import Dict, Any, List, Optional, Tuple
import logging

import pydantic
from boto3.dynamodb.conditions import Key

from shared.dynamodb import DynamoDBClient
from shared.validators import (
    validate_receipt_type,
    validate_receipt_status,
    validate_date,
    sanitize_string
)
from shared.exceptions import ValidationError, NotFoundError, ConflictError
from ledger.calculations import DEFAULT_VAT_PERCENT, recalculate_receipt, validate_receipt
from receipts.models import Receipt, ReceiptData
from batches.lifecycle import LifecycleService, format_iso, utcnow

logger = logging.getLogger(__name__)
logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO'))

# Fields fixed at creation
IMMUTABLE_FIELDS = ['batch_id', 'receipt_id', 'created_date']


class ReceiptService:
    """Service for managing receipts and keeping their batch snapshot current."""

    def __init__(
        self,
        receipts_table: Optional[DynamoDBClient] = None,
        batches_table: Optional[DynamoDBClient] = None,
        lifecycle: Optional[LifecycleService] = None
    ):
        """Initialize receipt service."""
        self.receipts_table = receipts_table or DynamoDBClient(os.environ.get('RECEIPTS_TABLE'))
        self.batches_table = batches_table or DynamoDBClient(os.environ.get('BATCHES_TABLE'))
        self.lifecycle = lifecycle or LifecycleService(
            receipts_table=self.receipts_table,
            batches_table=self.batches_table
        )
        self.vat_percent = float(os.environ.get('VAT_PERCENT', DEFAULT_VAT_PERCENT))
        self.default_currency = os.environ.get('DEFAULT_CURRENCY', 'ILS')

    def _get_batch(self, batch_id: str) -> Dict[str, Any]:
        batch = self.batches_table.get_item({'batch_id': batch_id})

        if not batch:
            raise NotFoundError(f"Batch {batch_id} not found")

        return batch

    def _snapshot(self, batch: Dict[str, Any]) -> Dict[str, Any]:
        completed = batch.get('status') == 'completed' or batch.get('lifecycle_stage') == 'completed'

        return self.lifecycle.update_batch_lifecycle_snapshot(
            batch['batch_id'],
            current_status='completed' if completed else batch.get('status'),
            expected_version=batch.get('version')
        )

    def _refresh_batch(self, batch: Dict[str, Any]) -> Dict[str, Any]:
        """
        Recompute the batch snapshot; a completed batch stays completed.

        The write is conditional on the version read with ``batch``. When
        another writer got there first the batch is read again and the
        snapshot retried once.

        Raises:
            ConflictError: If the batch changed again during the retry
        """
        try:
            return self._snapshot(batch)
        except ConflictError:
            logger.warning(f"Batch {batch['batch_id']} changed concurrently; retrying snapshot")
            return self._snapshot(self._get_batch(batch['batch_id']))

    def _prepare(self, data: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        Validate receipt data and bring its totals in line with its line items.

        Returns:
            Tuple of the cleaned receipt fields and the consistency check result

        Raises:
            ValidationError: If a field has an invalid value
        """
        data = dict(data)
        data['type'] = validate_receipt_type(data.get('type'))
        data['status'] = validate_receipt_status(data.get('status') or 'pending')

        if data.get('date'):
            data['date'] = validate_date(data['date'])

        for field in ('vendor_name', 'receipt_number', 'category', 'payment_method'):
            if isinstance(data.get(field), str):
                data[field] = sanitize_string(data[field], max_length=200)

        if isinstance(data.get('notes'), str):
            data['notes'] = sanitize_string(data['notes'], max_length=1000)

        try:
            receipt = ReceiptData(**data).model_dump()
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid receipt data: {e.errors()[0]['msg']}")

        receipt['currency'] = receipt.get('currency') or self.default_currency

        if receipt['line_items']:
            receipt = recalculate_receipt(receipt)

        validation = validate_receipt(receipt)
        if not validation['is_valid']:
            logger.warning(f"Receipt totals inconsistent: {'; '.join(validation['issues'])}")

        return receipt, validation

    def preview_receipt(
        self,
        data: Dict[str, Any],
        recalculate_item_totals: bool = False,
        recalculate_vat: bool = False,
        vat_percent: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Recalculate a receipt under review without saving it.

        Args:
            data: Receipt data being edited
            recalculate_item_totals: Overwrite item totals with quantity x unit price
            recalculate_vat: Overwrite VAT from the subtotal
            vat_percent: VAT rate (default: VAT_PERCENT)

        Returns:
            Recalculated receipt data with a ``validation`` result
        """
        recalculated = recalculate_receipt(
            data,
            recalculate_item_totals=recalculate_item_totals,
            recalculate_vat=recalculate_vat,
            vat_percent=self.vat_percent if vat_percent is None else vat_percent
        )

        return {**recalculated, 'validation': validate_receipt(recalculated)}

    def create_receipt(self, batch_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a receipt in a batch.

        Args:
            batch_id: Batch ID
            data: Receipt fields

        Returns:
            Created receipt with a ``validation`` result

        Raises:
            NotFoundError: If batch not found
            ValidationError: If validation fails
        """
        batch = self._get_batch(batch_id)
        fields, validation = self._prepare(data)

        now = format_iso(utcnow())
        receipt = Receipt(
            **fields,
            batch_id=batch_id,
            receipt_id=str(uuid.uuid4()),
            created_date=now,
            updated_date=now
        ).model_dump()

        self.receipts_table.put_item(receipt)
        logger.info(f"Created receipt {receipt['receipt_id']} in batch {batch_id}")

        self._refresh_batch(batch)

        return {**receipt, 'validation': validation}

    def get_receipt(self, batch_id: str, receipt_id: str) -> Dict[str, Any]:
        """
        Get receipt by ID.

        Raises:
            NotFoundError: If receipt not found
        """
        receipt = self.receipts_table.get_item({
            'batch_id': batch_id,
            'receipt_id': receipt_id
        })

        if not receipt:
            raise NotFoundError(f"Receipt {receipt_id} not found")

        return receipt

    def list_receipts(self, batch_id: str, order_by: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        List all receipts of a batch.

        Args:
            batch_id: Batch ID
            order_by: Optional field to sort by; prefix with ``-`` for descending

        Returns:
            Receipts; those without the sort field come last
        """
        receipts = self.receipts_table.query_all(Key('batch_id').eq(batch_id))

        if not order_by:
            return receipts

        descending = order_by.startswith('-')
        field = order_by.lstrip('-')

        present = [r for r in receipts if r.get(field) is not None]
        missing = [r for r in receipts if r.get(field) is None]
        present.sort(key=lambda r: r[field], reverse=descending)

        return present + missing

    def _update(
        self,
        batch_id: str,
        receipt_id: str,
        updates: Dict[str, Any],
        existing: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        existing = existing or self.get_receipt(batch_id, receipt_id)

        editable = {k: v for k, v in updates.items() if k not in IMMUTABLE_FIELDS}
        merged = {k: v for k, v in {**existing, **editable}.items() if k in ReceiptData.model_fields}

        fields, validation = self._prepare(merged)
        fields['updated_date'] = format_iso(utcnow())

        updated = self.receipts_table.update_fields(
            key={'batch_id': batch_id, 'receipt_id': receipt_id},
            fields=fields
        )

        return {**updated, 'validation': validation}

    def update_receipt(self, batch_id: str, receipt_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update a receipt.

        Args:
            batch_id: Batch ID
            receipt_id: Receipt ID
            updates: Fields to update; the IDs and creation date are ignored

        Returns:
            Updated receipt with a ``validation`` result

        Raises:
            NotFoundError: If the batch or receipt is not found
            ValidationError: If validation fails
        """
        batch = self._get_batch(batch_id)
        updated = self._update(batch_id, receipt_id, updates)

        logger.info(f"Updated receipt {receipt_id} in batch {batch_id}")
        self._refresh_batch(batch)

        return updated

    def delete_receipt(self, batch_id: str, receipt_id: str) -> None:
        """
        Delete a receipt.

        Raises:
            NotFoundError: If the batch or receipt is not found
        """
        batch = self._get_batch(batch_id)
        self.get_receipt(batch_id, receipt_id)

        self.receipts_table.delete_item({
            'batch_id': batch_id,
            'receipt_id': receipt_id
        })

        logger.info(f"Deleted receipt {receipt_id} from batch {batch_id}")
        self._refresh_batch(batch)

    def approve_receipt(
        self,
        batch_id: str,
        receipt_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Approve a receipt after review.

        Without ``receipt_id`` the reviewed data is saved as a new approved receipt.

        Args:
            batch_id: Batch ID
            receipt_id: Optional existing receipt ID
            data: Optional corrected receipt fields

        Returns:
            Approved receipt with a ``validation`` result
        """
        approved = {**(data or {}), 'status': 'approved'}

        if receipt_id:
            return self.update_receipt(batch_id, receipt_id, approved)
        return self.create_receipt(batch_id, approved)

    def reject_receipt(self, batch_id: str, receipt_id: str) -> Dict[str, Any]:
        """Mark a receipt rejected."""
        return self.update_receipt(batch_id, receipt_id, {'status': 'rejected'})

    def bulk_update_status(self, batch_id: str, receipt_ids: List[str], status: str) -> List[Dict[str, Any]]:
        """
        Set the status of many receipts, refreshing the batch once.

        Every receipt is read before any is written, so an unknown ID
        changes nothing.

        Args:
            batch_id: Batch ID
            receipt_ids: Receipt IDs; repeats are applied once
            status: New status

        Returns:
            Updated receipts

        Raises:
            NotFoundError: If the batch or any receipt is not found
            ValidationError: If the status is invalid
        """
        status = validate_receipt_status(status)
        batch = self._get_batch(batch_id)

        existing = [
            (receipt_id, self.get_receipt(batch_id, receipt_id))
            for receipt_id in dict.fromkeys(receipt_ids)
        ]

        updated = []
        try:
            for receipt_id, receipt in existing:
                updated.append(self._update(batch_id, receipt_id, {'status': status}, existing=receipt))
        finally:
            # Receipts already written must be reflected even if a later write failed
            if updated:
                self._refresh_batch(batch)

        logger.info(f"Set {len(updated)} receipts in batch {batch_id} to {status}")
        return updated

    def bulk_delete(self, batch_id: str, receipt_ids: List[str]) -> int:
        """
        Delete many receipts, refreshing the batch once.

        IDs that are repeated or not in the batch are skipped.

        Returns:
            Number of receipts deleted
        """
        batch = self._get_batch(batch_id)

        stored = {r['receipt_id'] for r in self.receipts_table.query_all(Key('batch_id').eq(batch_id))}
        keys = [
            {'batch_id': batch_id, 'receipt_id': receipt_id}
            for receipt_id in dict.fromkeys(receipt_ids)
            if receipt_id in stored
        ]

        skipped = len(set(receipt_ids)) - len(keys)
        if skipped:
            logger.warning(f"Skipping {skipped} receipts not found in batch {batch_id}")

        if keys:
            self.receipts_table.batch_delete(keys)
            self._refresh_batch(batch)

        logger.info(f"Deleted {len(keys)} receipts from batch {batch_id}")
        return len(keys)
