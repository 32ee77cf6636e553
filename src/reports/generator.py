"""Batch report generation."""

import os
import math
from typing import Dict, Any, List, Optional
from collections import defaultdict
import logging
from io import StringIO
import csv

from boto3.dynamodb.conditions import Key

from shared.dynamodb import DynamoDBClient
from shared.exceptions import NotFoundError
from ledger.calculations import parse_number, round2
from batches.lifecycle import enrich_batch_lifecycle, format_iso, utcnow

logger = logging.getLogger(__name__)
logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO'))

# Estimated income tax on profit
ESTIMATED_TAX_RATE = 0.23


def _total(receipts: List[Dict[str, Any]], field: str) -> float:
    return round2(math.fsum(parse_number(r.get(field)) for r in receipts))


class ReportGenerator:
    """Service for generating batch summary and VAT reports."""

    def __init__(
        self,
        batches_table: Optional[DynamoDBClient] = None,
        receipts_table: Optional[DynamoDBClient] = None
    ):
        """Initialize report generator."""
        self.batches_table = batches_table or DynamoDBClient(os.environ.get('BATCHES_TABLE'))
        self.receipts_table = receipts_table or DynamoDBClient(os.environ.get('RECEIPTS_TABLE'))

    def _load(self, batch_id: str):
        batch = self.batches_table.get_item({'batch_id': batch_id})

        if not batch:
            raise NotFoundError(f"Batch {batch_id} not found")

        receipts = self.receipts_table.query_all(Key('batch_id').eq(batch_id))
        return batch, receipts

    def generate_batch_report(self, batch_id: str) -> Dict[str, Any]:
        """
        Generate the summary report of a batch.

        Only approved receipts are counted; pending ones are reported by number.

        Args:
            batch_id: Batch ID

        Returns:
            Report data

        Raises:
            NotFoundError: If batch not found
        """
        batch, receipts = self._load(batch_id)
        enriched = enrich_batch_lifecycle(batch, receipts=receipts)

        approved = [r for r in receipts if r.get('status') == 'approved']
        income = [r for r in approved if r.get('type') == 'income']
        expenses = [r for r in approved if r.get('type') != 'income']

        total_income = _total(income, 'total_amount')
        total_expense = _total(expenses, 'total_amount')
        vat_collected = _total(income, 'vat_amount')
        vat_paid = _total(expenses, 'vat_amount')
        profit = round2(total_income - total_expense)

        by_category = defaultdict(float)
        for receipt in expenses:
            by_category[receipt.get('category') or 'other'] += parse_number(receipt.get('total_amount'))

        expenses_by_category = [
            {'category': category, 'amount': round2(amount)}
            for category, amount in sorted(by_category.items(), key=lambda x: x[1], reverse=True)
        ]

        report = {
            'batch_id': batch_id,
            'batch_name': enriched.get('batch_name'),
            'customer_name': enriched.get('customer_name'),
            'period_label': enriched['period_label'],
            'period_start': enriched['period_start'],
            'period_end': enriched['period_end'],
            'lifecycle_stage': enriched['lifecycle_stage'],
            'generated_at': format_iso(utcnow()),
            'summary': {
                'total_income': total_income,
                'total_expense': total_expense,
                'vat_collected': vat_collected,
                'vat_paid': vat_paid,
                # Positive is owed, negative is a refund
                'net_vat': round2(vat_collected - vat_paid),
                'profit': profit,
                'estimated_tax': round2(max(0.0, profit * ESTIMATED_TAX_RATE)),
                'approved_count': len(approved),
                'pending_count': enriched['derived_stats']['pending'],
                'rejected_count': enriched['derived_stats']['rejected'],
            },
            'expenses_by_category': expenses_by_category,
            'receipts': [
                {
                    'receipt_id': r.get('receipt_id'),
                    'date': r.get('date'),
                    'vendor_name': r.get('vendor_name'),
                    'type': r.get('type', 'expense'),
                    'category': r.get('category'),
                    'total_amount': round2(r.get('total_amount')),
                    'vat_amount': round2(r.get('vat_amount')),
                }
                for r in sorted(approved, key=lambda x: x.get('date') or '')
            ]
        }

        logger.info(f"Generated report for batch {batch_id}: {len(approved)} approved receipts")
        return report

    def export_to_csv(self, batch_id: str) -> str:
        """
        Export a batch's receipts to CSV format.

        Args:
            batch_id: Batch ID

        Returns:
            CSV content as string

        Raises:
            NotFoundError: If batch not found
        """
        _, receipts = self._load(batch_id)

        output = StringIO()
        writer = csv.writer(output)

        # Write header
        writer.writerow([
            'Date',
            'Vendor',
            'Receipt Number',
            'Type',
            'Status',
            'Category',
            'Payment Method',
            'Currency',
            'VAT',
            'Total',
            'Items',
            'Receipt ID'
        ])

        for receipt in sorted(receipts, key=lambda x: x.get('date') or ''):
            items_str = '; '.join([
                item.get('description', '')
                for item in receipt.get('line_items', [])
                if item
            ])

            writer.writerow([
                receipt.get('date', ''),
                receipt.get('vendor_name', ''),
                receipt.get('receipt_number', ''),
                receipt.get('type', 'expense'),
                receipt.get('status', 'pending'),
                receipt.get('category', ''),
                receipt.get('payment_method', ''),
                receipt.get('currency', ''),
                f"{round2(receipt.get('vat_amount')):.2f}",
                f"{round2(receipt.get('total_amount')):.2f}",
                items_str,
                receipt.get('receipt_id', '')
            ])

        csv_content = output.getvalue()
        output.close()

        return csv_content
