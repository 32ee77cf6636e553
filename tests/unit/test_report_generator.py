"""Unit tests for report generator."""

import csv
import io
import pytest
from unittest.mock import Mock, patch
import sys
import os

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from reports.generator import ReportGenerator
from shared.exceptions import NotFoundError


class TestReportGenerator:
    """Test cases for ReportGenerator."""

    @pytest.fixture
    def report_generator(self):
        """Create report generator instance with mocked DynamoDB."""
        with patch('reports.generator.DynamoDBClient'):
            generator = ReportGenerator()
            generator.batches_table = Mock()
            generator.receipts_table = Mock()
            return generator

    @pytest.fixture
    def sample_batch(self):
        """Sample batch."""
        return {
            'batch_id': 'batch123',
            'batch_name': 'March',
            'customer_name': 'Acme',
            'status': 'processing',
            'period_start': '2024-03-01T00:00:00.000Z',
            'period_end': '2024-03-31T23:59:59.999Z',
            'period_label': 'Period March 2024',
            'created_date': '2024-03-01T08:00:00.000Z'
        }

    @pytest.fixture
    def sample_receipts(self):
        """Sample receipts data."""
        return [
            {
                'receipt_id': 'r1', 'type': 'income', 'status': 'approved',
                'vendor_name': 'Client A', 'category': 'sales', 'date': '2024-03-04',
                'total_amount': 1180.0, 'vat_amount': 180.0, 'line_items': []
            },
            {
                'receipt_id': 'r2', 'type': 'expense', 'status': 'approved',
                'vendor_name': 'Paz', 'category': 'fuel', 'date': '2024-03-02',
                'total_amount': 236.0, 'vat_amount': 36.0, 'line_items': []
            },
            {
                'receipt_id': 'r3', 'type': 'expense', 'status': 'approved',
                'vendor_name': 'Office Depot', 'category': 'office', 'date': '2024-03-03',
                'total_amount': 59.0, 'vat_amount': 9.0,
                'line_items': [{'description': 'Paper', 'quantity': 1, 'unit_price': 50, 'total': 50}]
            },
            {
                'receipt_id': 'r4', 'type': 'expense', 'status': 'approved',
                'vendor_name': 'Sonol', 'date': '2024-03-05',
                'total_amount': 118.0, 'vat_amount': 18.0, 'line_items': []
            },
            {
                'receipt_id': 'r5', 'type': 'expense', 'status': 'pending',
                'vendor_name': 'Unknown', 'category': 'fuel', 'date': '2024-03-06',
                'total_amount': 500.0, 'vat_amount': 0, 'line_items': []
            },
            {
                'receipt_id': 'r6', 'type': 'income', 'status': 'rejected',
                'vendor_name': 'Client B', 'date': '2024-03-07',
                'total_amount': 99.0, 'vat_amount': 0, 'line_items': []
            }
        ]

    def test_generate_batch_report(self, report_generator, sample_batch, sample_receipts):
        """Test the batch summary."""
        report_generator.batches_table.get_item.return_value = sample_batch
        report_generator.receipts_table.query_all.return_value = sample_receipts

        report = report_generator.generate_batch_report('batch123')
        summary = report['summary']

        assert report['period_label'] == 'Period March 2024'
        assert summary['total_income'] == 1180.0
        assert summary['total_expense'] == 413.0
        assert summary['vat_collected'] == 180.0
        assert summary['vat_paid'] == 63.0
        assert summary['net_vat'] == 117.0
        assert summary['profit'] == 767.0
        assert summary['estimated_tax'] == 176.41
        assert summary['approved_count'] == 4
        assert summary['pending_count'] == 1
        assert summary['rejected_count'] == 1

    def test_expenses_by_category_sorted(self, report_generator, sample_batch, sample_receipts):
        """Test category breakdown of approved expenses."""
        report_generator.batches_table.get_item.return_value = sample_batch
        report_generator.receipts_table.query_all.return_value = sample_receipts

        report = report_generator.generate_batch_report('batch123')

        assert report['expenses_by_category'] == [
            {'category': 'fuel', 'amount': 236.0},
            {'category': 'other', 'amount': 118.0},
            {'category': 'office', 'amount': 59.0}
        ]
        assert [r['receipt_id'] for r in report['receipts']] == ['r2', 'r3', 'r1', 'r4']

    def test_loss_has_no_estimated_tax(self, report_generator, sample_batch):
        """Test that a loss is not taxed."""
        report_generator.batches_table.get_item.return_value = sample_batch
        report_generator.receipts_table.query_all.return_value = [
            {'receipt_id': 'r1', 'type': 'expense', 'status': 'approved', 'total_amount': 100.0, 'vat_amount': 0}
        ]

        report = report_generator.generate_batch_report('batch123')

        assert report['summary']['profit'] == -100.0
        assert report['summary']['estimated_tax'] == 0.0

    def test_batch_not_found(self, report_generator):
        """Test reporting on a missing batch."""
        report_generator.batches_table.get_item.return_value = None

        with pytest.raises(NotFoundError):
            report_generator.generate_batch_report('missing')

    def test_export_to_csv(self, report_generator, sample_batch, sample_receipts):
        """Test CSV export of every receipt."""
        report_generator.batches_table.get_item.return_value = sample_batch
        report_generator.receipts_table.query_all.return_value = sample_receipts

        csv_content = report_generator.export_to_csv('batch123')
        rows = list(csv.reader(io.StringIO(csv_content)))

        assert rows[0][:4] == ['Date', 'Vendor', 'Receipt Number', 'Type']
        assert len(rows) == 7
        assert rows[1][1] == 'Paz'
        assert rows[2][9] == '59.00'
        assert rows[2][10] == 'Paper'


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
