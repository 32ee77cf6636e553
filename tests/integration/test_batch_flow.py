"""Integration tests for the batch review flow."""

import pytest
from moto import mock_aws
import boto3
import sys
import os

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from shared.dynamodb import DynamoDBClient
from shared.exceptions import ConflictError, NotFoundError
from batches.service import BatchService
from receipts.service import ReceiptService
from reports.generator import ReportGenerator


@pytest.fixture
def aws_credentials():
    """Mock AWS Credentials for moto."""
    os.environ['AWS_ACCESS_KEY_ID'] = 'testing'
    os.environ['AWS_SECRET_ACCESS_KEY'] = 'testing'
    os.environ['AWS_SECURITY_TOKEN'] = 'testing'
    os.environ['AWS_SESSION_TOKEN'] = 'testing'
    os.environ['AWS_DEFAULT_REGION'] = 'us-east-1'


@pytest.fixture
def dynamodb(aws_credentials):
    """Create mock DynamoDB tables."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')

        dynamodb.create_table(
            TableName='test-batches',
            KeySchema=[
                {'AttributeName': 'batch_id', 'KeyType': 'HASH'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'batch_id', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        dynamodb.create_table(
            TableName='test-receipts',
            KeySchema=[
                {'AttributeName': 'batch_id', 'KeyType': 'HASH'},
                {'AttributeName': 'receipt_id', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'batch_id', 'AttributeType': 'S'},
                {'AttributeName': 'receipt_id', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield dynamodb


@pytest.fixture
def services(dynamodb):
    """Services wired to the mock tables."""
    batches_table = DynamoDBClient('test-batches', dynamodb=dynamodb)
    receipts_table = DynamoDBClient('test-receipts', dynamodb=dynamodb)

    batch_service = BatchService(batches_table=batches_table, receipts_table=receipts_table)
    receipt_service = ReceiptService(
        receipts_table=receipts_table,
        batches_table=batches_table,
        lifecycle=batch_service.lifecycle
    )
    report_generator = ReportGenerator(batches_table=batches_table, receipts_table=receipts_table)

    return batch_service, receipt_service, report_generator


def paper_receipt(**overrides):
    receipt = {
        'vendor_name': 'Office Depot',
        'date': '2024-03-05',
        'category': 'office',
        'line_items': [{'description': 'Paper', 'quantity': 2, 'unit_price': 10, 'total': 20}],
        'vat_amount': 3.6
    }
    receipt.update(overrides)
    return receipt


class TestBatchFlow:
    """End-to-end batch lifecycle over DynamoDB."""

    def test_review_flow(self, services):
        """Test a batch from creation through review to finalization."""
        batch_service, receipt_service, report_generator = services

        batch = batch_service.create_batch('March', customer_name='Acme')
        batch_id = batch['batch_id']
        assert batch['lifecycle_stage'] == 'draft'

        first = receipt_service.create_receipt(batch_id, paper_receipt())
        second = receipt_service.create_receipt(
            batch_id,
            paper_receipt(type='income', vendor_name='Client A', vat_amount=0, line_items=[], total_amount=500)
        )
        assert first['total_amount'] == 23.6

        stored = batch_service.get_batch(batch_id, include_receipts=False)
        assert stored['status'] == 'processing'
        assert stored['lifecycle_stage'] == 'collecting'
        assert stored['total_receipts'] == 2
        assert stored['processed_receipts'] == 0
        assert stored['version'] == 2

        receipt_service.approve_receipt(batch_id, first['receipt_id'])
        receipt_service.approve_receipt(batch_id, second['receipt_id'])

        live = batch_service.get_batch(batch_id)
        assert live['lifecycle_stage'] == 'ready_to_close'
        assert live['income_total'] == 500.0
        assert live['expense_total'] == 23.6
        assert len(live['receipts']) == 2

        stored = batch_service.get_batch(batch_id, include_receipts=False)
        assert stored['lifecycle_stage'] == 'ready_to_close'
        assert stored['total_amount'] == 523.6
        assert stored['processed_receipts'] == 2

        report = report_generator.generate_batch_report(batch_id)
        assert report['summary']['profit'] == 476.4
        assert report['summary']['vat_paid'] == 3.6

        batch_service.finalize_batch(batch_id)
        receipt_service.create_receipt(batch_id, paper_receipt())

        stored = batch_service.get_batch(batch_id, include_receipts=False)
        assert stored['status'] == 'completed'
        assert stored['lifecycle_stage'] == 'completed'
        assert stored['total_receipts'] == 3

    def test_stale_snapshot_conflicts(self, services):
        """Test optimistic concurrency on the snapshot write."""
        batch_service, receipt_service, _ = services

        batch_id = batch_service.create_batch('April')['batch_id']
        receipt_service.create_receipt(batch_id, paper_receipt())

        with pytest.raises(ConflictError):
            batch_service.lifecycle.update_batch_lifecycle_snapshot(batch_id, expected_version=0)

        result = batch_service.lifecycle.update_batch_lifecycle_snapshot(batch_id, expected_version=1)
        assert result['stats']['total'] == 1
        assert batch_service.get_batch(batch_id, include_receipts=False)['version'] == 2

    def test_bulk_update_with_unknown_receipt(self, services):
        """Test that a failed bulk update leaves receipts and snapshot in step."""
        batch_service, receipt_service, _ = services

        batch_id = batch_service.create_batch('June')['batch_id']
        receipt_id = receipt_service.create_receipt(batch_id, paper_receipt())['receipt_id']

        with pytest.raises(NotFoundError):
            receipt_service.bulk_update_status(batch_id, [receipt_id, 'missing'], 'approved')

        assert receipt_service.get_receipt(batch_id, receipt_id)['status'] == 'pending'
        stored = batch_service.get_batch(batch_id, include_receipts=False)
        assert stored['processed_receipts'] == 0
        assert stored['lifecycle_stage'] == 'collecting'

        receipt_service.bulk_update_status(batch_id, [receipt_id, receipt_id], 'approved')

        stored = batch_service.get_batch(batch_id, include_receipts=False)
        assert stored['processed_receipts'] == 1
        assert stored['lifecycle_stage'] == 'ready_to_close'

    def test_bulk_delete_repeated_and_unknown_ids(self, services):
        """Test that bulk delete counts only receipts it removed."""
        batch_service, receipt_service, _ = services

        batch_id = batch_service.create_batch('July')['batch_id']
        assert receipt_service.bulk_delete(batch_id, ['nope1', 'nope2']) == 0

        receipt_id = receipt_service.create_receipt(batch_id, paper_receipt())['receipt_id']
        assert receipt_service.bulk_delete(batch_id, [receipt_id, receipt_id, 'nope1']) == 1

        stored = batch_service.get_batch(batch_id, include_receipts=False)
        assert stored['total_receipts'] == 0
        assert stored['lifecycle_stage'] == 'draft'

    def test_stale_batch_snapshot_is_retried(self, services):
        """Test a review action that read the batch before another writer."""
        batch_service, receipt_service, _ = services

        batch_id = batch_service.create_batch('August')['batch_id']
        stale = batch_service.batches_table.get_item({'batch_id': batch_id})

        receipt_service.create_receipt(batch_id, paper_receipt())
        receipt_service.create_receipt(batch_id, paper_receipt())

        result = receipt_service._refresh_batch(stale)

        assert result['stats']['total'] == 2
        assert batch_service.get_batch(batch_id, include_receipts=False)['version'] == 3

    def test_stale_refresh_does_not_reopen_finalized_batch(self, services):
        """Test that a snapshot read before finalizing keeps the batch completed."""
        batch_service, receipt_service, _ = services

        batch_id = batch_service.create_batch('September')['batch_id']
        receipt_service.create_receipt(batch_id, paper_receipt())
        stale = batch_service.batches_table.get_item({'batch_id': batch_id})

        batch_service.finalize_batch(batch_id)
        receipt_service._refresh_batch(stale)

        stored = batch_service.get_batch(batch_id, include_receipts=False)
        assert stored['status'] == 'completed'
        assert stored['lifecycle_stage'] == 'completed'

    def test_snapshot_of_missing_batch_conflicts(self, services):
        """Test that the snapshot never creates a batch."""
        batch_service, _, _ = services

        with pytest.raises(ConflictError):
            batch_service.lifecycle.update_batch_lifecycle_snapshot('no-such-batch')

    def test_delete_batch_cascades(self, services):
        """Test that deleting a batch removes its receipts."""
        batch_service, receipt_service, _ = services

        batch_id = batch_service.create_batch('May')['batch_id']
        for _ in range(3):
            receipt_service.create_receipt(batch_id, paper_receipt())

        assert batch_service.delete_batch(batch_id) == 3
        assert receipt_service.list_receipts(batch_id) == []

        with pytest.raises(NotFoundError):
            batch_service.get_batch(batch_id)

    def test_next_period_follows_previous(self, services):
        """Test creating a batch for the following month."""
        batch_service, _, _ = services

        previous = batch_service.create_batch(
            'December',
            period_start='2024-12-01T00:00:00.000Z',
            period_end='2024-12-31T23:59:59.999Z'
        )

        following = batch_service.create_batch('January', previous_batch_id=previous['batch_id'])

        assert following['period_start'] == '2025-01-01T00:00:00.000Z'
        assert following['period_end'] == '2025-01-31T23:59:59.999Z'


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
