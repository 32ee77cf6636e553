#!/usr/bin/env python3
"""
Seed data script for testing the receipt ledger.
Creates a sample batch with reviewed and pending receipts.
"""

import boto3
import os
import sys
import random

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from shared.dynamodb import DynamoDBClient
from shared.validators import RECEIPT_STATUSES
from batches.service import BatchService
from receipts.service import ReceiptService


def get_table_names_from_stack(stack_name='receipt-ledger'):
    """Get table names from CloudFormation stack."""
    cf = boto3.client('cloudformation')

    try:
        response = cf.describe_stacks(StackName=stack_name)
        outputs = response['Stacks'][0]['Outputs']

        table_names = {}
        for output in outputs:
            key = output['OutputKey']
            if 'Table' in key:
                if 'Batches' in key:
                    table_names['batches'] = output['OutputValue']
                elif 'Receipts' in key:
                    table_names['receipts'] = output['OutputValue']

        return table_names
    except Exception as e:
        print(f"Error getting table names from stack: {e}")
        print("Using default table names...")
        return {
            'batches': f'{stack_name}-batches',
            'receipts': f'{stack_name}-receipts'
        }


def sample_receipt():
    """Random receipt data with consistent line items."""
    vendors = {
        'office': ['Office Depot', 'Staples', 'Kravitz'],
        'fuel': ['Paz', 'Delek', 'Sonol'],
        'food': ['Aroma', 'Cafe Cafe', 'Shufersal'],
        'software': ['Google Workspace', 'Dropbox', 'Adobe'],
    }

    category = random.choice(list(vendors))
    line_items = []

    for _ in range(random.randint(1, 4)):
        quantity = random.randint(1, 3)
        unit_price = round(random.uniform(5.0, 120.0), 2)
        line_items.append({
            'description': f"{category.title()} item",
            'quantity': quantity,
            'unit_price': unit_price,
            'total': round(quantity * unit_price, 2)
        })

    subtotal = sum(item['total'] for item in line_items)

    return {
        'type': random.choice(['expense', 'expense', 'expense', 'income']),
        'status': random.choice(RECEIPT_STATUSES),
        'vendor_name': random.choice(vendors[category]),
        'receipt_number': str(random.randint(10000, 99999)),
        'category': category,
        'payment_method': random.choice(['credit_card', 'cash', 'bank_transfer']),
        'vat_amount': round(subtotal * 0.18, 2),
        'line_items': line_items
    }


def main():
    """Main function."""
    print("=" * 50)
    print("Receipt Ledger - Seed Data Script")
    print("=" * 50)

    # Get stack name
    stack_name = input("Enter stack name (default: receipt-ledger): ").strip()
    if not stack_name:
        stack_name = 'receipt-ledger'

    # Get table names
    print("\nGetting table names from CloudFormation...")
    table_names = get_table_names_from_stack(stack_name)

    print("\nTable names:")
    for key, value in table_names.items():
        print(f"  {key}: {value}")

    # Get number of receipts
    num_receipts = input("Enter number of receipts to create (default: 20): ").strip()
    num_receipts = int(num_receipts) if num_receipts else 20

    # Connect to DynamoDB
    print("\nConnecting to DynamoDB...")
    batches_table = DynamoDBClient(table_names['batches'])
    receipts_table = DynamoDBClient(table_names['receipts'])

    batch_service = BatchService(batches_table=batches_table, receipts_table=receipts_table)
    receipt_service = ReceiptService(
        receipts_table=receipts_table,
        batches_table=batches_table,
        lifecycle=batch_service.lifecycle
    )

    print("\nSeeding batch...")
    batch = batch_service.create_batch('Sample batch', customer_name='Sample customer')

    print(f"Seeding {num_receipts} receipts...")
    for _ in range(num_receipts):
        receipt_service.create_receipt(batch['batch_id'], sample_receipt())

    batch = batch_service.get_batch(batch['batch_id'])

    print("\n" + "=" * 50)
    print("Data seeding complete!")
    print("=" * 50)
    print(f"\nBatch {batch['batch_id']} ({batch['period_label']})")
    print(f"  - {batch['total_receipts']} receipts, {batch['processed_receipts']} processed")
    print(f"  - stage: {batch['lifecycle_stage']}")
    print(f"  - income {batch['income_total']:.2f}, expenses {batch['expense_total']:.2f}")


if __name__ == '__main__':
    main()
