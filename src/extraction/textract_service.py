"""AWS Textract extraction of receipt fields."""

import os
import boto3
from typing import Dict, Any, Optional
from botocore.exceptions import ClientError
import logging

from shared.exceptions import ExtractionError
from extraction.parser import ExtractionParser

logger = logging.getLogger(__name__)
logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO'))

# Textract summary field type to receipt field
SUMMARY_FIELDS = {
    'VENDOR_NAME': 'vendor_name',
    'INVOICE_RECEIPT_ID': 'receipt_number',
    'INVOICE_RECEIPT_DATE': 'date',
    'TOTAL': 'total_amount',
    'TAX': 'vat_amount',
}

# Textract line item field type to line item field
LINE_ITEM_FIELDS = {
    'ITEM': 'description',
    'QUANTITY': 'quantity',
    'UNIT_PRICE': 'unit_price',
    'PRICE': 'total',
}


class ReceiptExtractionService:
    """Extracts structured receipt data from a document stored in S3."""

    def __init__(self, client: Optional[Any] = None, parser: Optional[ExtractionParser] = None):
        """Initialize Textract client."""
        if client is not None:
            self.client = client
        else:
            # Support for LocalStack
            endpoint_url = os.environ.get('LOCALSTACK_ENDPOINT')
            if endpoint_url and os.environ.get('USE_LOCALSTACK', 'false').lower() == 'true':
                self.client = boto3.client('textract', endpoint_url=endpoint_url)
            else:
                self.client = boto3.client('textract')

        self.parser = parser or ExtractionParser()
        self.confidence_threshold = float(
            os.environ.get('TEXTRACT_CONFIDENCE_THRESHOLD', '80')
        )

    def extract(self, bucket: str, key: str) -> Dict[str, Any]:
        """
        Extract receipt fields from a document.

        Args:
            bucket: S3 bucket name
            key: S3 object key

        Returns:
            Normalized receipt data ready for review

        Raises:
            ExtractionError: If Textract analysis fails
        """
        logger.info(f"Analyzing receipt document: s3://{bucket}/{key}")

        try:
            response = self.client.analyze_expense(
                Document={
                    'S3Object': {
                        'Bucket': bucket,
                        'Name': key
                    }
                }
            )
        except ClientError as e:
            error_code = e.response['Error']['Code']
            logger.error(f"Textract analysis failed: {error_code}")
            raise ExtractionError(f"Textract analysis failed: {str(e)}")

        documents = response.get('ExpenseDocuments', [])

        if not documents:
            logger.warning(f"No expense documents found in s3://{bucket}/{key}")
            return self.parser.normalize({})

        # Receipts carry a single document
        raw = self._extract_receipt_data(documents[0])
        result = self.parser.normalize(raw)

        logger.info(
            f"Extracted receipt from {result.get('vendor_name') or 'unknown vendor'} with "
            f"{len(result['line_items'])} line items"
        )
        return result

    def _confident(self, detection: Dict[str, Any]) -> bool:
        return detection.get('Confidence', 0) >= self.confidence_threshold

    def _extract_receipt_data(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """
        Map a Textract expense document to raw receipt fields.

        Args:
            document: Textract expense document

        Returns:
            Raw receipt data, not yet normalized
        """
        result = {'line_items': [], 'confidence_score': 0.0}
        confidence_scores = []

        for field in document.get('SummaryFields', []):
            field_type = field.get('Type', {}).get('Text', '')
            detection = field.get('ValueDetection', {})

            if field_type not in SUMMARY_FIELDS or not self._confident(detection):
                continue

            confidence_scores.append(detection['Confidence'])
            name = SUMMARY_FIELDS[field_type]

            # First confident value wins
            if not result.get(name):
                result[name] = detection.get('Text', '')

            currency = field.get('Currency', {}).get('Code')
            if currency and not result.get('currency'):
                result['currency'] = currency

        for group in document.get('LineItemGroups', []):
            for line_item in group.get('LineItems', []):
                item = self._extract_line_item(line_item)
                if item:
                    result['line_items'].append(item)

        if confidence_scores:
            result['confidence_score'] = sum(confidence_scores) / len(confidence_scores)

        return result

    def _extract_line_item(self, line_item: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Map one Textract line item; EXPENSE_ROW only fills a missing description."""
        item = {}
        row_text = None

        for field in line_item.get('LineItemExpenseFields', []):
            field_type = field.get('Type', {}).get('Text', '')
            detection = field.get('ValueDetection', {})

            if not self._confident(detection):
                continue

            if field_type == 'EXPENSE_ROW':
                row_text = detection.get('Text')
                continue

            if field_type not in LINE_ITEM_FIELDS:
                continue

            name = LINE_ITEM_FIELDS[field_type]
            if not item.get(name):
                item[name] = detection.get('Text', '')

        if row_text and not item.get('description'):
            item['description'] = row_text

        return item or None
