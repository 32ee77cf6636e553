"""DynamoDB utilities and helper functions."""

import os
import boto3
from typing import Any, Dict, List, Optional
from decimal import Decimal
from botocore.exceptions import ClientError
import logging

from .exceptions import ConflictError, DatabaseError

logger = logging.getLogger(__name__)


class DynamoDBClient:
    """DynamoDB table wrapper with the operations the ledger needs."""

    def __init__(self, table_name: str, dynamodb: Optional[Any] = None):
        """
        Initialize DynamoDB client.

        Args:
            table_name: Name of the DynamoDB table
            dynamodb: Optional pre-built boto3 DynamoDB resource
        """
        self.table_name = table_name

        if dynamodb is not None:
            self.dynamodb = dynamodb
        else:
            # Support for LocalStack
            endpoint_url = os.environ.get('LOCALSTACK_ENDPOINT')
            if endpoint_url and os.environ.get('USE_LOCALSTACK', 'false').lower() == 'true':
                self.dynamodb = boto3.resource('dynamodb', endpoint_url=endpoint_url)
            else:
                self.dynamodb = boto3.resource('dynamodb')

        self.table = self.dynamodb.Table(table_name)

    def put_item(self, item: Dict[str, Any]) -> Dict[str, Any]:
        """
        Put an item in the table.

        Args:
            item: Item to put

        Returns:
            The item that was put, in Python types

        Raises:
            DatabaseError: If the operation fails
        """
        try:
            self.table.put_item(Item=self._python_to_dynamodb(item))
            return item
        except ClientError as e:
            logger.error(f"Error putting item into {self.table_name}: {e}")
            raise DatabaseError(f"Failed to put item: {str(e)}")

    def get_item(self, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Get an item from the table.

        Args:
            key: Primary key of the item

        Returns:
            The item if found, None otherwise

        Raises:
            DatabaseError: If the operation fails
        """
        try:
            response = self.table.get_item(Key=key)
            item = response.get('Item')
            if item:
                return self._dynamodb_to_python(item)
            return None
        except ClientError as e:
            logger.error(f"Error getting item from {self.table_name}: {e}")
            raise DatabaseError(f"Failed to get item: {str(e)}")

    def update_item(
        self,
        key: Dict[str, Any],
        update_expression: str,
        expression_values: Dict[str, Any],
        expression_names: Optional[Dict[str, str]] = None,
        condition_expression: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Update an item in the table.

        Args:
            key: Primary key of the item
            update_expression: Update expression
            expression_values: Expression attribute values
            expression_names: Optional expression attribute names
            condition_expression: Optional condition the stored item must meet

        Returns:
            Updated item

        Raises:
            ConflictError: If the condition expression is not met
            DatabaseError: If the operation fails
        """
        try:
            kwargs = {
                'Key': key,
                'UpdateExpression': update_expression,
                'ExpressionAttributeValues': self._python_to_dynamodb(expression_values),
                'ReturnValues': 'ALL_NEW'
            }

            if expression_names:
                kwargs['ExpressionAttributeNames'] = expression_names
            if condition_expression:
                kwargs['ConditionExpression'] = condition_expression

            response = self.table.update_item(**kwargs)
            return self._dynamodb_to_python(response['Attributes'])
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException':
                logger.warning(f"Conditional update rejected on {self.table_name} for {key}")
                raise ConflictError(f"Conditional update failed for {key}: item is missing or was modified concurrently")
            logger.error(f"Error updating item in {self.table_name}: {e}")
            raise DatabaseError(f"Failed to update item: {str(e)}")

    def update_fields(
        self,
        key: Dict[str, Any],
        fields: Dict[str, Any],
        condition_expression: Optional[str] = None,
        condition_values: Optional[Dict[str, Any]] = None,
        increment: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        SET every field of a mapping on an item.

        Args:
            key: Primary key of the item
            fields: Attribute name to new value
            condition_expression: Optional condition expression
            condition_values: Expression values referenced by the condition
            increment: Optional numeric attribute to add one to

        Returns:
            Updated item
        """
        update_parts = []
        expr_values = dict(condition_values or {})
        expr_names = {}

        for name, value in fields.items():
            update_parts.append(f"#{name} = :{name}")
            expr_names[f'#{name}'] = name
            expr_values[f':{name}'] = value

        if increment:
            update_parts.append(f"#{increment} = if_not_exists(#{increment}, :zero) + :one")
            expr_names[f'#{increment}'] = increment
            expr_values[':zero'] = 0
            expr_values[':one'] = 1

        return self.update_item(
            key=key,
            update_expression="SET " + ", ".join(update_parts),
            expression_values=expr_values,
            expression_names=expr_names,
            condition_expression=condition_expression
        )

    def delete_item(self, key: Dict[str, Any]) -> None:
        """
        Delete an item from the table.

        Args:
            key: Primary key of the item

        Raises:
            DatabaseError: If the operation fails
        """
        try:
            self.table.delete_item(Key=key)
        except ClientError as e:
            logger.error(f"Error deleting item from {self.table_name}: {e}")
            raise DatabaseError(f"Failed to delete item: {str(e)}")

    def query(
        self,
        key_condition_expression: Any,
        filter_expression: Optional[Any] = None,
        index_name: Optional[str] = None,
        limit: Optional[int] = None,
        scan_forward: bool = True,
        exclusive_start_key: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Query items from the table.

        Args:
            key_condition_expression: Key condition expression
            filter_expression: Optional filter expression
            index_name: Optional index name
            limit: Optional limit
            scan_forward: Sort order (default: True for ascending)
            exclusive_start_key: Optional pagination key

        Returns:
            Dictionary with items and optional LastEvaluatedKey

        Raises:
            DatabaseError: If the operation fails
        """
        try:
            kwargs = {
                'KeyConditionExpression': key_condition_expression,
                'ScanIndexForward': scan_forward
            }

            if filter_expression:
                kwargs['FilterExpression'] = filter_expression
            if index_name:
                kwargs['IndexName'] = index_name
            if limit:
                kwargs['Limit'] = limit
            if exclusive_start_key:
                kwargs['ExclusiveStartKey'] = exclusive_start_key

            response = self.table.query(**kwargs)

            return {
                'items': [self._dynamodb_to_python(item) for item in response.get('Items', [])],
                'last_evaluated_key': response.get('LastEvaluatedKey')
            }
        except ClientError as e:
            logger.error(f"Error querying {self.table_name}: {e}")
            raise DatabaseError(f"Failed to query items: {str(e)}")

    def query_all(self, key_condition_expression: Any, **kwargs) -> List[Dict[str, Any]]:
        """Query every page for a key condition and return the combined items."""
        items = []
        last_key = None

        while True:
            result = self.query(
                key_condition_expression=key_condition_expression,
                exclusive_start_key=last_key,
                **kwargs
            )

            items.extend(result['items'])
            last_key = result.get('last_evaluated_key')

            if not last_key:
                break

        return items

    def scan(
        self,
        filter_expression: Optional[Any] = None,
        limit: Optional[int] = None,
        exclusive_start_key: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Scan items from the table.

        Args:
            filter_expression: Optional filter expression
            limit: Optional limit
            exclusive_start_key: Optional pagination key

        Returns:
            Dictionary with items and optional LastEvaluatedKey

        Raises:
            DatabaseError: If the operation fails
        """
        try:
            kwargs = {}

            if filter_expression:
                kwargs['FilterExpression'] = filter_expression
            if limit:
                kwargs['Limit'] = limit
            if exclusive_start_key:
                kwargs['ExclusiveStartKey'] = exclusive_start_key

            response = self.table.scan(**kwargs)

            return {
                'items': [self._dynamodb_to_python(item) for item in response.get('Items', [])],
                'last_evaluated_key': response.get('LastEvaluatedKey')
            }
        except ClientError as e:
            logger.error(f"Error scanning {self.table_name}: {e}")
            raise DatabaseError(f"Failed to scan items: {str(e)}")

    def scan_all(self, filter_expression: Optional[Any] = None) -> List[Dict[str, Any]]:
        """Scan every page of the table and return the combined items."""
        items = []
        last_key = None

        while True:
            result = self.scan(filter_expression=filter_expression, exclusive_start_key=last_key)
            items.extend(result['items'])
            last_key = result.get('last_evaluated_key')

            if not last_key:
                break

        return items

    def batch_delete(self, keys: List[Dict[str, Any]]) -> None:
        """
        Delete many items from the table.

        Args:
            keys: Primary keys of the items to delete

        Raises:
            DatabaseError: If the operation fails
        """
        try:
            with self.table.batch_writer() as batch:
                for key in keys:
                    batch.delete_item(Key=key)
        except ClientError as e:
            logger.error(f"Error batch deleting from {self.table_name}: {e}")
            raise DatabaseError(f"Failed to batch delete items: {str(e)}")

    @staticmethod
    def _python_to_dynamodb(obj: Any) -> Any:
        """Convert Python objects to DynamoDB compatible format."""
        if isinstance(obj, dict):
            return {k: DynamoDBClient._python_to_dynamodb(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [DynamoDBClient._python_to_dynamodb(item) for item in obj]
        elif isinstance(obj, float):
            return Decimal(str(obj))
        return obj

    @staticmethod
    def _dynamodb_to_python(obj: Any) -> Any:
        """Convert DynamoDB objects to Python format."""
        if isinstance(obj, dict):
            return {k: DynamoDBClient._dynamodb_to_python(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [DynamoDBClient._dynamodb_to_python(item) for item in obj]
        elif isinstance(obj, Decimal):
            if obj % 1 == 0:
                return int(obj)
            return float(obj)
        return obj
