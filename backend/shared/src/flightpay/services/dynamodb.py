"""DynamoDB service wrapper for booking and ledger tables."""

import datetime as dt
import os
from decimal import Decimal
from enum import Enum
from typing import Any

import boto3
from boto3.dynamodb.conditions import Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError
from pydantic import BaseModel

UNIQUE_KEYS_TABLE = "unique-keys"

# Module-level singleton so boto3 clients are reused across requests
_dynamodb_service_instance: "DynamoDBService | None" = None


def get_dynamodb_service(environment: str | None = None) -> "DynamoDBService":
    """Get or create the singleton DynamoDB service instance.

    Args:
        environment: Environment name. Only used on first call.

    Returns:
        Shared DynamoDBService instance
    """
    global _dynamodb_service_instance
    if _dynamodb_service_instance is None:
        _dynamodb_service_instance = DynamoDBService(environment)
    return _dynamodb_service_instance


def reset_dynamodb_service() -> None:
    """Reset the singleton instance (for testing only).

    This allows tests to create a fresh DynamoDBService inside
    a mock_aws context.
    """
    global _dynamodb_service_instance
    _dynamodb_service_instance = None


def to_dynamo(value: Any) -> Any:
    """Convert Python/pydantic values into DynamoDB-safe attribute values.

    None values are dropped from maps, enums become their values, datetimes
    become ISO strings and floats become Decimals.
    """
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="python")
    if isinstance(value, dict):
        return {str(k): to_dynamo(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [to_dynamo(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (dt.datetime, dt.date)):
        return value.isoformat()
    if isinstance(value, float):
        return Decimal(str(value))
    return value


class DynamoDBService:
    """Service for DynamoDB operations with environment-aware table names."""

    def __init__(self, environment: str | None = None) -> None:
        """Initialize DynamoDB service.

        Args:
            environment: Environment name (dev/prod). Defaults to ENVIRONMENT env var.
        """
        self.environment = environment or os.getenv("ENVIRONMENT", "dev")
        # Allow override via DYNAMODB_TABLE_PREFIX for testing
        self.name_prefix = os.getenv(
            "DYNAMODB_TABLE_PREFIX", f"flightpay-{self.environment}"
        )
        self._dynamodb = boto3.resource("dynamodb")
        self._client = boto3.client("dynamodb")
        self._serializer = TypeSerializer()

    def table_name(self, table: str) -> str:
        """Get full table name with prefix."""
        return f"{self.name_prefix}-{table}"

    def _get_table(self, table: str) -> Any:
        """Get DynamoDB table resource."""
        return self._dynamodb.Table(self.table_name(table))

    def serialize(self, item: dict[str, Any]) -> dict[str, Any]:
        """Serialize a plain item into low-level attribute values.

        Needed for transact_write, which goes through the client API.
        """
        return {k: self._serializer.serialize(v) for k, v in to_dynamo(item).items()}

    # Generic CRUD operations

    def get_item(
        self,
        table: str,
        key: dict[str, Any],
        consistent_read: bool = True,
    ) -> dict[str, Any] | None:
        """Read one item; strongly consistent unless asked otherwise."""
        response = self._get_table(table).get_item(Key=key, ConsistentRead=consistent_read)
        item: dict[str, Any] | None = response.get("Item")
        return item

    def put_item(
        self,
        table: str,
        item: dict[str, Any],
        condition_expression: str | None = None,
    ) -> bool:
        """Write an item, optionally only if a condition holds.

        Returns:
            False if the condition failed, e.g. an audit row that exists.
        """
        try:
            kwargs: dict[str, Any] = {"Item": to_dynamo(item)}
            if condition_expression:
                kwargs["ConditionExpression"] = condition_expression

            self._get_table(table).put_item(**kwargs)
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                return False
            raise

    def update_item(
        self,
        table: str,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_values: dict[str, Any],
        expression_attribute_names: dict[str, str] | None = None,
        condition_expression: str | None = None,
    ) -> dict[str, Any] | None:
        """Apply an update expression, guarded by an optional condition.

        Booking and ledger state changes go through here with a condition
        on the current status, so concurrent writers cannot both win.

        Returns:
            The item after the update, or None if the condition failed.
        """
        try:
            kwargs: dict[str, Any] = {
                "Key": key,
                "UpdateExpression": update_expression,
                "ExpressionAttributeValues": to_dynamo(expression_attribute_values),
                "ReturnValues": "ALL_NEW",
            }
            if expression_attribute_names:
                kwargs["ExpressionAttributeNames"] = expression_attribute_names
            if condition_expression:
                kwargs["ConditionExpression"] = condition_expression

            response = self._get_table(table).update_item(**kwargs)
            attrs: dict[str, Any] | None = response.get("Attributes")
            return attrs
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                return None
            raise

    def query(
        self,
        table: str,
        key_condition: Any,
        index_name: str | None = None,
        filter_expression: Any | None = None,
        limit: int | None = None,
        scan_index_forward: bool = True,
    ) -> list[dict[str, Any]]:
        """Query table or GSI, following pagination until limit or exhaustion.

        Args:
            table: Table name without prefix
            key_condition: Boto3 Key condition
            index_name: GSI name (optional)
            filter_expression: Additional filter (optional)
            limit: Max items to return
            scan_index_forward: Sort order (True=ascending)

        Returns:
            List of items
        """
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": key_condition,
            "ScanIndexForward": scan_index_forward,
        }
        if index_name:
            kwargs["IndexName"] = index_name
        if filter_expression:
            kwargs["FilterExpression"] = filter_expression
        if limit:
            kwargs["Limit"] = limit

        items: list[dict[str, Any]] = []
        table_resource = self._get_table(table)
        while True:
            response = table_resource.query(**kwargs)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key or (limit and len(items) >= limit):
                break
            kwargs["ExclusiveStartKey"] = last_key
        return items[:limit] if limit else items

    def transact_write(
        self,
        items: list[dict[str, Any]],
    ) -> bool:
        """Run a TransactWriteItems call (low-level attribute format).

        Returns:
            False if any condition in the transaction failed.
        """
        try:
            self._client.transact_write_items(TransactItems=items)  # type: ignore[arg-type]
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] == "TransactionCanceledException":
                return False
            raise

    # Convenience methods for common patterns

    def query_by_gsi(
        self,
        table: str,
        index_name: str,
        partition_key_name: str,
        partition_key_value: str,
        sort_key_condition: Any | None = None,
        scan_index_forward: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Query a GSI by partition key.

        Args:
            table: Table name without prefix
            index_name: GSI name
            partition_key_name: Name of partition key attribute
            partition_key_value: Value to query
            sort_key_condition: Optional sort key condition
            scan_index_forward: Sort order (True=ascending)
            limit: Max items to return

        Returns:
            List of items
        """
        key_condition = Key(partition_key_name).eq(partition_key_value)
        if sort_key_condition is not None:
            key_condition = key_condition & sort_key_condition

        return self.query(
            table,
            key_condition,
            index_name=index_name,
            scan_index_forward=scan_index_forward,
            limit=limit,
        )

    def put_with_unique_keys(
        self,
        table: str,
        item: dict[str, Any],
        key_attribute: str,
        unique_keys: list[str],
    ) -> bool:
        """Insert an item together with its uniqueness guards.

        Each guard is a row in the unique-keys table pointing back at the
        item. The whole write fails if the item or any guard already exists.

        Args:
            table: Table name without prefix
            item: Item to store
            key_attribute: Name of the item's partition key
            unique_keys: Guard keys such as "booking_ref#AB123456"

        Returns:
            True if written, False if any condition failed
        """
        owner_id = item[key_attribute]
        transact_items: list[dict[str, Any]] = [
            {
                "Put": {
                    "TableName": self.table_name(table),
                    "Item": self.serialize(item),
                    "ConditionExpression": f"attribute_not_exists({key_attribute})",
                }
            }
        ]
        for unique_key in unique_keys:
            transact_items.append(
                {
                    "Put": {
                        "TableName": self.table_name(UNIQUE_KEYS_TABLE),
                        "Item": self.serialize(
                            {"unique_key": unique_key, "owner_id": owner_id, "owner_table": table}
                        ),
                        "ConditionExpression": "attribute_not_exists(unique_key)",
                    }
                }
            )
        return self.transact_write(transact_items)

    def get_unique_key_owner(self, unique_key: str) -> str | None:
        """Look up which item owns a uniqueness guard.

        Args:
            unique_key: Guard key such as "transaction_id#pi_123"

        Returns:
            Owner item ID or None if the guard does not exist
        """
        item = self.get_item(UNIQUE_KEYS_TABLE, {"unique_key": unique_key})
        return item["owner_id"] if item else None
