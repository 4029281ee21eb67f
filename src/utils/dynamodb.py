"""
Centralized DynamoDB table access utilities.

Provides singleton-pattern table accessors with lazy initialization
and test monkeypatch support. Each entity lives in its own table whose
name is read from ``<ENTITY>_TABLE_NAME`` (e.g. ``ORDER_ITEM_TABLE_NAME``).
"""

import os
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

import boto3

from .cases import to_env_name

if TYPE_CHECKING:
    from mypy_boto3_dynamodb import DynamoDBServiceResource
    from mypy_boto3_dynamodb.service_resource import Table


# Module-level cache for test overrides
_table_overrides: dict[str, Optional["Table"]] = {}


def get_required_env(name: str, default: Optional[str] = None) -> str:
    """Get a required environment variable.

    In Lambda/production, the env var must be set. For tests, a default can be
    provided to allow the code to run in mocked environments.

    Args:
        name: Environment variable name
        default: Optional default for test environments

    Returns:
        The environment variable value

    Raises:
        ValueError: If the env var is not set and no default is provided
    """
    value = os.getenv(name, default)
    if value is None:
        raise ValueError(f"Required environment variable '{name}' is not set")
    return value


def table_name_env_var(entity_name: str) -> str:
    """Environment variable holding the table name for ``entity_name``."""
    return f"{to_env_name(entity_name)}_TABLE_NAME"


def _get_dynamodb() -> "DynamoDBServiceResource":
    """Get DynamoDB resource with optional endpoint override for LocalStack."""
    return boto3.resource("dynamodb", endpoint_url=os.getenv("DYNAMODB_ENDPOINT"))


def get_dynamodb_resource() -> "DynamoDBServiceResource":
    """Get DynamoDB resource for direct resource-level operations like batch_get_item.

    Use this for operations that require the resource directly rather than a table.
    For table-level operations, prefer using the `tables` singleton.
    """
    return _get_dynamodb()


class TableAccessor:
    """Centralized access to entity tables with environment-based naming."""

    _instance: Optional["TableAccessor"] = None

    def __new__(cls) -> "TableAccessor":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def for_entity(self, entity_name: str) -> "Table":
        """Get the table instance backing ``entity_name``."""
        if override := _table_overrides.get(entity_name):
            return override
        table_name = get_required_env(table_name_env_var(entity_name))
        return _get_dynamodb().Table(table_name)


# Singleton instance for import
tables = TableAccessor()


def to_dynamo_value(value: Any) -> Any:
    """Convert floats (recursively) to Decimal; boto3 rejects float numbers."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_dynamo_value(v) for v in value]
    return value


def from_dynamo_value(value: Any) -> Any:
    """Convert Decimal numbers (recursively) back to int or float."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo_value(v) for v in value]
    if isinstance(value, set):
        return {from_dynamo_value(v) for v in value}
    return value


# Test utilities
def override_table(entity_name: str, table: Optional["Table"]) -> None:
    """Override an entity table for testing. Set to None to clear override."""
    _table_overrides[entity_name] = table


def clear_all_overrides() -> None:
    """Clear all table overrides (call in test teardown)."""
    _table_overrides.clear()


def reset_singleton() -> None:
    """Reset the singleton instance (for testing isolation)."""
    TableAccessor._instance = None
