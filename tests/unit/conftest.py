"""
Test fixtures for the entity layer tests.

Provides sample entity schemas and mocked DynamoDB tables.
"""

import os
from typing import Any, Dict, Generator

import boto3
import pytest
from moto import mock_aws

from src.entity.schema import EntitySchema
from src.utils.dynamodb import clear_all_overrides, reset_singleton
from tests.unit.entity_definitions import CUSTOMER_DEFINITION, ORDER_DEFINITION


@pytest.fixture
def customer_schema() -> EntitySchema:
    return EntitySchema.from_dict(CUSTOMER_DEFINITION)


@pytest.fixture
def order_schema() -> EntitySchema:
    return EntitySchema.from_dict(ORDER_DEFINITION)


@pytest.fixture(autouse=True)
def reset_table_access() -> Generator[None, None, None]:
    """Reset table singleton and overrides between tests."""
    clear_all_overrides()
    reset_singleton()
    yield
    clear_all_overrides()
    reset_singleton()


@pytest.fixture
def aws_credentials() -> None:
    """Set fake AWS credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    # One table per entity
    os.environ["ORDER_TABLE_NAME"] = "entity-orders-test"
    os.environ["CUSTOMER_TABLE_NAME"] = "entity-customers-test"


@pytest.fixture
def dynamodb_tables(aws_credentials: None) -> Generator[Dict[str, Any], None, None]:
    """Create the mock DynamoDB tables backing Order and Customer."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")

        # ================================================================
        # Customers Table
        # ================================================================
        customers_table = dynamodb.create_table(
            TableName="entity-customers-test",
            KeySchema=[{"AttributeName": "id", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "id", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )

        # ================================================================
        # Orders Table
        # ================================================================
        orders_table = dynamodb.create_table(
            TableName="entity-orders-test",
            KeySchema=[{"AttributeName": "id", "KeyType": "HASH"}],
            AttributeDefinitions=[
                {"AttributeName": "id", "AttributeType": "S"},
                {"AttributeName": "customerId", "AttributeType": "S"},
                {"AttributeName": "byCustomer_sk", "AttributeType": "S"},
            ],
            GlobalSecondaryIndexes=[
                {
                    "IndexName": "customerId-index",
                    "KeySchema": [
                        {"AttributeName": "customerId", "KeyType": "HASH"},
                        {"AttributeName": "byCustomer_sk", "KeyType": "RANGE"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                },
            ],
            BillingMode="PAY_PER_REQUEST",
        )

        yield {
            "resource": dynamodb,
            "Customer": customers_table,
            "Order": orders_table,
        }
