"""Tests for the entity service registry."""

from unittest.mock import MagicMock

import pytest

from src.entity.registry import EntityServiceRegistry
from src.entity.service import EntityService
from src.utils.errors import ConfigurationError


def make_service(schema: object) -> EntityService:
    return EntityService(schema, persistence=MagicMock())  # type: ignore[arg-type]


class TestEntityServiceRegistry:
    """Tests for EntityServiceRegistry."""

    def test_register_and_lookup(self, order_schema: object, customer_schema: object) -> None:
        """Test services are found by entity name."""
        registry = EntityServiceRegistry()
        orders = registry.register(make_service(order_schema))
        customers = registry.register(make_service(customer_schema))

        assert registry.get_entity_service_by_entity_name("Order") is orders
        assert registry.get_entity_service_by_entity_name("Customer") is customers
        assert registry.entity_names() == ["Order", "Customer"]
        assert "Order" in registry
        assert len(registry) == 2

    def test_unknown_entity(self) -> None:
        """Test looking up an unregistered entity returns None."""
        registry = EntityServiceRegistry()

        assert registry.get_entity_service_by_entity_name("Invoice") is None
        assert "Invoice" not in registry

    def test_register_same_service_twice(self, order_schema: object) -> None:
        """Test re-registering the same service is a no-op."""
        registry = EntityServiceRegistry()
        service = make_service(order_schema)

        registry.register(service)
        registry.register(service)

        assert len(registry) == 1

    def test_register_conflicting_service(self, order_schema: object) -> None:
        """Test a second service for the same entity is rejected."""
        registry = EntityServiceRegistry()
        registry.register(make_service(order_schema))

        with pytest.raises(ConfigurationError, match="Order"):
            registry.register(make_service(order_schema))
