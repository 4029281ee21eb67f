"""Tests for the entity service facade."""

from typing import Any, Dict, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.entity.registry import EntityServiceRegistry
from src.entity.schema import EntitySchema
from src.entity.selections import RelationSelection
from src.entity.service import EntityService
from src.utils.errors import AppError, ErrorCode


def make_persistence(**returns: Any) -> MagicMock:
    """Mock persistence with every operation as an AsyncMock."""
    persistence = MagicMock()
    persistence.get_entity = AsyncMock(return_value=returns.get("get_entity"))
    persistence.create_entity = AsyncMock(side_effect=lambda *, entity_name, data: data)
    persistence.update_entity = AsyncMock(
        side_effect=lambda *, entity_name, identifiers, data: {**identifiers, **data}
    )
    persistence.delete_entity = AsyncMock(return_value=returns.get("delete_entity"))
    persistence.list_entity = AsyncMock(
        return_value=returns.get("list_entity", {"data": [], "cursor": None})
    )
    persistence.query_entity = AsyncMock(
        return_value=returns.get("query_entity", {"data": [], "cursor": None})
    )
    return persistence


@pytest.fixture
def registry() -> EntityServiceRegistry:
    return EntityServiceRegistry()


@pytest.fixture
def customer_persistence() -> MagicMock:
    return make_persistence(
        get_entity=[
            {"id": "c1", "name": "Ann", "email": "ann@example.com"},
            {"id": "c2", "name": "Bob", "email": "bob@example.com"},
        ]
    )


@pytest.fixture
def customers(
    customer_schema: EntitySchema, customer_persistence: MagicMock, registry: EntityServiceRegistry
) -> EntityService:
    return registry.register(EntityService(customer_schema, customer_persistence, registry))


def make_orders(
    order_schema: EntitySchema, registry: EntityServiceRegistry, persistence: Optional[MagicMock] = None
) -> EntityService:
    return registry.register(EntityService(order_schema, persistence or make_persistence(), registry))


class TestMetadata:
    """Tests for schema derived metadata."""

    def test_names(self, order_schema: EntitySchema, registry: EntityServiceRegistry) -> None:
        orders = make_orders(order_schema, registry)

        assert orders.get_entity_name() == "Order"
        assert orders.get_entity_schema() is order_schema
        assert orders.get_entity_primary_id_property_name() == "id"

    def test_default_attribute_names(self, order_schema: EntitySchema, registry: EntityServiceRegistry) -> None:
        orders = make_orders(order_schema, registry)

        assert orders.get_listing_attribute_names() == [
            "id",
            "customerId",
            "customer",
            "title",
            "status",
            "total",
        ]
        assert "description" in orders.get_default_serialization_attribute_names()
        assert "internalNote" not in orders.get_default_serialization_attribute_names()

    def test_derived_schemas_cached(self, order_schema: EntitySchema, registry: EntityServiceRegistry) -> None:
        orders = make_orders(order_schema, registry)

        assert orders.get_ops_default_io_schema() is orders.get_ops_default_io_schema()
        assert orders.get_access_patterns() is orders.get_access_patterns()
        assert set(orders.get_access_patterns()) == {"primary", "byCustomer"}

    def test_extract_identifiers(self, order_schema: EntitySchema, registry: EntityServiceRegistry) -> None:
        orders = make_orders(order_schema, registry)

        assert orders.extract_entity_identifiers({"id": "o1", "title": "x"}, "primary") == {"id": "o1"}


class TestGet:
    """Tests for EntityService.get."""

    @pytest.mark.asyncio
    async def test_get_with_relation(
        self,
        order_schema: EntitySchema,
        registry: EntityServiceRegistry,
        customers: EntityService,
        customer_persistence: MagicMock,
    ) -> None:
        """Test a selected relation is joined from the related service."""
        persistence = make_persistence(
            get_entity={"id": "o1", "customerId": "c1", "title": "Chair", "internalNote": "x"}
        )
        orders = make_orders(order_schema, registry, persistence)

        result = await orders.get({"id": "o1"}, selections=["id", "title", "customer.name"])

        assert result == {"id": "o1", "title": "Chair", "customer": {"name": "Ann"}}
        persistence.get_entity.assert_awaited_once_with(
            entity_name="Order",
            identifiers={"id": "o1"},
            attributes=["id", "title", "customer", "customerId"],
        )
        customer_persistence.get_entity.assert_awaited_once_with(
            entity_name="Customer", identifiers=[{"id": "c1"}], attributes=["name", "id"]
        )

    @pytest.mark.asyncio
    async def test_get_default_selection(self, order_schema: EntitySchema, registry: EntityServiceRegistry) -> None:
        persistence = make_persistence(
            get_entity={"id": "o1", "customerId": "c1", "description": "d", "internalNote": "x"}
        )
        orders = make_orders(order_schema, registry, persistence)

        result = await orders.get({"id": "o1"})

        assert result == {"id": "o1", "customerId": "c1", "description": "d"}
        assert persistence.get_entity.await_args.kwargs["attributes"] == (
            orders.get_default_serialization_attribute_names()
        )

    @pytest.mark.asyncio
    async def test_get_not_found(self, order_schema: EntitySchema, registry: EntityServiceRegistry) -> None:
        orders = make_orders(order_schema, registry, make_persistence(get_entity=None))

        assert await orders.get({"id": "missing"}) is None

    @pytest.mark.asyncio
    async def test_batch_in_batch_out(self, order_schema: EntitySchema, registry: EntityServiceRegistry) -> None:
        persistence = make_persistence(get_entity=[{"id": "o2", "title": "b"}, {"id": "o1", "title": "a"}])
        orders = make_orders(order_schema, registry, persistence)

        result = await orders.get([{"id": "o1"}, {"id": "o2"}], selections=["id"])

        assert isinstance(result, list)
        assert sorted(r["id"] for r in result) == ["o1", "o2"]

    @pytest.mark.asyncio
    async def test_persistence_errors_propagate(
        self, order_schema: EntitySchema, registry: EntityServiceRegistry
    ) -> None:
        persistence = make_persistence()
        persistence.get_entity.side_effect = RuntimeError("throttled")
        orders = make_orders(order_schema, registry, persistence)

        with pytest.raises(RuntimeError, match="throttled"):
            await orders.get({"id": "o1"})

    @pytest.mark.asyncio
    async def test_hidden_attributes_never_selected(
        self, customer_schema: EntitySchema, registry: EntityServiceRegistry
    ) -> None:
        """Test an explicitly selected hidden attribute is neither read nor returned."""
        persistence = make_persistence(get_entity={"id": "c1", "name": "Ann", "passwordHash": "s3cret"})
        customers = registry.register(EntityService(customer_schema, persistence, registry))

        result = await customers.get({"id": "c1"}, selections=["id", "passwordHash"])

        assert result == {"id": "c1"}
        assert persistence.get_entity.await_args.kwargs["attributes"] == ["id"]
        assert customers.serialize_record(
            {"id": "c1", "name": "Ann", "passwordHash": "s3cret"}, ["name", "passwordHash"]
        ) == {"name": "Ann"}


class TestList:
    """Tests for EntityService.list and EntityService.query."""

    @pytest.mark.asyncio
    async def test_list_defaults_to_listing_attributes(
        self, order_schema: EntitySchema, registry: EntityServiceRegistry
    ) -> None:
        persistence = make_persistence(
            list_entity={"data": [{"id": "o1", "description": "hidden from lists"}], "cursor": {"id": "o1"}}
        )
        orders = make_orders(order_schema, registry, persistence)

        result = await orders.list()

        listing = orders.get_listing_attribute_names()
        assert persistence.list_entity.await_args.kwargs["attributes"] == listing
        assert result["query"]["attributes"] == {att_name: True for att_name in listing}
        assert result["data"] == [{"id": "o1"}]
        assert result["cursor"] == {"id": "o1"}

    @pytest.mark.asyncio
    async def test_list_hydrates_with_one_fetch(
        self,
        order_schema: EntitySchema,
        registry: EntityServiceRegistry,
        customers: EntityService,
        customer_persistence: MagicMock,
    ) -> None:
        persistence = make_persistence(
            list_entity={
                "data": [
                    {"id": 1, "customerId": "c1"},
                    {"id": 2, "customerId": "c1"},
                    {"id": 3, "customerId": "c2"},
                ],
                "cursor": None,
            }
        )
        orders = make_orders(order_schema, registry, persistence)

        result = await orders.list({"attributes": ["id", "customer.name"]})

        assert result["data"] == [
            {"id": 1, "customer": {"name": "Ann"}},
            {"id": 2, "customer": {"name": "Ann"}},
            {"id": 3, "customer": {"name": "Bob"}},
        ]
        customer_persistence.get_entity.assert_awaited_once()
        assert customer_persistence.get_entity.await_args.kwargs["identifiers"] == [{"id": "c1"}, {"id": "c2"}]
        assert isinstance(result["query"]["attributes"]["customer"], RelationSelection)

    @pytest.mark.asyncio
    async def test_search_builds_filters(self, order_schema: EntitySchema, registry: EntityServiceRegistry) -> None:
        persistence = make_persistence()
        orders = make_orders(order_schema, registry, persistence)

        result = await orders.list(
            {
                "search": "red & chair",
                "searchAttributes": "title,description",
                "filters": {"status": {"eq": "NEW"}},
            }
        )

        expected_filters = {
            "and": [
                {"status": {"eq": "NEW"}},
                {
                    "and": [
                        {"or": [{"title": {"contains": "red"}}, {"description": {"contains": "red"}}]},
                        {"or": [{"title": {"contains": "chair"}}, {"description": {"contains": "chair"}}]},
                    ]
                },
            ]
        }
        assert persistence.list_entity.await_args.kwargs["query"]["filters"] == expected_filters
        assert result["query"]["search"] == ["red", "chair"]
        assert result["query"]["searchAttributes"] == ["title", "description"]

    @pytest.mark.asyncio
    async def test_search_defaults_to_searchable_attributes(
        self, order_schema: EntitySchema, registry: EntityServiceRegistry
    ) -> None:
        orders = make_orders(order_schema, registry)

        result = await orders.list({"search": "red"})

        assert result["query"]["searchAttributes"] == orders.get_searchable_attribute_names()
        assert len(result["query"]["filters"]["and"][0]["or"]) == len(orders.get_searchable_attribute_names())

    @pytest.mark.asyncio
    async def test_blank_search_adds_no_filters(
        self, order_schema: EntitySchema, registry: EntityServiceRegistry
    ) -> None:
        orders = make_orders(order_schema, registry)

        result = await orders.list({"search": " , "})

        assert "filters" not in result["query"]

    @pytest.mark.asyncio
    async def test_caller_query_not_mutated(self, order_schema: EntitySchema, registry: EntityServiceRegistry) -> None:
        orders = make_orders(order_schema, registry)
        query: Dict[str, Any] = {"search": "red"}

        await orders.list(query)  # type: ignore[arg-type]

        assert query == {"search": "red"}

    @pytest.mark.asyncio
    async def test_query_normalizes_identifiers(
        self, order_schema: EntitySchema, registry: EntityServiceRegistry
    ) -> None:
        persistence = make_persistence(query_entity={"data": [{"id": "o1", "title": "a"}], "cursor": None})
        orders = make_orders(order_schema, registry, persistence)

        result = await orders.query(
            {"index": "byCustomer", "identifiers": {"customerId": "c1", "title": "ignored"}, "order": "desc"}
        )

        sent = persistence.query_entity.await_args.kwargs["query"]
        assert sent["identifiers"] == {"customerId": "c1"}
        assert sent["order"] == "desc"
        assert result["data"] == [{"id": "o1", "title": "a"}]


class TestWrites:
    """Tests for create, update and delete."""

    @pytest.mark.asyncio
    async def test_create_applies_defaults(self, order_schema: EntitySchema, registry: EntityServiceRegistry) -> None:
        persistence = make_persistence()
        orders = make_orders(order_schema, registry, persistence)

        created = await orders.create({"customerId": "c1", "title": "Chair"})

        assert created["status"] == "NEW"
        assert isinstance(created["id"], str) and len(created["id"]) == 36
        persistence.create_entity.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_create_keeps_supplied_values(
        self, order_schema: EntitySchema, registry: EntityServiceRegistry
    ) -> None:
        orders = make_orders(order_schema, registry)

        created = await orders.create({"id": "o1", "customerId": "c1", "status": "PAID"})

        assert created["id"] == "o1"
        assert created["status"] == "PAID"

    @pytest.mark.asyncio
    async def test_create_validation_failure(self, order_schema: EntitySchema, registry: EntityServiceRegistry) -> None:
        persistence = make_persistence()
        orders = make_orders(order_schema, registry, persistence)

        with pytest.raises(AppError) as excinfo:
            await orders.create({"title": "Chair"})

        assert excinfo.value.error_code == ErrorCode.INVALID_INPUT
        assert excinfo.value.details["errors"][0]["attribute"] == "customerId"
        persistence.create_entity.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_service_rules_and_messages(
        self, order_schema: EntitySchema, registry: EntityServiceRegistry
    ) -> None:
        class OrderService(EntityService):
            def get_entity_validations(self) -> Dict[str, Dict[str, Any]]:
                return {"title": {"minLength": 3}}

            async def get_overridden_entity_validation_error_messages(self) -> Dict[str, str]:
                return {"validation.title.minLength": "Title too short"}

        orders = registry.register(OrderService(order_schema, make_persistence(), registry))

        with pytest.raises(AppError) as excinfo:
            await orders.update({"id": "o1"}, {"title": "ab"})

        assert excinfo.value.details["errors"] == [
            {"attribute": "title", "rule": "minLength", "message": "Title too short"}
        ]

    @pytest.mark.asyncio
    async def test_update_validates_supplied_fields_only(
        self, order_schema: EntitySchema, registry: EntityServiceRegistry
    ) -> None:
        persistence = make_persistence()
        orders = make_orders(order_schema, registry, persistence)

        updated = await orders.update({"id": "o1"}, {"title": "Table"})

        assert updated == {"id": "o1", "title": "Table"}
        persistence.update_entity.assert_awaited_once_with(
            entity_name="Order", identifiers={"id": "o1"}, data={"title": "Table"}
        )

    @pytest.mark.asyncio
    async def test_delete(self, order_schema: EntitySchema, registry: EntityServiceRegistry) -> None:
        persistence = make_persistence(delete_entity={"id": "o1", "title": "Chair"})
        orders = make_orders(order_schema, registry, persistence)

        deleted = await orders.delete({"id": "o1"})

        assert deleted == {"id": "o1", "title": "Chair"}
        persistence.delete_entity.assert_awaited_once_with(entity_name="Order", identifiers={"id": "o1"})


class TestNestedHydration:
    """Tests for relations hydrated through several levels of services."""

    @pytest.fixture
    def company_schema(self) -> EntitySchema:
        return EntitySchema.from_dict(
            {
                "model": {"entity": "Company", "entityNamePlural": "Companies"},
                "attributes": {
                    "id": {"type": "string", "isIdentifier": True},
                    "label": {"type": "string"},
                },
                "indexes": {"primary": {"pk": {"composite": ["id"]}}},
            }
        )

    @pytest.fixture
    def employee_schema(self) -> EntitySchema:
        """Customer entity whose records point at a company."""
        return EntitySchema.from_dict(
            {
                "model": {"entity": "Customer", "entityNamePlural": "Customers"},
                "attributes": {
                    "id": {"type": "string", "isIdentifier": True},
                    "name": {"type": "string"},
                    "companyId": {"type": "string"},
                    "company": {
                        "type": "string",
                        "relation": {
                            "entity": "Company",
                            "identifiers": {"source": "companyId", "target": "id"},
                        },
                    },
                },
                "indexes": {"primary": {"pk": {"composite": ["id"]}}},
            }
        )

    @pytest.mark.asyncio
    async def test_order_customer_company(
        self,
        order_schema: EntitySchema,
        employee_schema: EntitySchema,
        company_schema: EntitySchema,
        registry: EntityServiceRegistry,
    ) -> None:
        """Test each relation level is fetched with one get on its service."""
        company_persistence = make_persistence(get_entity=[{"id": "k1", "label": "Acme"}])
        customer_persistence = make_persistence(
            get_entity=[
                {"id": "c1", "name": "Ann", "companyId": "k1"},
                {"id": "c2", "name": "Bob", "companyId": "k1"},
            ]
        )
        order_persistence = make_persistence(
            list_entity={
                "data": [
                    {"id": "o1", "customerId": "c1"},
                    {"id": "o2", "customerId": "c2"},
                    {"id": "o3", "customerId": "c1"},
                ],
                "cursor": None,
            }
        )
        registry.register(EntityService(company_schema, company_persistence, registry))
        registry.register(EntityService(employee_schema, customer_persistence, registry))
        orders = make_orders(order_schema, registry, order_persistence)

        result = await orders.list({"attributes": ["id", "customer.name", "customer.company.label"]})

        assert result["data"] == [
            {"id": "o1", "customer": {"name": "Ann", "company": {"label": "Acme"}}},
            {"id": "o2", "customer": {"name": "Bob", "company": {"label": "Acme"}}},
            {"id": "o3", "customer": {"name": "Ann", "company": {"label": "Acme"}}},
        ]
        order_persistence.list_entity.assert_awaited_once()
        customer_persistence.get_entity.assert_awaited_once()
        assert customer_persistence.get_entity.await_args.kwargs["identifiers"] == [
            {"id": "c1"},
            {"id": "c2"},
        ]
        company_persistence.get_entity.assert_awaited_once()
        assert company_persistence.get_entity.await_args.kwargs["identifiers"] == [{"id": "k1"}]
