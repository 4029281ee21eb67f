"""
Entity service: CRUD, listing, search and relation hydration for one entity.

Subclass (or instantiate) per entity and register it so other entities can
hydrate relations pointing at it::

    registry = EntityServiceRegistry()
    persistence = DynamoDBPersistence([ORDER_SCHEMA, CUSTOMER_SCHEMA])
    registry.register(EntityService(CUSTOMER_SCHEMA, persistence, registry))
    orders = registry.register(EntityService(ORDER_SCHEMA, persistence, registry))

    await orders.list({"attributes": ["orderId", "customer.name"], "search": "red chair"})
"""

import copy
import uuid
from typing import Any, Dict, List, Mapping, Optional, Union

from ..utils.logging import StructuredLogger, get_logger
from ..utils.objects import pick_keys
from .access_patterns import AccessPatterns, extract_entity_identifiers, resolve_access_patterns
from .hydration import RelationHydrator
from .io_schema import (
    get_filterable_attribute_names,
    get_searchable_attribute_names,
    make_ops_default_io_schema,
)
from .persistence import EntityPersistence
from .query import (
    SEARCH_TERM_DELIMITERS,
    EntityQuery,
    add_filter_group_to_entity_filter_criteria,
    make_filter_group_for_search_keywords,
    parse_search_attributes,
    split_search_terms,
)
from .registry import EntityServiceRegistry
from .schema import EntitySchema
from .selections import (
    Selections,
    SelectionTree,
    get_relation_selections,
    get_storage_attribute_names,
    get_top_level_attribute_names,
    infer_relationships,
    parse_attribute_paths,
)
from .validation import Rules, validate_entity_input

Identifiers = Dict[str, Any]
Record = Dict[str, Any]


class EntityService:
    """Schema-driven access to one entity."""

    delimiters_regex = SEARCH_TERM_DELIMITERS

    def __init__(
        self,
        schema: EntitySchema,
        persistence: EntityPersistence,
        registry: Optional[EntityServiceRegistry] = None,
        log: Optional[StructuredLogger] = None,
    ) -> None:
        self.schema = schema
        self.persistence = persistence
        self.registry = registry if registry is not None else EntityServiceRegistry()
        self.logger = log or get_logger(f"{__name__}.{schema.entity_name}")
        self.hydrator = RelationHydrator(self.registry, self.logger)

        self._access_patterns: Optional[AccessPatterns] = None
        self._ops_default_io_schema: Optional[Dict[str, Dict[str, Any]]] = None

    # ------------------------------------------------------------------
    # schema derived metadata
    # ------------------------------------------------------------------

    def get_entity_name(self) -> str:
        return self.schema.entity_name

    def get_entity_schema(self) -> EntitySchema:
        return self.schema

    def get_entity_primary_id_property_name(self) -> Optional[str]:
        return self.schema.primary_id_attribute

    def get_access_patterns(self) -> AccessPatterns:
        if self._access_patterns is None:
            self._access_patterns = resolve_access_patterns(self.schema)
        return self._access_patterns

    def get_ops_default_io_schema(self) -> Dict[str, Dict[str, Any]]:
        """Default input/output schema of every operation (built once)."""
        if self._ops_default_io_schema is None:
            self._ops_default_io_schema = make_ops_default_io_schema(self.schema)
        return self._ops_default_io_schema

    def get_default_serialization_attribute_names(self) -> List[str]:
        """Attributes returned by ``get`` when no selection is given."""
        return list(self.get_ops_default_io_schema()["get"]["output"])

    def get_listing_attribute_names(self) -> List[str]:
        """Attributes returned by ``list``/``query`` when no selection is given."""
        return list(self.get_ops_default_io_schema()["list"]["output"])

    def get_searchable_attribute_names(self) -> List[str]:
        return get_searchable_attribute_names(self.schema)

    def get_filterable_attribute_names(self) -> List[str]:
        return get_filterable_attribute_names(self.schema)

    def get_entity_validations(self) -> Rules:
        """Override to provide validation rules for create/update payloads."""
        return {}

    async def get_overridden_entity_validation_error_messages(self) -> Dict[str, str]:
        """
        Override to replace validation messages, e.g.::

            {"validation.email.required": "Email is required!"}
        """
        return {}

    def extract_entity_identifiers(
        self,
        input: Union[Mapping[str, Any], List[Mapping[str, Any]], None],
        for_access_pattern: Optional[str] = None,
    ) -> Union[Identifiers, List[Identifiers]]:
        return extract_entity_identifiers(
            self.schema,
            input,
            for_access_pattern=for_access_pattern,
            access_patterns=self.get_access_patterns(),
            log=self.logger,
        )

    # ------------------------------------------------------------------
    # selections and serialization
    # ------------------------------------------------------------------

    def resolve_selections(
        self, selections: Optional[Selections], default: List[str]
    ) -> SelectionTree:
        tree = infer_relationships(self.schema, selections or default, self.registry)
        return self.drop_hidden_attributes(tree)

    def drop_hidden_attributes(self, tree: SelectionTree) -> SelectionTree:
        """Hidden attributes are never read nor returned, even when selected."""
        attributes = self.schema.attributes
        return {
            att_name: node
            for att_name, node in tree.items()
            if att_name not in attributes or not attributes[att_name].hidden
        }

    def _serialized_keys(self, attributes: Optional[Selections]) -> List[str]:
        if attributes is None:
            attributes = self.get_default_serialization_attribute_names()
        tree = self.drop_hidden_attributes(parse_attribute_paths(attributes))
        return get_top_level_attribute_names(tree)

    def serialize_record(
        self, record: Mapping[str, Any], attributes: Optional[Selections] = None
    ) -> Record:
        return pick_keys(record, *self._serialized_keys(attributes))

    def serialize_records(
        self, records: List[Mapping[str, Any]], attributes: Optional[Selections] = None
    ) -> List[Record]:
        keys = self._serialized_keys(attributes)
        return [pick_keys(record, *keys) for record in records]

    def _apply_search(self, query: Dict[str, Any]) -> None:
        if not query.get("search"):
            return

        terms = split_search_terms(query["search"], self.delimiters_regex)
        query["search"] = terms
        if not terms:
            return

        search_attributes = parse_search_attributes(query.get("searchAttributes"))
        if not search_attributes:
            search_attributes = self.get_searchable_attribute_names()
        query["searchAttributes"] = search_attributes

        if not search_attributes:
            self.logger.warning("No searchable attributes", entity=self.get_entity_name())
            return

        search_filter_group = make_filter_group_for_search_keywords(terms, search_attributes)
        query["filters"] = add_filter_group_to_entity_filter_criteria(
            search_filter_group, query.get("filters")
        )

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    async def get(
        self,
        identifiers: Union[Identifiers, List[Identifiers]],
        selections: Optional[Selections] = None,
    ) -> Union[Optional[Record], List[Record]]:
        """
        Retrieve one record, or a batch of records, by identifiers.

        Args:
            identifiers: Identifiers of one record, or a list of them
            selections: Dot-paths or a selection tree; defaults to the
                detail output attributes

        Returns:
            The record (or None) for a mapping; the found records for a list,
            in no particular order
        """
        self.logger.info("Called get", entity=self.get_entity_name(), identifiers=identifiers)

        tree = self.resolve_selections(selections, self.get_default_serialization_attribute_names())

        result = await self.persistence.get_entity(
            entity_name=self.get_entity_name(),
            identifiers=identifiers,
            attributes=get_storage_attribute_names(tree),
        )
        if result is None:
            return None

        records = result if isinstance(result, list) else [result]
        await self.hydrator.hydrate(self.schema, records, get_relation_selections(tree))
        serialized = self.serialize_records(records, tree)

        self.logger.info("Completed get", entity=self.get_entity_name(), count=len(serialized))

        return serialized if isinstance(result, list) else serialized[0]

    def _with_defaults(self, payload: Mapping[str, Any]) -> Record:
        data = dict(payload)
        for att_name, att in self.schema.attributes.items():
            if att_name in data:
                continue
            if att.default is not None:
                data[att_name] = att.default() if callable(att.default) else copy.deepcopy(att.default)
            elif att.is_identifier and att.type == "string":
                data[att_name] = str(uuid.uuid4())
        return data

    async def create(self, payload: Mapping[str, Any]) -> Record:
        """Validate and store a new record; defaults and a generated id are filled in."""
        self.logger.debug("Called create", entity=self.get_entity_name(), payload=payload)

        data = self._with_defaults(payload)
        validate_entity_input(
            self.schema,
            data,
            "create",
            rules=self.get_entity_validations(),
            messages=await self.get_overridden_entity_validation_error_messages(),
        )

        return await self.persistence.create_entity(entity_name=self.get_entity_name(), data=data)

    async def list(self, query: Optional[EntityQuery] = None) -> Dict[str, Any]:
        """
        List records.

        - Without ``attributes`` the listing attributes are selected.
        - ``search`` is split on ``&``, space, ``,`` and ``+``; each term must
          match one of ``searchAttributes`` (default: the searchable attributes).

        Returns:
            ``{"data": records, "cursor": ..., "query": normalized query}``
        """
        query = dict(query or {})
        self.logger.debug("Called list", entity=self.get_entity_name(), query=query)
        return await self._read(query, self.persistence.list_entity)

    async def query(self, query: EntityQuery) -> Dict[str, Any]:
        """
        Query records through an access pattern (``query["index"]``) with
        ``query["identifiers"]`` holding its key attributes. Same selection and
        search handling as ``list``.
        """
        query = dict(query)
        self.logger.debug("Called query", entity=self.get_entity_name(), query=query)

        if query.get("identifiers") is not None:
            query["identifiers"] = self.extract_entity_identifiers(
                query["identifiers"], for_access_pattern=query.get("index")
            )

        return await self._read(query, self.persistence.query_entity)

    async def _read(self, query: Dict[str, Any], operation: Any) -> Dict[str, Any]:
        tree = self.resolve_selections(query.get("attributes"), self.get_listing_attribute_names())
        query["attributes"] = tree

        self._apply_search(query)

        page = await operation(
            entity_name=self.get_entity_name(),
            query=query,
            attributes=get_storage_attribute_names(tree),
        )

        records = list(page.get("data") or [])
        await self.hydrator.hydrate(self.schema, records, get_relation_selections(tree))

        return {**page, "data": self.serialize_records(records, tree), "query": query}

    async def update(self, identifiers: Identifiers, data: Mapping[str, Any]) -> Record:
        """Validate the supplied fields and update the record."""
        self.logger.debug(
            "Called update", entity=self.get_entity_name(), identifiers=identifiers, data=data
        )

        validate_entity_input(
            self.schema,
            data,
            "update",
            rules=self.get_entity_validations(),
            messages=await self.get_overridden_entity_validation_error_messages(),
        )

        return await self.persistence.update_entity(
            entity_name=self.get_entity_name(), identifiers=identifiers, data=dict(data)
        )

    async def delete(
        self, identifiers: Union[Identifiers, List[Identifiers]]
    ) -> Union[Optional[Record], List[Optional[Record]]]:
        """Delete one record, or a batch; returns the deleted record(s)."""
        self.logger.debug("Called delete", entity=self.get_entity_name(), identifiers=identifiers)

        return await self.persistence.delete_entity(
            entity_name=self.get_entity_name(), identifiers=identifiers
        )
