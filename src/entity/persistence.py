"""
Persistence collaborators of the entity layer.

``EntityPersistence`` is the contract the entity service delegates storage
to. ``DynamoDBPersistence`` implements it on boto3, one table per entity:

* the ``primary`` index (or the first one) is the table key, every other
  index is a GSI named by its ``index`` setting;
* a key built from several attributes is stored in its ``field`` as the
  ``#``-joined attribute values (``Pack#158#Fall#2024``) and kept up to date
  on create/update;
* boto3 calls are blocking, so they run on a worker thread.

Errors raised by boto3 (``ConditionalCheckFailedException`` on a duplicate
create or on updating a missing record, throttling, ...) propagate as-is.
"""

import asyncio
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Protocol, Union

from boto3.dynamodb.conditions import Attr, Key

from ..utils.dynamodb import (
    TableAccessor,
    from_dynamo_value,
    get_dynamodb_resource,
    tables,
    to_dynamo_value,
)
from ..utils.errors import ConfigurationError, InvalidArgumentError
from ..utils.logging import get_logger
from ..utils.objects import unique_by_structure
from .conditions import build_condition_expression
from .schema import EntitySchema, IndexKey, IndexSpec

if TYPE_CHECKING:
    from mypy_boto3_dynamodb import DynamoDBServiceResource
    from mypy_boto3_dynamodb.service_resource import Table

logger = get_logger(__name__)

Identifiers = Dict[str, Any]
Record = Dict[str, Any]

# DynamoDB BatchGetItem accepts at most 100 keys per request
BATCH_GET_LIMIT = 100
MAX_UNPROCESSED_RETRIES = 3


class EntityPersistence(Protocol):
    """Storage operations the entity service delegates to."""

    async def get_entity(
        self,
        *,
        entity_name: str,
        identifiers: Union[Identifiers, List[Identifiers]],
        attributes: Optional[List[str]] = None,
    ) -> Union[Optional[Record], List[Record]]:
        """One record (or None) for a mapping, a list of found records for a batch."""
        ...

    async def create_entity(self, *, entity_name: str, data: Record) -> Record:
        ...

    async def update_entity(
        self, *, entity_name: str, identifiers: Identifiers, data: Record
    ) -> Record:
        ...

    async def delete_entity(
        self, *, entity_name: str, identifiers: Union[Identifiers, List[Identifiers]]
    ) -> Union[Optional[Record], List[Optional[Record]]]:
        ...

    async def list_entity(
        self, *, entity_name: str, query: Dict[str, Any], attributes: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """``{"data": [records], "cursor": next-page cursor or None}``"""
        ...

    async def query_entity(
        self, *, entity_name: str, query: Dict[str, Any], attributes: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """``{"data": [records], "cursor": next-page cursor or None}``"""
        ...


def build_key_value(key: IndexKey, data: Dict[str, Any]) -> Any:
    """Value stored in ``key.key_attribute`` for ``data``; None when a part is missing."""
    if not key.is_composed:
        return data.get(key.composite[0])

    parts = [data.get(att_name) for att_name in key.composite]
    if any(part is None for part in parts):
        return None
    return "#".join(str(from_dynamo_value(part)) for part in parts)


def _key_prefix(key: IndexKey, data: Dict[str, Any]) -> Optional[str]:
    """Leading composite parts present in ``data``, for partial sort-key queries."""
    parts = []
    for att_name in key.composite:
        if data.get(att_name) is None:
            break
        parts.append(str(from_dynamo_value(data[att_name])))
    if not parts:
        return None
    # trailing separator so "Pack" does not match "Pack2#..."
    return "#".join(parts) + "#"


def _projection(attributes: Optional[List[str]]) -> Dict[str, Any]:
    if not attributes:
        return {}
    names = {f"#p{i}": att_name for i, att_name in enumerate(attributes)}
    return {
        "ProjectionExpression": ", ".join(names),
        "ExpressionAttributeNames": names,
    }


class DynamoDBPersistence:
    """boto3-backed ``EntityPersistence``."""

    def __init__(
        self,
        schemas: Iterable[EntitySchema] = (),
        table_accessor: TableAccessor = tables,
        dynamodb: Optional["DynamoDBServiceResource"] = None,
    ) -> None:
        self._schemas: Dict[str, EntitySchema] = {}
        self.tables = table_accessor
        self._dynamodb = dynamodb
        for schema in schemas:
            self.register_schema(schema)

    def register_schema(self, schema: EntitySchema) -> None:
        self._schemas[schema.entity_name] = schema

    def _schema(self, entity_name: str) -> EntitySchema:
        schema = self._schemas.get(entity_name)
        if schema is None:
            raise ConfigurationError(
                f"No schema registered with the DynamoDB persistence for entity {entity_name}",
                {"entity": entity_name},
            )
        return schema

    def _table(self, entity_name: str) -> "Table":
        return self.tables.for_entity(entity_name)

    def _resource(self) -> "DynamoDBServiceResource":
        if self._dynamodb is None:
            self._dynamodb = get_dynamodb_resource()
        return self._dynamodb

    # ------------------------------------------------------------------
    # keys
    # ------------------------------------------------------------------

    def _primary_key(self, schema: EntitySchema, identifiers: Identifiers) -> Dict[str, Any]:
        index = schema.primary_index
        key: Dict[str, Any] = {}
        for index_key in filter(None, (index.pk, index.sk)):
            value = build_key_value(index_key, identifiers)
            if value is None:
                raise InvalidArgumentError(
                    f"Missing key attributes for entity {schema.entity_name}",
                    {"entity": schema.entity_name, "required": list(index_key.composite)},
                )
            key[index_key.key_attribute] = to_dynamo_value(value)
        return key

    def _composed_key_fields(
        self, schema: EntitySchema, data: Dict[str, Any], skip_primary: bool = False
    ) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        primary = schema.primary_index
        for index in schema.indexes.values():
            if skip_primary and index is primary:
                continue
            for index_key in filter(None, (index.pk, index.sk)):
                if not index_key.is_composed:
                    continue
                value = build_key_value(index_key, data)
                if value is not None:
                    fields[index_key.field] = value  # type: ignore[index]
        return fields

    def _index(self, schema: EntitySchema, name: Optional[str]) -> IndexSpec:
        if not name or name == "primary":
            return schema.primary_index
        index = schema.indexes.get(name)
        if index is None:
            raise InvalidArgumentError(
                f"Unknown access pattern {name} for entity {schema.entity_name}",
                {"entity": schema.entity_name, "index": name},
            )
        return index

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    async def get_entity(
        self,
        *,
        entity_name: str,
        identifiers: Union[Identifiers, List[Identifiers]],
        attributes: Optional[List[str]] = None,
    ) -> Union[Optional[Record], List[Record]]:
        schema = self._schema(entity_name)
        table = self._table(entity_name)

        if isinstance(identifiers, list):
            keys = unique_by_structure(self._primary_key(schema, ids) for ids in identifiers)
            return await self._batch_get(table, keys, attributes)

        response = await asyncio.to_thread(
            table.get_item, Key=self._primary_key(schema, identifiers), **_projection(attributes)
        )
        item = response.get("Item")
        return from_dynamo_value(item) if item is not None else None

    async def _batch_get(
        self, table: "Table", keys: List[Dict[str, Any]], attributes: Optional[List[str]]
    ) -> List[Record]:
        resource = self._resource()
        items: List[Record] = []

        for start in range(0, len(keys), BATCH_GET_LIMIT):
            request_items: Dict[str, Any] = {
                table.name: {"Keys": keys[start : start + BATCH_GET_LIMIT], **_projection(attributes)}
            }

            for _ in range(MAX_UNPROCESSED_RETRIES + 1):
                response = await asyncio.to_thread(resource.batch_get_item, RequestItems=request_items)
                items.extend(response.get("Responses", {}).get(table.name, []))

                unprocessed = response.get("UnprocessedKeys") or {}
                if not unprocessed.get(table.name, {}).get("Keys"):
                    break
                request_items = unprocessed
            else:
                logger.warning(
                    "Unprocessed keys in batch",
                    table=table.name,
                    count=len(request_items.get(table.name, {}).get("Keys", [])),
                )

        return [from_dynamo_value(item) for item in items]

    async def create_entity(self, *, entity_name: str, data: Record) -> Record:
        schema = self._schema(entity_name)
        table = self._table(entity_name)

        self._primary_key(schema, data)
        item = to_dynamo_value({**data, **self._composed_key_fields(schema, data)})

        await asyncio.to_thread(
            table.put_item,
            Item=item,
            ConditionExpression=Attr(schema.primary_index.pk.key_attribute).not_exists(),
        )
        logger.info("Created record", entity=entity_name)
        return from_dynamo_value(item)

    async def update_entity(
        self, *, entity_name: str, identifiers: Identifiers, data: Record
    ) -> Record:
        schema = self._schema(entity_name)
        table = self._table(entity_name)
        key = self._primary_key(schema, identifiers)

        updates = {k: v for k, v in data.items() if k not in key and k not in identifiers}
        updates.update(
            self._composed_key_fields(schema, {**identifiers, **data}, skip_primary=True)
        )
        if not updates:
            raise InvalidArgumentError(
                f"Nothing to update for entity {entity_name}", {"entity": entity_name}
            )

        names: Dict[str, str] = {}
        values: Dict[str, Any] = {}
        assignments = []
        for i, (att_name, value) in enumerate(updates.items()):
            names[f"#u{i}"] = att_name
            values[f":u{i}"] = to_dynamo_value(value)
            assignments.append(f"#u{i} = :u{i}")

        response = await asyncio.to_thread(
            table.update_item,
            Key=key,
            UpdateExpression="SET " + ", ".join(assignments),
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ConditionExpression=Attr(schema.primary_index.pk.key_attribute).exists(),
            ReturnValues="ALL_NEW",
        )
        logger.info("Updated record", entity=entity_name)
        return from_dynamo_value(response.get("Attributes", {}))

    async def delete_entity(
        self, *, entity_name: str, identifiers: Union[Identifiers, List[Identifiers]]
    ) -> Union[Optional[Record], List[Optional[Record]]]:
        if isinstance(identifiers, list):
            return list(
                await asyncio.gather(
                    *(self.delete_entity(entity_name=entity_name, identifiers=ids) for ids in identifiers)
                )
            )

        schema = self._schema(entity_name)
        table = self._table(entity_name)

        response = await asyncio.to_thread(
            table.delete_item, Key=self._primary_key(schema, identifiers), ReturnValues="ALL_OLD"
        )
        attributes = response.get("Attributes")
        return from_dynamo_value(attributes) if attributes is not None else None

    def _read_kwargs(self, query: Dict[str, Any], attributes: Optional[List[str]]) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {**_projection(attributes)}
        condition = build_condition_expression(query.get("filters"))
        if condition is not None:
            kwargs["FilterExpression"] = condition
        if query.get("limit"):
            kwargs["Limit"] = int(query["limit"])
        if query.get("cursor"):
            kwargs["ExclusiveStartKey"] = to_dynamo_value(query["cursor"])
        return kwargs

    @staticmethod
    def _page(response: Dict[str, Any]) -> Dict[str, Any]:
        cursor = response.get("LastEvaluatedKey")
        return {
            "data": [from_dynamo_value(item) for item in response.get("Items", [])],
            "cursor": from_dynamo_value(cursor) if cursor else None,
        }

    async def list_entity(
        self, *, entity_name: str, query: Dict[str, Any], attributes: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        self._schema(entity_name)
        table = self._table(entity_name)

        response = await asyncio.to_thread(table.scan, **self._read_kwargs(query, attributes))
        return self._page(response)

    async def query_entity(
        self, *, entity_name: str, query: Dict[str, Any], attributes: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        schema = self._schema(entity_name)
        table = self._table(entity_name)
        index = self._index(schema, query.get("index"))
        identifiers = query.get("identifiers") or {}

        pk_value = build_key_value(index.pk, identifiers)
        if pk_value is None:
            raise InvalidArgumentError(
                f"Missing partition key attributes for access pattern {index.name}",
                {"entity": entity_name, "index": index.name, "required": list(index.pk.composite)},
            )
        key_condition = Key(index.pk.key_attribute).eq(to_dynamo_value(pk_value))

        if index.sk is not None:
            sk_value = build_key_value(index.sk, identifiers)
            if sk_value is not None:
                key_condition = key_condition & Key(index.sk.key_attribute).eq(to_dynamo_value(sk_value))
            elif index.sk.is_composed:
                prefix = _key_prefix(index.sk, identifiers)
                if prefix is not None:
                    key_condition = key_condition & Key(index.sk.key_attribute).begins_with(prefix)

        kwargs = self._read_kwargs(query, attributes)
        kwargs["KeyConditionExpression"] = key_condition
        kwargs["ScanIndexForward"] = query.get("order", "asc") != "desc"
        if index.index and index is not schema.primary_index:
            kwargs["IndexName"] = index.index

        response = await asyncio.to_thread(table.query, **kwargs)
        return self._page(response)
