"""
Relation hydration.

Given records of one entity and the relation selections made on them, fetch
the related records and put them in place of the stored references::

    order = {"orderId": "o-1", "customerId": "c-1"}
    # selection: ["orderId", "customer.name"]
    order == {"orderId": "o-1", "customerId": "c-1", "customer": {"name": "Ann"}}

Each relation attribute costs exactly one batched ``get`` on the related
service, whatever the number of records and duplicate references. Distinct
relation attributes are fetched concurrently.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..utils.errors import ConfigurationError
from ..utils.logging import StructuredLogger, get_logger
from ..utils.objects import (
    get_value_by_path,
    is_object,
    pick_keys,
    stable_json_key,
    unique_by_structure,
)
from .registry import EntityServiceRegistry
from .schema import EntitySchema, RelationIdentifier
from .selections import RelationSelection, get_top_level_attribute_names, parse_attribute_paths

logger = get_logger(__name__)


def _relation_values(
    record: Dict[str, Any],
    att_name: str,
    identifiers: Sequence[RelationIdentifier],
    read_from_record: bool,
) -> Tuple[Any, bool]:
    """
    Raw reference value(s) of a relation on ``record`` and whether it is to-many.

    The relation attribute itself is used when it holds a value. Otherwise,
    and only for relations that declare their identifiers, the sources are
    read from the record (``customerId`` next to an unset ``customer``).
    """
    raw = record.get(att_name)
    if raw is None:
        if not read_from_record:
            return None, False
        if len(identifiers) == 1:
            raw = get_value_by_path(record, identifiers[0].source)
        else:
            raw = record

    if isinstance(raw, (set, frozenset)):
        raw = sorted(raw, key=str)

    return raw, isinstance(raw, (list, tuple))


def _identifiers_for(value: Any, identifiers: Sequence[RelationIdentifier]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for mapping in identifiers:
        identifier_value = get_value_by_path(value, mapping.source) if is_object(value) else value
        if identifier_value is not None:
            result[mapping.target] = identifier_value
    return result


def _project(record: Dict[str, Any], keys: List[str]) -> Dict[str, Any]:
    return pick_keys(record, *keys) if keys else dict(record)


class _RecordLookup:
    """Find fetched related records by identifier equality."""

    def __init__(self, records: Sequence[Dict[str, Any]]) -> None:
        self._records = records
        self._tables: Dict[Tuple[str, ...], Dict[str, Dict[str, Any]]] = {}

    def find(self, identifiers: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        keys = tuple(sorted(identifiers))
        table = self._tables.get(keys)
        if table is None:
            table = {}
            for record in self._records:
                if all(key in record for key in keys):
                    table.setdefault(stable_json_key({key: record[key] for key in keys}), record)
            self._tables[keys] = table
        return table.get(stable_json_key(identifiers))


class RelationHydrator:
    """Joins related entities onto already-fetched records."""

    def __init__(
        self, registry: EntityServiceRegistry, log: Optional[StructuredLogger] = None
    ) -> None:
        self.registry = registry
        self.logger = log or logger

    async def hydrate(
        self,
        schema: EntitySchema,
        root_records: List[Dict[str, Any]],
        relations: Sequence[Tuple[str, RelationSelection]],
    ) -> None:
        """Hydrate every selected relation attribute on ``root_records`` in place."""
        if not relations or not root_records:
            return

        self.logger.info(
            "Hydrating records",
            entity=schema.entity_name,
            relations=[name for name, _ in relations],
            count=len(root_records),
        )

        await asyncio.gather(
            *(
                self.hydrate_single_relation(schema, root_records, att_name, selection)
                for att_name, selection in relations
            )
        )

    async def hydrate_single_relation(
        self,
        schema: EntitySchema,
        root_records: List[Dict[str, Any]],
        att_name: str,
        selection: RelationSelection,
    ) -> None:
        related_service = self.registry.get_entity_service_by_entity_name(selection.entity_name)
        if related_service is None:
            raise ConfigurationError(
                f"No service registered for relationship: {att_name}({selection.entity_name}); "
                "make sure the service has been registered in the entity service registry",
                {"entity": schema.entity_name, "attribute": att_name, "relatedEntity": selection.entity_name},
            )

        att = schema.attributes.get(att_name)
        if att is None or att.relation is None:
            self.logger.warning(
                "No relation metadata found for relationship",
                entity=schema.entity_name,
                attribute=att_name,
            )
            return

        # defaulted mappings name the related identifier, not a field of the root record
        read_from_record = bool(att.relation.identifiers)
        identifiers = list(selection.identifiers) or list(att.relation.identifiers)
        if not identifiers:
            related_id = related_service.get_entity_primary_id_property_name()
            if not related_id:
                raise ConfigurationError(
                    f"Related entity {selection.entity_name} has no identifier attribute",
                    {"entity": schema.entity_name, "attribute": att_name},
                )
            identifiers = [RelationIdentifier(source=related_id, target=related_id)]

        # (record, is-to-many, identifiers of each referenced related record)
        references: List[Tuple[Dict[str, Any], bool, List[Dict[str, Any]]]] = []
        identifiers_batch: List[Dict[str, Any]] = []

        for record in root_records:
            raw, is_to_many = _relation_values(record, att_name, identifiers, read_from_record)
            values = raw if is_to_many else [raw]

            record_identifiers = [
                ids
                for ids in (_identifiers_for(value, identifiers) for value in values if value is not None)
                if ids
            ]

            references.append((record, is_to_many, record_identifiers))
            identifiers_batch.extend(record_identifiers)

        unique_identifiers_batch = unique_by_structure(identifiers_batch)
        if not unique_identifiers_batch:
            self.logger.debug(
                "Nothing to hydrate", entity=schema.entity_name, attribute=att_name
            )
            return

        selected_keys = get_top_level_attribute_names(selection.attributes)

        # identifier attributes are always fetched so records can be matched back
        attributes = parse_attribute_paths(selection.attributes)
        for ids in unique_identifiers_batch:
            for key in ids:
                attributes.setdefault(key, True)

        related_records = await related_service.get(
            identifiers=unique_identifiers_batch,
            selections=attributes,
        )
        if isinstance(related_records, dict):
            related_records = [related_records]

        lookup = _RecordLookup(related_records or [])

        for record, is_to_many, record_identifiers in references:
            if not record_identifiers and not is_to_many:
                continue

            matches = [lookup.find(ids) for ids in record_identifiers]
            if is_to_many:
                record[att_name] = [
                    _project(match, selected_keys) for match in matches if match is not None
                ]
            else:
                match = matches[0]
                record[att_name] = _project(match, selected_keys) if match is not None else None
