"""
Access patterns derived from an entity's indexes, and identifier extraction.
"""

from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Union

from ..utils.errors import InvalidArgumentError
from ..utils.logging import StructuredLogger, get_logger
from .io_schema import IOSchemaAttributesMap, entity_attribute_to_io_schema_attribute
from .schema import EntitySchema

AccessPatterns = Dict[str, IOSchemaAttributesMap]

logger = get_logger(__name__)


def resolve_access_patterns(schema: EntitySchema) -> AccessPatterns:
    """
    Build the access patterns of an entity.

    Each index yields its partition-key composite attributes followed by its
    sort-key composite attributes, all marked required. A ``primary`` entry
    always exists; without a literal ``primary`` index the first declared
    index is used.
    """
    access_patterns: AccessPatterns = {}

    for index_name, index in schema.indexes.items():
        index_attributes: IOSchemaAttributesMap = {}

        composite = list(index.pk.composite) + (list(index.sk.composite) if index.sk else [])
        for att_name in composite:
            index_attributes[att_name] = entity_attribute_to_io_schema_attribute(
                att_name, schema.attributes[att_name], required=True
            )

        access_patterns[index_name] = index_attributes

    if "primary" not in access_patterns:
        access_patterns["primary"] = next(iter(access_patterns.values()))

    return access_patterns


IdentifiersInput = Union[Mapping[str, Any], List[Mapping[str, Any]]]


def extract_entity_identifiers(
    schema: EntitySchema,
    input: Optional[IdentifiersInput],
    for_access_pattern: Optional[str] = None,
    access_patterns: Optional[AccessPatterns] = None,
    log: Optional[StructuredLogger] = None,
) -> Union[Dict[str, Any], List[Dict[str, Any]]]:
    """
    Extract the identifiers needed to address records of ``schema``.

    e.g.
    IN   ==> {"orderId": "o-1", "note": "gift", "tenantId": "t-1"}
    OUT  ==> {"orderId": "o-1", "tenantId": "t-1"}

    Args:
        schema: Entity schema
        input: A mapping, or a list of mappings (batch)
        for_access_pattern: Only collect attributes of this access pattern;
            the union of every access pattern when omitted
        access_patterns: Pre-resolved access patterns (resolved when omitted)

    Returns:
        A mapping for a single input, a list (same order) for a batch

    Raises:
        InvalidArgumentError: If input is missing or not mapping-shaped
    """
    log = log or logger

    is_batch_input = isinstance(input, (list, tuple))
    inputs = list(input) if is_batch_input else [input]  # type: ignore[arg-type]

    if not all(isinstance(item, Mapping) for item in inputs):
        raise InvalidArgumentError(
            "Input is required and must be an object containing entity-identifiers "
            "or a list of objects containing entity-identifiers"
        )

    access_patterns = access_patterns or resolve_access_patterns(schema)

    identifier_attributes: Dict[str, bool] = {}
    for pattern_name, pattern_attributes in access_patterns.items():
        if for_access_pattern and pattern_name != for_access_pattern:
            continue
        for att_name, att in pattern_attributes.items():
            identifier_attributes[att_name] = identifier_attributes.get(att_name, False) or bool(
                att.get("required")
            )

    primary_att_name = schema.primary_id_attribute

    identifiers_batch = []
    for item in inputs:
        identifiers: Dict[str, Any] = {}
        for att_name, required in identifier_attributes.items():
            if att_name in item:
                identifiers[att_name] = item[att_name]
            elif att_name == primary_att_name and "id" in item:
                identifiers[att_name] = item["id"]
            elif required:
                log.warning(
                    "Required identifier attribute not found in input",
                    entity=schema.entity_name,
                    attribute=att_name,
                    accessPattern=for_access_pattern or "--all--",
                )
        identifiers_batch.append(identifiers)

    log.debug("Extracted identifiers", entity=schema.entity_name, identifiers=identifiers_batch)

    return identifiers_batch if is_batch_input else identifiers_batch[0]
