"""
Per-operation input/output projections of an entity schema.

The IO schema is what UI and documentation generators read to decide which
fields a create form, an update form, a detail view and a listing show.
"""

from typing import Any, Dict, List, Optional, TypedDict

from ..utils.cases import to_human_readable_name
from .schema import AttributeSpec, EntitySchema


class IOSchemaAttribute(TypedDict, total=False):
    """Display/IO description of one attribute."""

    id: str
    name: str
    type: str
    required: bool
    isIdentifier: bool
    hidden: bool
    isVisible: bool
    isEditable: bool
    isListable: bool
    isCreatable: bool
    isFilterable: bool
    isSearchable: bool
    relation: Optional[Dict[str, Any]]
    defaultValue: Any
    validations: List[str]
    properties: List["IOSchemaAttribute"]
    items: Dict[str, Any]


IOSchemaAttributesMap = Dict[str, IOSchemaAttribute]


def _validation_names(att: AttributeSpec, required: bool) -> List[str]:
    if isinstance(att.validations, dict):
        names = list(att.validations)
    elif isinstance(att.validations, (list, tuple)):
        names = [str(v) for v in att.validations]
    else:
        names = []
    if required and "required" not in names:
        names.insert(0, "required")
    return names


def entity_attribute_to_io_schema_attribute(
    att_id: str, att: AttributeSpec, required: Optional[bool] = None
) -> IOSchemaAttribute:
    """
    Format one attribute for the IO schema.

    Nested ``map`` properties and ``list``-of-``map`` item properties are
    formatted recursively so inner fields keep their own flags.
    """
    relation = None
    if att.relation is not None:
        relation = {
            "entity": att.relation.entity_name,
            "identifiers": [
                {"source": i.source, "target": i.target} for i in att.relation.identifiers
            ],
        }

    is_required = att.required if required is None else required

    formatted: Dict[str, Any] = {
        **att.extra,
        "id": att_id,
        "name": att.name or to_human_readable_name(att_id),
        "type": att.type,
        "required": is_required,
        "isIdentifier": att.is_identifier,
        "hidden": att.hidden,
        "isVisible": att.is_visible,
        "isEditable": att.is_editable,
        "isListable": att.is_listable,
        "isCreatable": att.is_creatable,
        "isFilterable": att.is_filterable,
        "isSearchable": att.is_searchable,
        "relation": relation,
        "defaultValue": None if callable(att.default) else att.default,
        "validations": _validation_names(att, is_required),
    }

    if att.type == "map":
        formatted["properties"] = [
            entity_attribute_to_io_schema_attribute(k, v) for k, v in att.properties.items()
        ]
    elif att.type == "list" and att.items is not None:
        items: Dict[str, Any] = {"type": att.items.type}
        if att.items.type == "map":
            items["properties"] = [
                entity_attribute_to_io_schema_attribute(k, v)
                for k, v in att.items.properties.items()
            ]
        formatted["items"] = items

    return formatted  # type: ignore[return-value]


def make_ops_default_io_schema(schema: EntitySchema) -> Dict[str, Dict[str, Any]]:
    """
    Generate the default input and output schemas for every entity operation.

    Returns:
        ``{get, delete, create, update, list}``; attribute maps keep the
        schema declaration order.
    """
    # access_patterns imports this module
    from .access_patterns import resolve_access_patterns

    create_input: IOSchemaAttributesMap = {}
    update_input: IOSchemaAttributesMap = {}
    detail_output: IOSchemaAttributesMap = {}
    list_output: IOSchemaAttributesMap = {}

    for att_name, att in schema.attributes.items():
        # hidden attributes are not visible to any operation
        if att.hidden:
            continue

        formatted = entity_attribute_to_io_schema_attribute(att_name, att)

        if att.is_visible:
            detail_output[att_name] = dict(formatted)  # type: ignore[assignment]
        if att.is_listable:
            list_output[att_name] = dict(formatted)  # type: ignore[assignment]
        if att.is_creatable:
            create_input[att_name] = dict(formatted)  # type: ignore[assignment]
        if att.is_editable:
            update_input[att_name] = dict(formatted)  # type: ignore[assignment]

    primary_access_pattern = resolve_access_patterns(schema)["primary"]

    return {
        "get": {
            "by": primary_access_pattern,
            "output": detail_output,
        },
        "delete": {
            "by": primary_access_pattern,
        },
        "create": {
            "input": create_input,
            "output": {"detail": detail_output, "list": list_output},
        },
        "update": {
            "by": primary_access_pattern,
            "input": update_input,
            "output": detail_output,
        },
        "list": {
            "output": list_output,
        },
    }


def get_searchable_attribute_names(schema: EntitySchema) -> List[str]:
    """Stored, non-hidden, non-identifier string attributes not opted out of search."""
    return [
        att_name
        for att_name, att in schema.attributes.items()
        if not att.hidden
        and not att.is_identifier
        and att.relation is None
        and att.type == "string"
        and att.is_searchable
    ]


def get_filterable_attribute_names(schema: EntitySchema) -> List[str]:
    """Stored, non-hidden string/number attributes not opted out of filtering."""
    return [
        att_name
        for att_name, att in schema.attributes.items()
        if not att.hidden
        and att.relation is None
        and att.type in ("string", "number")
        and att.is_filterable
    ]
