"""
Declarative entity schema.

An entity is declared once, either directly with the dataclasses below or
from the dict form used in entity modules::

    ORDER_SCHEMA = EntitySchema.from_dict({
        "model": {"entity": "Order", "entityNamePlural": "Orders"},
        "attributes": {
            "orderId": {"type": "string", "isIdentifier": True},
            "customerId": {"type": "string", "required": True},
            "customer": {
                "type": "string",
                "relation": {
                    "entity": "Customer",
                    "identifiers": {"source": "customerId", "target": "customerId"},
                },
            },
        },
        "indexes": {
            "primary": {"pk": {"composite": ["orderId"]}},
            "byCustomer": {"index": "customerId-index", "pk": {"composite": ["customerId"]}},
        },
    })

Every optional flag is resolved to an explicit value while loading, so the
rest of the entity layer never has to check whether a flag was given.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from ..utils.errors import ConfigurationError

ATTRIBUTE_TYPES = ("string", "number", "boolean", "map", "list", "set", "any")

# dict-form flag name -> dataclass field name
_FLAG_NAMES = {
    "isIdentifier": "is_identifier",
    "isVisible": "is_visible",
    "isEditable": "is_editable",
    "isListable": "is_listable",
    "isCreatable": "is_creatable",
    "isFilterable": "is_filterable",
    "isSearchable": "is_searchable",
    "required": "required",
    "hidden": "hidden",
}


@dataclass(frozen=True)
class RelationIdentifier:
    """Maps ``source`` (path on the owning record) to ``target`` (attribute of the related entity)."""

    source: str
    target: str


@dataclass(frozen=True)
class RelationSpec:
    entity: Union["EntitySchema", str]
    identifiers: Tuple[RelationIdentifier, ...] = ()

    @property
    def entity_name(self) -> str:
        if isinstance(self.entity, EntitySchema):
            return self.entity.entity_name
        return self.entity

    @property
    def entity_schema(self) -> Optional["EntitySchema"]:
        return self.entity if isinstance(self.entity, EntitySchema) else None


@dataclass(frozen=True)
class AttributeSpec:
    id: str
    type: str = "string"
    name: Optional[str] = None
    required: bool = False
    is_identifier: bool = False
    hidden: bool = False
    is_visible: bool = True
    is_editable: bool = True
    is_listable: bool = True
    is_creatable: bool = True
    is_filterable: bool = True
    is_searchable: bool = True
    relation: Optional[RelationSpec] = None
    properties: Dict[str, "AttributeSpec"] = field(default_factory=dict)
    items: Optional["AttributeSpec"] = None
    default: Any = None
    validations: Any = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IndexKey:
    composite: Tuple[str, ...]
    field: Optional[str] = None

    @property
    def key_attribute(self) -> str:
        """Physical attribute holding the key value."""
        if self.field:
            return self.field
        return self.composite[0]

    @property
    def is_composed(self) -> bool:
        """True when the key value is built from the composite attributes."""
        return self.field is not None and tuple(self.composite) != (self.field,)


@dataclass(frozen=True)
class IndexSpec:
    name: str
    pk: IndexKey
    sk: Optional[IndexKey] = None
    index: Optional[str] = None  # DynamoDB GSI name; None for the table key


@dataclass(frozen=True)
class EntityModel:
    entity: str
    entity_name_plural: str = ""
    service: Optional[str] = None
    version: str = "1"


@dataclass(frozen=True)
class EntitySchema:
    model: EntityModel
    attributes: Dict[str, AttributeSpec]
    indexes: Dict[str, IndexSpec]

    def __post_init__(self) -> None:
        entity = self.model.entity
        if not self.indexes:
            raise ConfigurationError(
                f"Entity {entity} declares no indexes", {"entity": entity}
            )

        for index in self.indexes.values():
            keys = [index.pk] + ([index.sk] if index.sk else [])
            for key in keys:
                if not key.composite:
                    raise ConfigurationError(
                        f"Index {index.name} of entity {entity} has an empty key composite",
                        {"entity": entity, "index": index.name},
                    )
                for att_name in key.composite:
                    if att_name not in self.attributes:
                        raise ConfigurationError(
                            f"Index {index.name} of entity {entity} references undeclared attribute {att_name}",
                            {"entity": entity, "index": index.name, "attribute": att_name},
                        )

        for att in self.attributes.values():
            if att.relation is not None and not att.relation.entity_name:
                raise ConfigurationError(
                    f"Relation attribute {att.id} of entity {entity} does not name a target entity",
                    {"entity": entity, "attribute": att.id},
                )

    @property
    def entity_name(self) -> str:
        return self.model.entity

    @property
    def entity_name_plural(self) -> str:
        return self.model.entity_name_plural or f"{self.model.entity}s"

    @property
    def primary_id_attribute(self) -> Optional[str]:
        for att_name, att in self.attributes.items():
            if att.is_identifier:
                return att_name
        return None

    @property
    def primary_index(self) -> IndexSpec:
        if "primary" in self.indexes:
            return self.indexes["primary"]
        return next(iter(self.indexes.values()))

    @classmethod
    def from_dict(cls, definition: Mapping[str, Any]) -> "EntitySchema":
        model_def = definition.get("model") or {}
        if not model_def.get("entity"):
            raise ConfigurationError("Entity schema is missing model.entity")

        model = EntityModel(
            entity=model_def["entity"],
            entity_name_plural=model_def.get("entityNamePlural", ""),
            service=model_def.get("service"),
            version=str(model_def.get("version", "1")),
        )

        attributes = {
            att_name: attribute_from_dict(att_name, att_def)
            for att_name, att_def in (definition.get("attributes") or {}).items()
        }

        indexes = {
            index_name: _index_from_dict(index_name, index_def)
            for index_name, index_def in (definition.get("indexes") or {}).items()
        }

        return cls(model=model, attributes=attributes, indexes=indexes)


def attribute_from_dict(att_name: str, att_def: Mapping[str, Any]) -> AttributeSpec:
    """Build an AttributeSpec from its dict form, resolving every default."""
    att_type = att_def.get("type", "string")
    if att_type not in ATTRIBUTE_TYPES:
        raise ConfigurationError(
            f"Attribute {att_name} has unsupported type {att_type}",
            {"attribute": att_name, "type": att_type},
        )

    flags = {
        field_name: bool(att_def[key])
        for key, field_name in _FLAG_NAMES.items()
        if key in att_def
    }

    properties = {
        prop_name: attribute_from_dict(prop_name, prop_def)
        for prop_name, prop_def in (att_def.get("properties") or {}).items()
    }

    items = None
    if att_def.get("items") is not None:
        items = attribute_from_dict(f"{att_name}[]", att_def["items"])

    known = set(_FLAG_NAMES) | {
        "type", "name", "relation", "properties", "items", "default", "validations",
    }

    return AttributeSpec(
        id=att_name,
        type=att_type,
        name=att_def.get("name"),
        relation=_relation_from_dict(att_def.get("relation")),
        properties=properties,
        items=items,
        default=att_def.get("default"),
        validations=att_def.get("validations"),
        extra={k: v for k, v in att_def.items() if k not in known},
        **flags,
    )


def _relation_from_dict(relation_def: Any) -> Optional[RelationSpec]:
    if relation_def is None:
        return None
    if isinstance(relation_def, RelationSpec):
        return relation_def

    identifiers_def = relation_def.get("identifiers") or []
    if isinstance(identifiers_def, Mapping):
        identifiers_def = [identifiers_def]

    return RelationSpec(
        entity=relation_def.get("entity") or "",
        identifiers=tuple(
            RelationIdentifier(source=i["source"], target=i["target"]) for i in identifiers_def
        ),
    )


def _index_key_from_dict(index_name: str, role: str, key_def: Mapping[str, Any]) -> IndexKey:
    composite = tuple(key_def.get("composite") or ())
    key_field = key_def.get("field")
    if key_field is None and len(composite) > 1:
        key_field = f"{index_name}_{role}"
    return IndexKey(composite=composite, field=key_field)


def _index_from_dict(index_name: str, index_def: Mapping[str, Any]) -> IndexSpec:
    if "pk" not in index_def:
        raise ConfigurationError(f"Index {index_name} has no pk", {"index": index_name})

    sk_def = index_def.get("sk")
    return IndexSpec(
        name=index_name,
        pk=_index_key_from_dict(index_name, "pk", index_def["pk"]),
        sk=_index_key_from_dict(index_name, "sk", sk_def) if sk_def else None,
        index=index_def.get("index"),
    )
