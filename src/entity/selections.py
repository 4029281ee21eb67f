"""
Attribute selections.

A selection says which attributes (including nested and related ones) a
caller wants back. Callers either pass dot-paths::

    ["orderId", "customer.name", "customer.address.city"]

or the nested form those paths parse into::

    {"orderId": True, "customer": {"name": True, "address": {"city": True}}}

After ``infer_relationships`` every nested node that sits on a relation
attribute is a ``RelationSelection`` carrying what the hydrator needs to
join the related entity.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple, Union

from ..utils.logging import get_logger
from .schema import EntitySchema, RelationIdentifier

if TYPE_CHECKING:
    from .registry import EntityServiceRegistry

logger = get_logger(__name__)


@dataclass
class RelationSelection:
    """Selection node for a relation attribute, with its resolved join metadata."""

    entity_name: str
    identifiers: List[RelationIdentifier] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)

    def copy(self) -> "RelationSelection":
        return RelationSelection(
            entity_name=self.entity_name,
            identifiers=list(self.identifiers),
            attributes=parse_attribute_paths(self.attributes),
        )


SelectionTree = Dict[str, Union[bool, Dict[str, Any], RelationSelection]]
Selections = Union[Iterable[str], Mapping[str, Any]]


def _merge_into(target: Dict[str, Any], source: Mapping[str, Any]) -> None:
    for att_name, node in source.items():
        existing = target.get(att_name)

        if isinstance(node, RelationSelection):
            if isinstance(existing, RelationSelection):
                _merge_into(existing.attributes, node.attributes)
            else:
                merged = node.copy()
                if isinstance(existing, dict):
                    _merge_into(merged.attributes, existing)
                target[att_name] = merged
        elif isinstance(node, Mapping) or (
            isinstance(node, (list, tuple)) and not isinstance(node, str)
        ):
            nested = parse_attribute_paths(node)
            if isinstance(existing, RelationSelection):
                _merge_into(existing.attributes, nested)
            elif isinstance(existing, dict):
                _merge_into(existing, nested)
            else:
                # a nested branch wins over a bare leaf
                target[att_name] = nested
        elif node and att_name not in target:
            target[att_name] = True


def parse_attribute_paths(paths: Optional[Selections]) -> SelectionTree:
    """
    Parse dot-separated attribute paths into a nested selection tree.

    Paths sharing a prefix merge into one branch; the result does not depend
    on input order. An already-parsed mapping is returned as a merged copy.

    Examples:
        >>> parse_attribute_paths(["id", "author.name", "author.id"])
        {'id': True, 'author': {'name': True, 'id': True}}
    """
    tree: Dict[str, Any] = {}
    if not paths:
        return tree

    if isinstance(paths, Mapping):
        _merge_into(tree, paths)
        return tree

    if isinstance(paths, str):
        paths = [paths]

    for path in paths:
        segments = [segment for segment in str(path).split(".") if segment]
        if not segments:
            continue

        branch: Dict[str, Any] = {}
        node = branch
        for segment in segments[:-1]:
            node[segment] = {}
            node = node[segment]
        node[segments[-1]] = True

        _merge_into(tree, branch)

    return tree


def flatten_selection_paths(tree: Mapping[str, Any], prefix: str = "") -> List[str]:
    """Turn a selection tree back into sorted dot-paths."""
    paths: List[str] = []
    for att_name, node in tree.items():
        path = f"{prefix}{att_name}"
        if isinstance(node, RelationSelection):
            node = node.attributes
        if isinstance(node, Mapping):
            nested = flatten_selection_paths(node, f"{path}.")
            paths.extend(nested if nested else [path])
        elif node:
            paths.append(path)
    return sorted(paths)


def _related_schema(
    schema: EntitySchema, att_name: str, registry: Optional["EntityServiceRegistry"]
) -> Optional[EntitySchema]:
    relation = schema.attributes[att_name].relation
    if relation is None:
        return None
    if relation.entity_schema is not None:
        return relation.entity_schema
    if registry is not None:
        service = registry.get_entity_service_by_entity_name(relation.entity_name)
        if service is not None:
            return service.get_entity_schema()
    return None


def infer_relationships(
    schema: EntitySchema,
    selections: Optional[Selections],
    registry: Optional["EntityServiceRegistry"] = None,
) -> SelectionTree:
    """
    Attach relation metadata to every nested selection on a relation attribute.

    Identifier mappings default to the related entity's primary identifier on
    both sides. Nested selections are resolved against the related schema
    (taken from the relation itself, or from the registered service).
    Attribute names the schema does not know stay plain leaves.
    """
    tree = parse_attribute_paths(selections)

    for att_name, node in list(tree.items()):
        att = schema.attributes.get(att_name)
        relation = att.relation if att is not None else None

        if relation is None:
            if isinstance(node, RelationSelection):
                logger.warning(
                    "No relation metadata found for selected attribute",
                    entity=schema.entity_name,
                    attribute=att_name,
                )
                tree[att_name] = True
            continue

        # a bare leaf on a relation returns the stored value as-is
        if not isinstance(node, (Mapping, RelationSelection)):
            continue

        related_schema = _related_schema(schema, att_name, registry)

        if isinstance(node, RelationSelection):
            selection = node
        else:
            selection = RelationSelection(
                entity_name=relation.entity_name,
                identifiers=list(relation.identifiers),
                attributes=dict(node),
            )

        if related_schema is not None:
            related_id = related_schema.primary_id_attribute
            if not selection.identifiers and related_id:
                selection.identifiers = [RelationIdentifier(source=related_id, target=related_id)]
            selection.attributes = infer_relationships(
                related_schema, selection.attributes, registry
            )

        tree[att_name] = selection

    return tree


def get_relation_selections(tree: Mapping[str, Any]) -> List[Tuple[str, RelationSelection]]:
    """Top-level nodes that need hydration."""
    return [
        (att_name, node) for att_name, node in tree.items() if isinstance(node, RelationSelection)
    ]


def get_top_level_attribute_names(tree: Mapping[str, Any]) -> List[str]:
    """Top-level attribute names of a selection tree, in selection order."""
    return [att_name for att_name, node in tree.items() if node]


def get_storage_attribute_names(tree: Mapping[str, Any]) -> List[str]:
    """
    Top-level attributes to read from storage: every selected attribute plus
    the first segment of each relation identifier source.
    """
    names: Dict[str, None] = {}
    for att_name, node in tree.items():
        names[att_name] = None
        if isinstance(node, RelationSelection):
            for identifier in node.identifiers:
                top_key = identifier.source.split(".")[0]
                if top_key:
                    names[top_key] = None
    return list(names)
