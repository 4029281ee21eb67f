"""
Entity query shape and keyword-search filter composition.

Filter criteria are plain dicts:

* groups: ``{"and": [...]}``, ``{"or": [...]}``, ``{"not": criteria}``
* attribute filters: ``{"title": {"contains": "red"}}``; several attributes
  (or several operators on one attribute) in one dict are AND-ed.

Supported operators: ``eq``, ``neq``, ``gt``, ``gte``, ``lt``, ``lte``,
``between``, ``in``, ``contains``, ``notContains``, ``beginsWith``,
``exists``.
"""

import re
from typing import Any, Dict, List, Optional, TypedDict, Union

SEARCH_TERM_DELIMITERS = re.compile(r"(?:&| |,|\+)+")

FILTER_OPERATORS = (
    "eq",
    "neq",
    "gt",
    "gte",
    "lt",
    "lte",
    "between",
    "in",
    "contains",
    "notContains",
    "beginsWith",
    "exists",
)

FilterCriteria = Dict[str, Any]


class EntityQuery(TypedDict, total=False):
    """Query accepted by ``EntityService.list`` and ``EntityService.query``."""

    attributes: Any  # list of dot-paths or a selection tree
    search: Union[str, List[str]]
    searchAttributes: Union[str, List[str]]
    filters: FilterCriteria
    index: str  # access pattern for ``query``
    identifiers: Dict[str, Any]
    limit: int
    cursor: Optional[Dict[str, Any]]
    order: str  # "asc" | "desc"


def split_search_terms(
    search: Union[str, List[str], None], delimiters: "re.Pattern[str]" = SEARCH_TERM_DELIMITERS
) -> List[str]:
    """
    Split free-text search input into terms.

    Examples:
        >>> split_search_terms(" red & chair,,wood+oak ")
        ['red', 'chair', 'wood', 'oak']
    """
    if not search:
        return []
    if isinstance(search, str):
        return [term for term in delimiters.split(search.strip()) if term]
    return [str(term) for term in search if term]


def parse_search_attributes(value: Union[str, List[str], None]) -> List[str]:
    """Accept a comma-separated string or a list of attribute names."""
    if not value:
        return []
    if isinstance(value, str):
        return [name.strip() for name in value.split(",") if name.strip()]
    return [name for name in value if name]


def make_filter_group_for_search_keywords(
    terms: List[str], attributes: List[str]
) -> FilterCriteria:
    """
    Every term has to be contained in at least one of ``attributes``.

    Examples:
        >>> make_filter_group_for_search_keywords(["red"], ["title", "description"])
        {'and': [{'or': [{'title': {'contains': 'red'}}, {'description': {'contains': 'red'}}]}]}
    """
    return {
        "and": [
            {"or": [{att_name: {"contains": term}} for att_name in attributes]}
            for term in terms
        ]
    }


def add_filter_group_to_entity_filter_criteria(
    group: FilterCriteria, filters: Optional[FilterCriteria] = None
) -> FilterCriteria:
    """AND ``group`` with any filters already on the query."""
    if not filters:
        return group
    if set(filters) == {"and"} and isinstance(filters["and"], list):
        return {"and": [*filters["and"], group]}
    return {"and": [filters, group]}
