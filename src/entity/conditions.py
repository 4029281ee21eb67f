"""Compile filter criteria into boto3 DynamoDB condition objects."""

from functools import reduce
from typing import Any, List, Mapping, Optional

from boto3.dynamodb.conditions import Attr, ConditionBase

from ..utils.dynamodb import to_dynamo_value
from ..utils.errors import InvalidArgumentError
from .query import FILTER_OPERATORS


def _attribute_condition(att_name: str, operator: str, value: Any) -> ConditionBase:
    if operator not in FILTER_OPERATORS:
        raise InvalidArgumentError(
            f"Unsupported filter operator: {operator}",
            {"attribute": att_name, "operator": operator, "supported": list(FILTER_OPERATORS)},
        )

    attr = Attr(att_name)
    value = to_dynamo_value(value)

    if operator == "eq":
        return attr.eq(value)
    if operator == "neq":
        return attr.ne(value)
    if operator == "gt":
        return attr.gt(value)
    if operator == "gte":
        return attr.gte(value)
    if operator == "lt":
        return attr.lt(value)
    if operator == "lte":
        return attr.lte(value)
    if operator == "between":
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise InvalidArgumentError(
                "between expects a [low, high] pair", {"attribute": att_name, "value": value}
            )
        return attr.between(value[0], value[1])
    if operator == "in":
        return attr.is_in(list(value))
    if operator == "contains":
        return attr.contains(value)
    if operator == "notContains":
        return ~attr.contains(value)
    if operator == "beginsWith":
        return attr.begins_with(value)
    # exists
    return attr.exists() if value else attr.not_exists()


def _all_of(conditions: List[ConditionBase]) -> Optional[ConditionBase]:
    if not conditions:
        return None
    return reduce(lambda left, right: left & right, conditions)


def _any_of(conditions: List[ConditionBase]) -> Optional[ConditionBase]:
    if not conditions:
        return None
    return reduce(lambda left, right: left | right, conditions)


def build_condition_expression(criteria: Optional[Mapping[str, Any]]) -> Optional[ConditionBase]:
    """
    Compile filter criteria (see ``entity.query``) into a condition usable as a
    ``FilterExpression``. Returns None for empty criteria.

    Raises:
        InvalidArgumentError: On unknown operators or malformed groups
    """
    if not criteria:
        return None
    if not isinstance(criteria, Mapping):
        raise InvalidArgumentError("Filter criteria must be an object", {"filters": criteria})

    conditions: List[ConditionBase] = []

    for key, value in criteria.items():
        if key in ("and", "or"):
            if not isinstance(value, (list, tuple)):
                raise InvalidArgumentError(f"'{key}' expects a list of filter criteria")
            parts = [c for c in (build_condition_expression(item) for item in value) if c is not None]
            combined = _all_of(parts) if key == "and" else _any_of(parts)
            if combined is not None:
                conditions.append(combined)
        elif key == "not":
            negated = build_condition_expression(value)
            if negated is not None:
                conditions.append(~negated)
        elif isinstance(value, Mapping):
            conditions.extend(
                _attribute_condition(key, operator, operand) for operator, operand in value.items()
            )
        else:
            conditions.append(_attribute_condition(key, "eq", value))

    return _all_of(conditions)
