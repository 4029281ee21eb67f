"""
Input validation for entity create/update payloads.

Rules come from two places: ``validations`` dicts declared on schema
attributes (plus their ``required`` flag), and the rule set a service
returns from ``get_entity_validations()``::

    {"email": {"required": True, "pattern": r"^[^@]+@[^@]+$"}, "qty": {"min": 1}}

Messages can be overridden per attribute and rule with keys like
``validation.email.required``.
"""

import re
from typing import Any, Dict, List, Mapping, Optional

from ..utils.cases import to_human_readable_name
from ..utils.errors import AppError, ConfigurationError, ErrorCode
from .schema import EntitySchema

DEFAULT_MESSAGES = {
    "required": "{label} is required",
    "minLength": "{label} must be at least {value} characters",
    "maxLength": "{label} must be at most {value} characters",
    "min": "{label} must be at least {value}",
    "max": "{label} must be at most {value}",
    "pattern": "{label} has an invalid format",
    "in": "{label} must be one of: {value}",
}

Rules = Dict[str, Dict[str, Any]]


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _passes(rule: str, expected: Any, value: Any) -> bool:
    if rule not in DEFAULT_MESSAGES:
        raise ConfigurationError(f"Unsupported validation rule: {rule}", {"rule": rule})
    if rule == "required":
        return not expected or not _is_blank(value)
    if _is_blank(value):
        # only `required` applies to missing values
        return True
    if rule == "pattern":
        return re.match(expected, str(value)) is not None
    # a value of the wrong type fails the rule
    try:
        if rule == "minLength":
            return len(value) >= expected
        if rule == "maxLength":
            return len(value) <= expected
        if rule == "min":
            return value >= expected
        if rule == "max":
            return value <= expected
        return value in expected
    except TypeError:
        return False


def collect_rules(schema: EntitySchema, rules: Optional[Rules] = None) -> Rules:
    """Merge schema-declared rules with a service rule set (service rules win)."""
    merged: Rules = {}
    for att_name, att in schema.attributes.items():
        att_rules: Dict[str, Any] = {}
        if isinstance(att.validations, Mapping):
            att_rules.update(att.validations)
        if att.required:
            att_rules.setdefault("required", True)
        if att_rules:
            merged[att_name] = att_rules

    for att_name, att_rules in (rules or {}).items():
        merged.setdefault(att_name, {}).update(att_rules)

    return merged


def validate_entity_input(
    schema: EntitySchema,
    data: Mapping[str, Any],
    operation: str,
    rules: Optional[Rules] = None,
    messages: Optional[Mapping[str, str]] = None,
) -> None:
    """
    Validate a create/update payload.

    On ``create`` every rule applies; on ``update`` only the attributes
    present in ``data`` are checked.

    Raises:
        AppError: INVALID_INPUT with ``errors`` listing each failed rule
    """
    messages = messages or {}
    errors: List[Dict[str, Any]] = []

    for att_name, att_rules in collect_rules(schema, rules).items():
        if operation == "update" and att_name not in data:
            continue

        value = data.get(att_name)
        for rule, expected in att_rules.items():
            if _passes(rule, expected, value):
                continue

            att = schema.attributes.get(att_name)
            label = (att.name if att is not None else None) or to_human_readable_name(att_name)
            template = messages.get(f"validation.{att_name}.{rule}") or DEFAULT_MESSAGES[rule]
            shown = ", ".join(map(str, expected)) if rule == "in" else expected
            errors.append(
                {
                    "attribute": att_name,
                    "rule": rule,
                    "message": template.format(label=label, value=shown),
                }
            )

    if errors:
        raise AppError(
            ErrorCode.INVALID_INPUT,
            f"Invalid {schema.entity_name} input",
            {"errors": errors},
        )
