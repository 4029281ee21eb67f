"""
Name casing helpers used for display names, env var names and slugs.
"""

import re
import unicodedata


def to_human_readable_name(value: str) -> str:
    """
    Capitalize the first char and split on the uppercase chars.

    Examples:
        >>> to_human_readable_name("customerId")
        'Customer Id'
    """
    if not value:
        return ""
    return value[0].upper() + re.sub(r"([A-Z])", r" \1", value[1:])


def to_env_name(value: str) -> str:
    """
    Examples:
        >>> to_env_name("OrderItem")
        'ORDER_ITEM'
    """
    snake = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", value)
    return re.sub(r"[^A-Za-z0-9]+", "_", snake).strip("_").upper()


def to_slug(value: str) -> str:
    """
    Examples:
        >>> to_slug("Tom & Jerry's Café")
        'tom-and-jerrys-cafe'
    """
    if not value:
        return ""
    normalized = unicodedata.normalize("NFD", str(value))
    slug = "".join(ch for ch in normalized if not unicodedata.combining(ch)).lower()
    slug = re.sub(r"\s+", "-", slug)
    slug = slug.replace("&", "-and-")
    slug = re.sub(r"[^\w\-]+", "", slug)
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-")
