"""
Registry of entity services, keyed by entity name.

Filled once at startup and only read afterwards; it is handed to the
services (and through them to the relation hydrator) that need to reach
other entities.
"""

from typing import TYPE_CHECKING, Dict, List, Optional

from ..utils.errors import ConfigurationError

if TYPE_CHECKING:
    from .service import EntityService


class EntityServiceRegistry:
    """Entity name -> entity service."""

    def __init__(self) -> None:
        self._services: Dict[str, "EntityService"] = {}

    def register(self, service: "EntityService") -> "EntityService":
        """
        Register ``service`` under its entity name.

        Raises:
            ConfigurationError: If the entity already has a service
        """
        entity_name = service.get_entity_name()
        existing = self._services.get(entity_name)
        if existing is not None and existing is not service:
            raise ConfigurationError(
                f"A service is already registered for entity {entity_name}",
                {"entity": entity_name},
            )
        self._services[entity_name] = service
        return service

    def get_entity_service_by_entity_name(self, entity_name: str) -> Optional["EntityService"]:
        return self._services.get(entity_name)

    def entity_names(self) -> List[str]:
        return list(self._services)

    def __contains__(self, entity_name: object) -> bool:
        return entity_name in self._services

    def __len__(self) -> int:
        return len(self._services)
