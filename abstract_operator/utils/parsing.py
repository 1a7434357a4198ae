"""Conversion of raw resources into entities."""

import logging
from typing import TypeVar

import yaml
from pydantic import ValidationError

from abstract_operator.models.entity import EntityInfo
from abstract_operator.models.resources import ConfigMap, CustomResource

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=EntityInfo)

CONFIG_KEY = "config"


def parse_yaml(entity_type: type[T], text: str | None, name: str | None) -> T | None:
    """Parse a YAML document into an entity.

    Args:
        entity_type: The entity class.
        text: The YAML document; empty documents yield a default entity.
        name: Fallback for the entity name when the document has none.

    Returns:
        The entity, or None if the document is malformed.
    """
    try:
        payload = yaml.safe_load(text) if text else None
    except yaml.YAMLError as e:
        logger.error(f"Unable to parse YAML definition of {name}: {e}")
        return None

    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        logger.error(f"Definition of {name} is not a mapping")
        return None

    try:
        entity = entity_type.model_validate(payload)
    except ValidationError as e:
        logger.error(f"Invalid definition of {name}: {e}")
        return None

    if entity.name is None:
        entity.name = name
    return entity


def parse_config_map(entity_type: type[T], config_map: ConfigMap) -> T | None:
    """Convert the ``config`` key of a ConfigMap into an entity."""
    data = config_map.data or {}
    return parse_yaml(entity_type, data.get(CONFIG_KEY), config_map.metadata.name)


def parse_custom_resource(entity_type: type[T], resource: CustomResource) -> T | None:
    """Convert the spec of a custom resource into an entity."""
    try:
        entity = entity_type.model_validate(resource.spec or {})
    except ValidationError as e:
        logger.error(f"Invalid spec of {resource.kind} {resource.metadata.name}: {e}")
        return None

    if entity.name is None:
        entity.name = resource.metadata.name
    return entity
