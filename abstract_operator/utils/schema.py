"""JSON schema lookup for custom resource validation.

Schemas live next to the module declaring the entity, as
``schema/<entityName>.json`` where the file name is the entity class name with
its first letter lower-cased (``SparkCluster`` -> ``schema/sparkCluster.json``).
"""

import inspect
import json
import logging
from pathlib import Path
from typing import Any

from abstract_operator.models.entity import EntityInfo

logger = logging.getLogger(__name__)


def schema_path(entity_type: type[EntityInfo]) -> Path:
    """Return where the schema document for ``entity_type`` is expected."""
    class_name = entity_type.__name__
    file_name = class_name[:1].lower() + class_name[1:]
    return Path(inspect.getfile(entity_type)).parent / "schema" / f"{file_name}.json"


def read_schema(entity_type: type[EntityInfo]) -> dict[str, Any] | None:
    """Load the OpenAPI v3 schema declared for an entity type.

    Args:
        entity_type: The entity class.

    Returns:
        The schema without ``$``-prefixed meta keys, or None when no readable
        schema document exists.
    """
    path = schema_path(entity_type)
    if not path.is_file():
        return None

    try:
        document = json.loads(path.read_text())
    except (OSError, ValueError) as e:
        logger.error(f"Unable to read schema {path}: {e}")
        return None

    if not isinstance(document, dict):
        logger.error(f"Schema {path} is not a JSON object")
        return None

    return {key: value for key, value in document.items() if not key.startswith("$")}
