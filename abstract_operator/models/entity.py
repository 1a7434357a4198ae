"""Entity contract for watched resources.

An entity is the typed projection of a ConfigMap or custom resource. Operators
subclass :class:`EntityInfo` and declare the fields their payloads carry.
"""

from pydantic import BaseModel, ConfigDict


class EntityInfo(BaseModel):
    """Base class for the typed objects an operator reacts on.

    ``name`` is the only compulsory information. Converters fill it from the
    resource metadata when the payload does not carry one.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str | None = None

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.name))
