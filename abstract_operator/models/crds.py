"""Pydantic models describing operators and the definitions they manage."""

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from abstract_operator.models.entity import EntityInfo

# Namespace scope sentinels
ALL_NAMESPACES = "*"
SAME_NAMESPACE = "~"

# =============================================================================
# Common models
# =============================================================================


class LabelSelectorRequirement(BaseModel):
    """A label selector requirement."""

    key: str
    operator: str = Field(..., pattern=r"^(In|NotIn|Exists|DoesNotExist)$")
    values: list[str] | None = None


class LabelSelector(BaseModel):
    """A label selector for matching resources."""

    matchLabels: dict[str, str] | None = None
    matchExpressions: list[LabelSelectorRequirement] | None = None


# =============================================================================
# Operator
# =============================================================================


class OperatorDescriptor(BaseModel):
    """Static configuration of one operator kind.

    Nothing is validated on construction: the integrity checks run when the
    operator starts, so that a broken descriptor only disables its own
    operator instead of failing the whole process.
    """

    entity_type: type[EntityInfo] | None = None
    named: str | None = None
    prefix: str | None = None
    crd: bool = False
    enabled: bool = True
    short_names: list[str] = Field(default_factory=list)
    plural: str | None = None
    version: str = "v1"

    @property
    def kind(self) -> str:
        """The resource kind, explicit name first, entity class name otherwise."""
        if self.named:
            return self.named
        return self.entity_type.__name__ if self.entity_type is not None else ""


# =============================================================================
# CustomResourceDefinition
# =============================================================================


class CustomResourceDefinitionDescriptor(BaseModel):
    """The parts of a CustomResourceDefinition the operators rely on."""

    group: str = Field(..., min_length=1)
    kind: str = Field(..., min_length=1)
    plural: str | None = None
    version: str = "v1"
    scope: str = Field(default="Namespaced", pattern=r"^(Namespaced|Cluster)$")
    short_names: list[str] = Field(default_factory=list)
    validation_schema: dict[str, Any] | None = None

    @field_validator("short_names")
    @classmethod
    def lower_short_names(cls, value: list[str]) -> list[str]:
        """Short names must be all lowercase."""
        return [name.lower() for name in value]

    @model_validator(mode="after")
    def derive_plural(self) -> "CustomResourceDefinitionDescriptor":
        """Default the plural to the lower-cased kind followed by ``s``."""
        if not self.plural:
            self.plural = f"{self.kind}s".lower()
        else:
            self.plural = self.plural.lower()
        return self

    @property
    def name(self) -> str:
        """The definition's object name, ``<plural>.<group>``."""
        return f"{self.plural}.{self.group}"

    @property
    def api_version(self) -> str:
        """The apiVersion of the instances, ``<group>/<version>``."""
        return f"{self.group}/{self.version}"

    def without_schema(self) -> "CustomResourceDefinitionDescriptor":
        """Return a copy with the validation block stripped."""
        return self.model_copy(update={"validation_schema": None})

    def to_manifest(self) -> dict[str, Any]:
        """Render the definition as an ``apiextensions.k8s.io/v1`` body."""
        if self.validation_schema is not None:
            schema = self.validation_schema
        else:
            schema = {"type": "object", "x-kubernetes-preserve-unknown-fields": True}

        names: dict[str, Any] = {
            "kind": self.kind,
            "listKind": f"{self.kind}List",
            "plural": self.plural,
            "singular": self.kind.lower(),
        }
        if self.short_names:
            names["shortNames"] = list(self.short_names)

        return {
            "apiVersion": "apiextensions.k8s.io/v1",
            "kind": "CustomResourceDefinition",
            "metadata": {"name": self.name},
            "spec": {
                "group": self.group,
                "names": names,
                "scope": self.scope,
                "versions": [
                    {
                        "name": self.version,
                        "served": True,
                        "storage": True,
                        "schema": {"openAPIV3Schema": schema},
                    }
                ],
            },
        }
