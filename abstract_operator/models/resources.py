"""Pydantic containers for raw Kubernetes payloads.

Watch events and list responses are decoded into these models before they
reach the watchers, so conversion code can rely on attribute access instead of
nested dict lookups.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ObjectMeta(BaseModel):
    """Subset of the Kubernetes object metadata used by the operators."""

    model_config = ConfigDict(extra="allow")

    name: str | None = None
    namespace: str | None = None
    labels: dict[str, str] | None = None
    resourceVersion: str | None = None
    uid: str | None = None


class ConfigMap(BaseModel):
    """A ConfigMap carrying an entity definition under its ``config`` key."""

    model_config = ConfigDict(extra="allow")

    apiVersion: str = "v1"
    kind: str = "ConfigMap"
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    data: dict[str, str] | None = None


class CustomResource(BaseModel):
    """Generic container for instances of any registered custom kind."""

    model_config = ConfigDict(extra="allow")

    apiVersion: str | None = None
    kind: str | None = None
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: dict[str, Any] | None = None
    status: dict[str, Any] | None = None


class CustomResourceList(BaseModel):
    """List variant of :class:`CustomResource`."""

    model_config = ConfigDict(extra="allow")

    apiVersion: str | None = None
    kind: str | None = None
    items: list[CustomResource] = Field(default_factory=list)
