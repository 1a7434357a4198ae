"""Abstract operator Pydantic models."""

from abstract_operator.models.crds import (
    ALL_NAMESPACES,
    SAME_NAMESPACE,
    CustomResourceDefinitionDescriptor,
    LabelSelector,
    OperatorDescriptor,
)
from abstract_operator.models.entity import EntityInfo
from abstract_operator.models.resources import (
    ConfigMap,
    CustomResource,
    CustomResourceList,
    ObjectMeta,
)

__all__ = [
    "ALL_NAMESPACES",
    "SAME_NAMESPACE",
    "ConfigMap",
    "CustomResource",
    "CustomResourceDefinitionDescriptor",
    "CustomResourceList",
    "EntityInfo",
    "LabelSelector",
    "ObjectMeta",
    "OperatorDescriptor",
]
