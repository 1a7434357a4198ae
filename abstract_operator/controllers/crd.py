"""CustomResourceDefinition lifecycle manager.

Makes sure the definition of a custom kind exists before an operator watches
it. Definitions are looked up by kind and group, created once when missing
and never updated or deleted afterwards.
"""

import logging
import threading
from collections.abc import Callable, Iterable
from typing import Any

from kubernetes.client.exceptions import ApiException

from abstract_operator.errors import CrdCreationError
from abstract_operator.models.crds import CustomResourceDefinitionDescriptor
from abstract_operator.models.resources import CustomResource, CustomResourceList
from abstract_operator.utils.k8s_client import K8sClient

logger = logging.getLogger(__name__)

SchemaSource = Callable[[], dict[str, Any] | None]

# Status codes of an API server rejecting the definition body itself
_INVALID_DEFINITION = (400, 422)


class CrdManager:
    """Ensures custom kinds are registered with the cluster."""

    def __init__(self, client: K8sClient) -> None:
        self._client = client
        self._ensured: dict[tuple[str, str], CustomResourceDefinitionDescriptor] = {}
        self._lock = threading.Lock()

    def ensure(
        self,
        kind: str,
        group: str,
        short_names: Iterable[str] = (),
        plural: str | None = None,
        schema_source: SchemaSource | None = None,
        version: str = "v1",
        is_openshift: bool = False,
    ) -> CustomResourceDefinitionDescriptor:
        """Return the definition of ``kind``, creating it if it does not exist.

        Args:
            kind: The resource kind (e.g., "SparkCluster").
            group: The API group (e.g., "radanalytics.io").
            short_names: Short names for kubectl; lower-cased on creation.
            plural: Plural override; defaults to the lower-cased kind plus "s".
            schema_source: Callable returning the optional OpenAPI v3 schema.
            version: The served version.
            is_openshift: Names the platform in the upgrade warning.

        Returns:
            The definition descriptor. Repeated calls return the same object.

        Raises:
            CrdCreationError: If the definition could not be created.
        """
        key = (kind, group)
        with self._lock:
            descriptor = self._ensured.get(key)
            if descriptor is None:
                descriptor = self._lookup(kind, group)
                if descriptor is None:
                    descriptor = self._create(
                        CustomResourceDefinitionDescriptor(
                            group=group,
                            kind=kind,
                            plural=plural,
                            version=version,
                            short_names=list(short_names),
                            validation_schema=schema_source() if schema_source else None,
                        ),
                        is_openshift,
                    )
                self._register(descriptor)
                self._ensured[key] = descriptor
            return descriptor

    def _lookup(self, kind: str, group: str) -> CustomResourceDefinitionDescriptor | None:
        for definition in self._client.list_custom_resource_definitions():
            spec = definition.spec
            if spec.names.kind == kind and spec.group == group:
                logger.info(f"Found existing CustomResourceDefinition {definition.metadata.name}")
                return _describe(definition)
        return None

    def _create(
        self,
        descriptor: CustomResourceDefinitionDescriptor,
        is_openshift: bool,
    ) -> CustomResourceDefinitionDescriptor:
        try:
            self._submit(descriptor)
            return descriptor
        except ApiException as e:
            if descriptor.validation_schema is None or e.status not in _INVALID_DEFINITION:
                raise CrdCreationError(descriptor.name, e) from e
            platform = "OpenShift" if is_openshift else "Kubernetes"
            logger.warning(
                f"Consider upgrading the {platform}. Your version doesn't support "
                f"schema validation for custom resources."
            )

        fallback = descriptor.without_schema()
        try:
            self._submit(fallback)
        except ApiException as e:
            raise CrdCreationError(fallback.name, e) from e
        return fallback

    def _submit(self, descriptor: CustomResourceDefinitionDescriptor) -> None:
        try:
            self._client.create_custom_resource_definition(descriptor.to_manifest())
        except ApiException as e:
            if e.status != 409:
                raise
            logger.info(f"CustomResourceDefinition {descriptor.name} was created concurrently")
            return
        logger.info(f"Created CustomResourceDefinition {descriptor.name}")

    def _register(self, descriptor: CustomResourceDefinitionDescriptor) -> None:
        self._client.register_custom_kind(descriptor.api_version, descriptor.kind, CustomResource)
        self._client.register_custom_kind(
            descriptor.api_version, f"{descriptor.kind}List", CustomResourceList
        )


def _describe(definition: Any) -> CustomResourceDefinitionDescriptor:
    """Build a descriptor from a V1CustomResourceDefinition.

    The schema of an existing definition is not read back.
    """
    spec = definition.spec
    versions = list(spec.versions or [])
    storage = [v.name for v in versions if v.storage]
    if storage:
        version = storage[0]
    elif versions:
        version = versions[0].name
    else:
        version = "v1"

    return CustomResourceDefinitionDescriptor(
        group=spec.group,
        kind=spec.names.kind,
        plural=spec.names.plural,
        version=version,
        scope=spec.scope or "Namespaced",
        short_names=list(spec.names.short_names or []),
    )
