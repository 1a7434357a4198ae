"""Kubernetes client utilities.

Provides a wrapper around the kubernetes client for the list, watch and create
operations used by the operators, the watchers and the CRD lifecycle manager.
"""

import json
import logging
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any, cast

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from kubernetes.watch.watch import iter_resp_lines
from pydantic import BaseModel, ValidationError
from urllib3.exceptions import HTTPError

from abstract_operator.models.crds import ALL_NAMESPACES
from abstract_operator.models.resources import ConfigMap, CustomResource

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_NAMESPACE = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")
OPENSHIFT_API_GROUP = "route.openshift.io"


class WatchStream:
    """An established watch subscription.

    Iterating yields ``(action, object)`` pairs until the server ends the
    stream or :meth:`close` is called from another thread. A line that is not
    JSON is logged and skipped. An object its registered container rejects is
    yielded as the raw dict so the event still carries its metadata.
    """

    def __init__(self, response: Any, decode: Callable[[dict[str, Any]], Any]) -> None:
        self._response = response
        self._decode = decode
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether the stream was closed locally."""
        return self._closed

    def __iter__(self) -> Iterator[tuple[str, Any]]:
        for line in iter_resp_lines(self._response):
            if not line:
                continue
            try:
                event = json.loads(line)
            except ValueError as e:
                logger.error(f"Skipping undecodable watch event: {e}")
                continue
            obj = event.get("object") or {}
            try:
                resource = self._decode(obj)
            except ValidationError as e:
                logger.error(f"Invalid {obj.get('kind')} payload in watch event: {e}")
                resource = obj
            yield event.get("type", ""), resource

    def close(self) -> None:
        """Close the underlying connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._response.close()
        self._response.release_conn()


class K8sClient:
    """Kubernetes client wrapper for operator operations."""

    def __init__(self) -> None:
        """Initialize the Kubernetes client.

        Attempts to load in-cluster config first, falls back to kubeconfig.
        """
        try:
            config.load_incluster_config()
            self.in_cluster = True
        except config.ConfigException:
            config.load_kube_config()
            self.in_cluster = False

        self.api_client = client.ApiClient()
        self.core_v1 = client.CoreV1Api(self.api_client)
        self.custom_objects = client.CustomObjectsApi(self.api_client)
        self.apiextensions_v1 = client.ApiextensionsV1Api(self.api_client)
        self.apis = client.ApisApi(self.api_client)

        self._kinds: dict[str, type[BaseModel]] = {"v1#ConfigMap": ConfigMap}

    # -------------------------------------------------------------------------
    # Deserialization
    # -------------------------------------------------------------------------

    def register_custom_kind(self, api_version: str, kind: str, container: type[BaseModel]) -> None:
        """Decode future payloads of ``api_version``/``kind`` into ``container``.

        Args:
            api_version: The resource apiVersion (e.g., "example.com/v1").
            kind: The resource kind (e.g., "Cluster").
            container: The pydantic model to decode into.
        """
        self._kinds[f"{api_version}#{kind}"] = container

    def deserialize(self, obj: dict[str, Any]) -> Any:
        """Decode a raw payload into its registered container.

        Args:
            obj: The raw object as sent by the API server.

        Returns:
            The decoded model, or the dict itself for unregistered kinds.
        """
        container = self._kinds.get(f"{obj.get('apiVersion')}#{obj.get('kind')}")
        if container is None:
            return obj
        return container.model_validate(obj)

    # -------------------------------------------------------------------------
    # ConfigMaps
    # -------------------------------------------------------------------------

    def list_config_maps(self, namespace: str, label_selector: dict[str, Any]) -> list[ConfigMap]:
        """List ConfigMaps matching a label selector.

        Args:
            namespace: The namespace, or "*" for all namespaces.
            label_selector: The label selector dict with matchLabels/matchExpressions.

        Returns:
            The matching ConfigMaps.
        """
        selector_str = self._build_label_selector_string(label_selector)
        if namespace == ALL_NAMESPACES:
            result = self.core_v1.list_config_map_for_all_namespaces(label_selector=selector_str)
        else:
            result = self.core_v1.list_namespaced_config_map(
                namespace, label_selector=selector_str
            )
        return [ConfigMap.model_validate(item.to_dict()) for item in result.items or []]

    def watch_config_maps(
        self,
        namespace: str,
        label_selector: dict[str, Any],
        resource_version: str | None = None,
    ) -> WatchStream:
        """Open a watch on ConfigMaps matching a label selector.

        Args:
            namespace: The namespace, or "*" for all namespaces.
            label_selector: The label selector dict with matchLabels/matchExpressions.
            resource_version: Resume after this version instead of replaying
                every existing ConfigMap as ADDED.

        Returns:
            The established stream.
        """
        selector_str = self._build_label_selector_string(label_selector)
        kwargs = self._watch_kwargs(resource_version)
        if namespace == ALL_NAMESPACES:
            response = self.core_v1.list_config_map_for_all_namespaces(
                label_selector=selector_str, **kwargs
            )
        else:
            response = self.core_v1.list_namespaced_config_map(
                namespace, label_selector=selector_str, **kwargs
            )
        return WatchStream(response, self.deserialize)

    # -------------------------------------------------------------------------
    # Custom resources
    # -------------------------------------------------------------------------

    def list_custom_resources(
        self,
        group: str,
        version: str,
        plural: str,
        namespace: str,
    ) -> list[CustomResource]:
        """List custom resources of one kind.

        Args:
            group: The API group (e.g., "radanalytics.io").
            version: The API version (e.g., "v1").
            plural: The resource plural name (e.g., "sparkclusters").
            namespace: The namespace, or "*" for all namespaces.

        Returns:
            The resources, decoded into the generic container.
        """
        if namespace == ALL_NAMESPACES:
            result = self.custom_objects.list_cluster_custom_object(group, version, plural)
        else:
            result = self.custom_objects.list_namespaced_custom_object(
                group, version, namespace, plural
            )
        items = cast(list[dict[str, Any]], result.get("items", []))
        return [CustomResource.model_validate(item) for item in items]

    def watch_custom_resources(
        self,
        group: str,
        version: str,
        plural: str,
        namespace: str,
        resource_version: str | None = None,
    ) -> WatchStream:
        """Open a watch on custom resources of one kind.

        Args:
            group: The API group.
            version: The API version.
            plural: The resource plural name.
            namespace: The namespace, or "*" for all namespaces.
            resource_version: Resume after this version instead of replaying
                every existing resource as ADDED.

        Returns:
            The established stream.
        """
        kwargs = self._watch_kwargs(resource_version)
        if namespace == ALL_NAMESPACES:
            response = self.custom_objects.list_cluster_custom_object(
                group, version, plural, **kwargs
            )
        else:
            response = self.custom_objects.list_namespaced_custom_object(
                group, version, namespace, plural, **kwargs
            )
        return WatchStream(response, self.deserialize)

    # -------------------------------------------------------------------------
    # CustomResourceDefinitions
    # -------------------------------------------------------------------------

    def list_custom_resource_definitions(self) -> list[Any]:
        """List all CustomResourceDefinitions of the cluster."""
        return list(self.apiextensions_v1.list_custom_resource_definition().items or [])

    def create_custom_resource_definition(self, body: dict[str, Any]) -> Any:
        """Create a CustomResourceDefinition.

        Args:
            body: The definition manifest.

        Returns:
            The created definition.
        """
        return self.apiextensions_v1.create_custom_resource_definition(body)

    # -------------------------------------------------------------------------
    # Environment
    # -------------------------------------------------------------------------

    def current_namespace(self) -> str:
        """Return the namespace the operator itself runs in.

        Uses the service account namespace in-cluster and the active kubeconfig
        context otherwise.
        """
        if self.in_cluster and SERVICE_ACCOUNT_NAMESPACE.exists():
            return SERVICE_ACCOUNT_NAMESPACE.read_text().strip()
        _, active_context = config.list_kube_config_contexts()
        return cast(str, active_context.get("context", {}).get("namespace") or "default")

    def is_openshift(self) -> bool:
        """Check whether the API server exposes the OpenShift route API group."""
        try:
            groups = self.apis.get_api_versions().groups or []
        except (ApiException, HTTPError) as e:
            logger.warning(f"Failed to distinguish between Kubernetes and OpenShift: {e}")
            return False
        return any(group.name == OPENSHIFT_API_GROUP for group in groups)

    def close(self) -> None:
        """Release the underlying connection pool."""
        self.api_client.close()

    @staticmethod
    def _watch_kwargs(resource_version: str | None) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"watch": True, "_preload_content": False}
        if resource_version:
            kwargs["resource_version"] = resource_version
        return kwargs

    def _build_label_selector_string(self, selector: dict[str, Any]) -> str:
        """Build a label selector string from a selector dict.

        Args:
            selector: Dict with matchLabels and/or matchExpressions.

        Returns:
            A comma-separated label selector string.
        """
        parts: list[str] = []

        match_labels = selector.get("matchLabels") or {}
        for key, value in match_labels.items():
            parts.append(f"{key}={value}")

        match_expressions = selector.get("matchExpressions") or []
        for expr in match_expressions:
            key = expr.get("key", "")
            operator = expr.get("operator", "")
            values = expr.get("values") or []

            if operator == "In":
                parts.append(f"{key} in ({','.join(values)})")
            elif operator == "NotIn":
                parts.append(f"{key} notin ({','.join(values)})")
            elif operator == "Exists":
                parts.append(key)
            elif operator == "DoesNotExist":
                parts.append(f"!{key}")

        return ",".join(parts)
