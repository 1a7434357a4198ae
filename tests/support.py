"""Shared test doubles and builders."""

import threading
from collections.abc import Iterator
from typing import Any

from abstract_operator.controllers.operator import Operator
from abstract_operator.models.entity import EntityInfo
from abstract_operator.models.resources import ConfigMap, CustomResource, ObjectMeta


class SparkCluster(EntityInfo):
    """Sample entity used across the tests."""

    workers: int = 1
    image: str | None = None


class RecordingOperator(Operator[SparkCluster]):
    """Operator recording every callback invocation."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.calls: list[tuple[str, str | None, str]] = []

    def on_add(self, entity: SparkCluster, namespace: str) -> None:
        self.calls.append(("add", entity.name, namespace))

    def on_delete(self, entity: SparkCluster, namespace: str) -> None:
        self.calls.append(("delete", entity.name, namespace))


class FakeStream:
    """In-memory stand-in for an established watch stream.

    After the events it raises ``error`` if given. Otherwise it ends either as
    a local close (``graceful``) or as a server-side end of stream.
    """

    def __init__(
        self,
        events: list[tuple[str, Any]] | None = None,
        error: Exception | None = None,
        graceful: bool = True,
    ) -> None:
        self.events = events or []
        self.error = error
        self.graceful = graceful
        self._closed = False
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> Iterator[tuple[str, Any]]:
        yield from self.events
        if self.error is not None:
            raise self.error
        if self.graceful:
            self._closed = True

    def close(self) -> None:
        self.close_calls += 1
        self._closed = True


def make_config_map(
    name: str,
    config: str | None = None,
    namespace: str = "default",
    resource_version: str | None = None,
) -> ConfigMap:
    """Build a ConfigMap carrying ``config`` under its config key."""
    return ConfigMap(
        metadata=ObjectMeta(name=name, namespace=namespace, resourceVersion=resource_version),
        data={"config": config} if config is not None else None,
    )


def make_custom_resource(
    name: str,
    spec: dict[str, Any] | None = None,
    namespace: str = "default",
    kind: str = "SparkCluster",
    resource_version: str | None = None,
) -> CustomResource:
    """Build a SparkCluster custom resource."""
    return CustomResource(
        apiVersion="radanalytics.io/v1",
        kind=kind,
        metadata=ObjectMeta(name=name, namespace=namespace, resourceVersion=resource_version),
        spec=spec,
    )


class BlockingStream(FakeStream):
    """Stream staying open until it is closed locally."""

    def __init__(self) -> None:
        super().__init__()
        self._released = threading.Event()

    def __iter__(self) -> Iterator[tuple[str, Any]]:
        self._released.wait()
        yield from ()

    def close(self) -> None:
        super().close()
        self._released.set()
