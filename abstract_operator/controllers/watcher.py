"""Watchers for ConfigMaps and custom resources.

A watcher owns one live subscription for one resource kind in one namespace
scope. It filters, converts and dispatches every event to the operator's
callbacks, and resubscribes when the stream fails.

States: UNSTARTED -> SUBSCRIBING -> ACTIVE -> RECONNECTING -> SUBSCRIBING, and CLOSED from
any of them once :meth:`Watcher.close` was called.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from concurrent.futures import Executor, Future
from enum import Enum
from typing import Any, Generic, TypeVar

from kubernetes.client.exceptions import ApiException
from pydantic import BaseModel, ConfigDict, Field

from abstract_operator.controllers.reconciliation import ReconciliationGate
from abstract_operator.errors import StreamEndedError
from abstract_operator.models.crds import (
    ALL_NAMESPACES,
    CustomResourceDefinitionDescriptor,
    LabelSelector,
)
from abstract_operator.models.entity import EntityInfo
from abstract_operator.models.resources import ConfigMap, CustomResource
from abstract_operator.utils.k8s_client import K8sClient, WatchStream
from abstract_operator.utils.metrics import EVENTS_TOTAL, WATCH_RECONNECTS_TOTAL

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=EntityInfo)

Callback = Callable[[T, str], None]

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"
ERROR = "ERROR"

# Status code of a watch whose resource version was compacted away
GONE = 410


class WatcherState(Enum):
    """Lifecycle of a watcher."""

    UNSTARTED = "Unstarted"
    SUBSCRIBING = "Subscribing"
    ACTIVE = "Active"
    RECONNECTING = "Reconnecting"
    CLOSED = "Closed"


class ReconnectPolicy(BaseModel):
    """Delays between resubscription attempts after a stream failure.

    The first attempt waits ``initial_delay``; every failed attempt is followed
    by a delay starting at ``retry_delay`` and growing by ``multiplier`` up to
    ``max_delay``. Attempts never stop while the watcher is open.
    """

    model_config = ConfigDict(frozen=True)

    initial_delay: float = Field(default=0.0, ge=0.0)
    retry_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=30.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)

    def delays(self) -> Iterator[float]:
        """Yield the delay before each attempt, forever."""
        yield self.initial_delay
        delay = self.retry_delay
        while True:
            yield min(delay, self.max_delay)
            delay *= self.multiplier


class Watcher(ABC, Generic[T]):
    """Base class of the ConfigMap and custom resource watchers."""

    resource_type = "Resource"
    resource_model: type[BaseModel] = BaseModel

    def __init__(
        self,
        *,
        kind: str,
        namespace: str,
        client: K8sClient,
        convert: Callable[[Any], T | None],
        on_add: Callback[T],
        on_delete: Callback[T],
        executor: Executor,
        on_modify: Callback[T] | None = None,
        is_supported: Callable[[Any], bool] | None = None,
        gate: ReconciliationGate | None = None,
        reconnect_policy: ReconnectPolicy | None = None,
    ) -> None:
        self.kind = kind
        self.namespace = namespace
        self.gate = gate or ReconciliationGate()

        self._client = client
        self._convert = convert
        self._on_add = on_add
        self._on_delete = on_delete
        self._on_modify = on_modify or self._delete_then_add
        self._is_supported = is_supported or (lambda _: True)
        self._executor = executor
        self._policy = reconnect_policy or ReconnectPolicy()

        self._state = WatcherState.UNSTARTED
        self._stream: WatchStream | None = None
        self._resource_version: str | None = None
        self._lock = threading.Lock()
        self._closing = threading.Event()
        self._delivery: Future[None] | None = None

    @property
    def is_crd(self) -> bool:
        return False

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def reconciled(self) -> bool:
        return self.gate.is_open

    def mark_reconciled(self) -> None:
        """Open the dispatch gate. Idempotent."""
        if self.gate.open():
            logger.info(
                f"{self.kind} watcher in namespace {self.namespace} is now dispatching events"
            )

    @property
    def resource_version(self) -> str | None:
        """Last resource version seen on any stream, if any."""
        return self._resource_version

    @abstractmethod
    def _subscribe(self, resource_version: str | None) -> WatchStream:
        """Open a new watch stream starting after ``resource_version``. Blocking."""

    async def watch(self) -> "Watcher[T]":
        """Establish the subscription and start delivering events.

        Returns once the stream is live. Errors of the subscription call are
        raised to the caller and leave the watcher closed.
        """
        self._set_state(WatcherState.SUBSCRIBING)
        loop = asyncio.get_running_loop()
        try:
            stream = await loop.run_in_executor(
                self._executor, self._subscribe, self._resource_version
            )
        except Exception:
            self._set_state(WatcherState.CLOSED)
            logger.exception(f"{self.resource_type} watcher failed to start for {self.kind}")
            raise

        if self._install(stream):
            self._set_state(WatcherState.ACTIVE)
            logger.info(
                f"{self.resource_type} watcher running for {self.kind} "
                f"in namespace {self.namespace}"
            )
            self._delivery = self._executor.submit(self._run, stream)
        return self

    def close(self) -> None:
        """Stop receiving events and release the client.

        Callbacks already running are not interrupted.
        """
        logger.info(f"Stopping {self.resource_type} watch for namespace {self.namespace}")
        with self._lock:
            self._state = WatcherState.CLOSED
            stream, self._stream = self._stream, None
        self._closing.set()
        self.gate.close()
        if stream is not None:
            stream.close()
        self._client.close()

    # -------------------------------------------------------------------------
    # Event processing
    # -------------------------------------------------------------------------

    def handle_event(self, action: str, resource: Any) -> None:
        """Filter, convert and dispatch one watch event."""
        name = _resource_name(resource)

        try:
            supported = self._is_supported(resource)
        except Exception:
            logger.exception(f"Support check failed for {self.resource_type} {name}")
            supported = False
        if not supported:
            logger.error(f"Unknown {self.resource_type} kind: {resource}")
            EVENTS_TOTAL.labels(kind=self.kind, action=action, result="unsupported").inc()
            return

        logger.info(f"{self.resource_type} {name} in namespace {self.namespace} was {action}")

        entity = self._to_entity(resource)
        if entity is None:
            if action == ERROR:
                logger.error(
                    f"Failed {self.resource_type} event in namespace {self.namespace}: {resource}"
                )
            else:
                logger.error(f"Something went wrong, unable to parse {self.kind} definition {name}")
            EVENTS_TOTAL.labels(kind=self.kind, action=action, result="unconverted").inc()
            return

        namespace = self._resolve_namespace(resource)

        if action == ERROR:
            logger.error(f"Failed {self.resource_type} {name} in namespace {namespace}")
            EVENTS_TOTAL.labels(kind=self.kind, action=action, result="error").inc()
            return

        if not self.gate.is_open:
            logger.debug(f"Dropping {action} of {self.kind} {name} before full reconciliation")
            EVENTS_TOTAL.labels(kind=self.kind, action=action, result="gated").inc()
            return

        self._dispatch(action, entity, namespace)

    def _to_entity(self, resource: Any) -> T | None:
        if not isinstance(resource, self.resource_model):
            return None
        try:
            return self._convert(resource)
        except Exception:
            name = _resource_name(resource)
            logger.exception(f"Conversion of {self.resource_type} {name} failed")
            return None

    def _resolve_namespace(self, resource: Any) -> str:
        if self.namespace == ALL_NAMESPACES:
            return resource.metadata.namespace
        return self.namespace

    def _dispatch(self, action: str, entity: T, namespace: str) -> None:
        handlers: dict[str, tuple[Callback[T], str, str]] = {
            ADDED: (self._on_add, "creating", "created"),
            DELETED: (self._on_delete, "deleting", "deleted"),
            MODIFIED: (self._on_modify, "modifying", "modified"),
        }
        handler = handlers.get(action)
        if handler is None:
            logger.error(f"Unknown action: {action} in namespace {namespace}")
            EVENTS_TOTAL.labels(kind=self.kind, action=action, result="unknown").inc()
            return

        callback, doing, done = handler
        logger.info(f"{doing} {self.kind}: {entity.name}")
        try:
            callback(entity, namespace)
        except Exception:
            logger.exception(f"Error when reacting on {action} of {self.kind} {entity.name}")
            EVENTS_TOTAL.labels(kind=self.kind, action=action, result="failed").inc()
            return
        logger.info(f"{self.kind} {entity.name} has been {done}")
        EVENTS_TOTAL.labels(kind=self.kind, action=action, result="dispatched").inc()

    def _delete_then_add(self, entity: T, namespace: str) -> None:
        self._on_delete(entity, namespace)
        self._on_add(entity, namespace)

    # -------------------------------------------------------------------------
    # Subscription handling
    # -------------------------------------------------------------------------

    def _run(self, stream: WatchStream) -> None:
        while True:
            error = self._drain(stream)
            if error is None:
                logger.info(f"Watcher closed in namespace {self.namespace}")
                return
            logger.error(
                f"Watcher closed with exception in namespace {self.namespace}: {error}",
                exc_info=error,
            )
            next_stream = self._resubscribe()
            if next_stream is None:
                return
            stream = next_stream

    def _drain(self, stream: WatchStream) -> Exception | None:
        """Deliver events until the stream ends.

        Returns:
            None for a local close, the failure otherwise.
        """
        try:
            for action, resource in stream:
                if not self._owns(stream):
                    return None
                self._track_version(action, resource)
                self.handle_event(action, resource)
        except Exception as e:
            if stream.closed or not self._owns(stream):
                return None
            return e
        if stream.closed or not self._owns(stream):
            return None
        return StreamEndedError(f"{self.resource_type} watch for {self.kind} ended")

    def _resubscribe(self) -> WatchStream | None:
        self._set_state(WatcherState.RECONNECTING)
        WATCH_RECONNECTS_TOTAL.labels(kind=self.kind).inc()
        for delay in self._policy.delays():
            if delay and self._closing.wait(delay):
                return None
            if self._state is WatcherState.CLOSED:
                return None
            self._set_state(WatcherState.SUBSCRIBING)
            try:
                stream = self._subscribe(self._resource_version)
            except Exception as e:
                if isinstance(e, ApiException) and e.status == GONE:
                    self._forget_version()
                logger.error(
                    f"Failed to recreate {self.resource_type} watch "
                    f"in namespace {self.namespace}: {e}"
                )
                self._set_state(WatcherState.RECONNECTING)
                continue
            if not self._install(stream):
                return None
            self._set_state(WatcherState.ACTIVE)
            logger.info(f"{self.resource_type} watch recreated in namespace {self.namespace}")
            return stream
        return None

    def _track_version(self, action: str, resource: Any) -> None:
        """Remember where the next subscription has to resume."""
        if action == ERROR:
            if isinstance(resource, dict) and resource.get("code") == GONE:
                self._forget_version()
            return
        version = _resource_version(resource)
        if version:
            self._resource_version = version

    def _forget_version(self) -> None:
        logger.warning(
            f"Resource version {self._resource_version} of {self.kind} is gone, "
            f"the next {self.resource_type} watch replays every existing resource"
        )
        self._resource_version = None

    def _install(self, stream: WatchStream) -> bool:
        """Make ``stream`` the owned handle, closing the one it replaces.

        A stream arriving after :meth:`close` is closed right away.
        """
        with self._lock:
            installed = self._state is not WatcherState.CLOSED
            if installed:
                stale, self._stream = self._stream, stream
            else:
                stale = stream
        if stale is not None:
            stale.close()
        return installed

    def _owns(self, stream: WatchStream) -> bool:
        return self._stream is stream

    def _set_state(self, state: WatcherState) -> None:
        with self._lock:
            if self._state is not WatcherState.CLOSED:
                self._state = state


class ConfigMapWatcher(Watcher[T]):
    """Watches ConfigMaps labelled with the operator's kind."""

    resource_type = "ConfigMap"
    resource_model = ConfigMap

    def __init__(self, *, label_selector: LabelSelector, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.label_selector = label_selector

    def _subscribe(self, resource_version: str | None) -> WatchStream:
        return self._client.watch_config_maps(
            self.namespace,
            self.label_selector.model_dump(exclude_none=True),
            resource_version=resource_version,
        )


class CustomResourceWatcher(Watcher[T]):
    """Watches instances of a custom resource definition."""

    resource_type = "CustomResource"
    resource_model = CustomResource

    def __init__(self, *, crd: CustomResourceDefinitionDescriptor, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.crd = crd

    @property
    def is_crd(self) -> bool:
        return True

    def _subscribe(self, resource_version: str | None) -> WatchStream:
        return self._client.watch_custom_resources(
            self.crd.group,
            self.crd.version,
            self.crd.plural or "",
            self.namespace,
            resource_version=resource_version,
        )


class WatcherBuilder(Generic[T]):
    """Collects the collaborators of a watcher.

    ``with_crd`` selects a custom resource watcher, ``with_label_selector`` a
    ConfigMap watcher.
    """

    def __init__(self) -> None:
        self._options: dict[str, Any] = {"namespace": ALL_NAMESPACES}
        self._crd: CustomResourceDefinitionDescriptor | None = None
        self._label_selector: LabelSelector | None = None

    def with_kind(self, kind: str) -> "WatcherBuilder[T]":
        self._options["kind"] = kind
        return self

    def with_namespace(self, namespace: str) -> "WatcherBuilder[T]":
        self._options["namespace"] = namespace
        return self

    def with_client(self, client: K8sClient) -> "WatcherBuilder[T]":
        self._options["client"] = client
        return self

    def with_crd(self, crd: CustomResourceDefinitionDescriptor) -> "WatcherBuilder[T]":
        self._crd = crd
        return self

    def with_label_selector(self, selector: LabelSelector) -> "WatcherBuilder[T]":
        self._label_selector = selector
        return self

    def with_convert(self, convert: Callable[[Any], T | None]) -> "WatcherBuilder[T]":
        self._options["convert"] = convert
        return self

    def with_on_add(self, on_add: Callback[T]) -> "WatcherBuilder[T]":
        self._options["on_add"] = on_add
        return self

    def with_on_delete(self, on_delete: Callback[T]) -> "WatcherBuilder[T]":
        self._options["on_delete"] = on_delete
        return self

    def with_on_modify(self, on_modify: Callback[T]) -> "WatcherBuilder[T]":
        self._options["on_modify"] = on_modify
        return self

    def with_is_supported(self, is_supported: Callable[[Any], bool]) -> "WatcherBuilder[T]":
        self._options["is_supported"] = is_supported
        return self

    def with_gate(self, gate: ReconciliationGate) -> "WatcherBuilder[T]":
        self._options["gate"] = gate
        return self

    def with_executor(self, executor: Executor) -> "WatcherBuilder[T]":
        self._options["executor"] = executor
        return self

    def with_reconnect_policy(self, policy: ReconnectPolicy) -> "WatcherBuilder[T]":
        self._options["reconnect_policy"] = policy
        return self

    def build(self) -> Watcher[T]:
        """Create the watcher.

        Raises:
            ValueError: If a compulsory collaborator is missing.
        """
        missing = [
            key
            for key in ("kind", "client", "convert", "on_add", "on_delete", "executor")
            if self._options.get(key) is None
        ]
        if missing:
            raise ValueError(f"Missing watcher options: {', '.join(missing)}")

        if self._crd is not None:
            return CustomResourceWatcher(crd=self._crd, **self._options)
        return ConfigMapWatcher(
            label_selector=self._label_selector or LabelSelector(), **self._options
        )


def _resource_name(resource: Any) -> str | None:
    metadata = getattr(resource, "metadata", None)
    return getattr(metadata, "name", None)


def _resource_version(resource: Any) -> str | None:
    if isinstance(resource, dict):
        return (resource.get("metadata") or {}).get("resourceVersion")
    metadata = getattr(resource, "metadata", None)
    return getattr(metadata, "resourceVersion", None)
