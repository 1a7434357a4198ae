"""Operator base class.

Extend :class:`Operator` and override the callbacks to handle the life-cycle
of the ConfigMaps or custom resources of one kind. An operator validates its
descriptor, makes sure the custom resource definition exists, starts a
watcher and exposes the full reconciliation hook driven by the scheduler.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from functools import partial
from typing import Any, Generic, TypeVar

from abstract_operator.controllers.context import OperatorContext
from abstract_operator.controllers.reconciliation import ReconciliationGate
from abstract_operator.controllers.watcher import Watcher, WatcherBuilder
from abstract_operator.errors import WatchEstablishmentError
from abstract_operator.models.crds import (
    CustomResourceDefinitionDescriptor,
    LabelSelector,
    OperatorDescriptor,
)
from abstract_operator.models.entity import EntityInfo
from abstract_operator.models.resources import ConfigMap, CustomResource
from abstract_operator.utils.metrics import MANAGED_RESOURCES
from abstract_operator.utils.parsing import parse_config_map, parse_custom_resource
from abstract_operator.utils.schema import read_schema

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=EntityInfo)

KIND_LABEL = "kind"


class Operator(ABC, Generic[T]):
    """Watches one entity kind and reacts on its life-cycle."""

    def __init__(self, descriptor: OperatorDescriptor, context: OperatorContext) -> None:
        self.descriptor = descriptor
        self.context = context
        self.entity_type: type[T] | None = descriptor.entity_type  # type: ignore[assignment]
        self.gate = ReconciliationGate()
        self.watcher: Watcher[T] | None = None
        self.crd: CustomResourceDefinitionDescriptor | None = None

        self.kind = descriptor.kind
        self.entity_name = self.kind.lower()
        self.is_crd = descriptor.crd or context.force_crd
        self.prefix = self._resolve_prefix(descriptor.prefix)
        self._name = f"'{self.entity_name}' operator"

    # -------------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------------

    @abstractmethod
    def on_add(self, entity: T, namespace: str) -> None:
        """Handle the creation of a ConfigMap or custom resource of this kind."""

    @abstractmethod
    def on_delete(self, entity: T, namespace: str) -> None:
        """Handle the deletion of a ConfigMap or custom resource of this kind."""

    def on_modify(self, entity: T, namespace: str) -> None:
        """Handle a modification; deletes and re-adds the entity unless overridden."""
        self.on_delete(entity, namespace)
        self.on_add(entity, namespace)

    def on_init(self) -> None:
        """Called before the watcher starts. No-op by default."""

    def is_supported(self, resource: ConfigMap | CustomResource) -> bool:
        """Deep check of a watched resource; labels already narrow ConfigMaps."""
        return True

    def convert(self, config_map: ConfigMap) -> T | None:
        """Convert the YAML ``config`` key of a ConfigMap into an entity."""
        if self.entity_type is None:
            return None
        return parse_config_map(self.entity_type, config_map)

    def convert_cr(self, resource: CustomResource) -> T | None:
        """Convert the spec of a custom resource into an entity."""
        if self.entity_type is None:
            return None
        return parse_custom_resource(self.entity_type, resource)

    # -------------------------------------------------------------------------
    # Life-cycle
    # -------------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def namespace(self) -> str:
        return self.context.namespace

    @property
    def enabled(self) -> bool:
        return self.descriptor.enabled

    @property
    def group(self) -> str:
        return self.prefix.rstrip("/")

    @property
    def label_selector(self) -> LabelSelector:
        """Selector of the ConfigMaps carrying this kind."""
        return LabelSelector(matchLabels={f"{self.prefix}{KIND_LABEL}": self.entity_name})

    @property
    def reconciled(self) -> bool:
        return self.gate.is_open

    @property
    def state(self) -> str:
        """Watcher state for health reporting."""
        if self.watcher is None:
            return "Unstarted"
        return self.watcher.state.value

    async def start(self) -> Watcher[T] | None:
        """Start the operator and create the watch.

        Returns:
            The running watcher, or None if the descriptor is incomplete.

        Raises:
            CrdCreationError: If the custom resource definition can't be created.
            WatchEstablishmentError: If the watch subscription fails.
        """
        if not self._check_integrity():
            logger.warning(
                "Unable to initialize the operator correctly, some compulsory fields are missing."
            )
            return None

        logger.info(f"Starting {self.name} for namespace {self.namespace}")

        if self.is_crd:
            self.crd = await asyncio.to_thread(
                self.context.crd_manager.ensure,
                kind=self.kind,
                group=self.group,
                short_names=self.descriptor.short_names,
                plural=self.descriptor.plural,
                schema_source=partial(read_schema, self.entity_type),
                version=self.descriptor.version,
                is_openshift=self.context.is_openshift,
            )

        # this can be overridden in child operators
        self.on_init()

        self.watcher = self._build_watcher()
        try:
            await self.watcher.watch()
        except Exception as e:
            logger.error(f"{self.name} startup failed for namespace {self.namespace}")
            raise WatchEstablishmentError(self.name, self.namespace, e) from e

        logger.info(f"{self.name} running for namespace {self.namespace}")
        return self.watcher

    def full_reconciliation(self) -> None:
        """Re-derive the desired state. No-op by default.

        Implementations typically diff :meth:`get_desired_set` against what is
        actually provisioned.
        """

    def mark_reconciled(self) -> None:
        """Open the dispatch gate. Idempotent."""
        if self.gate.open():
            logger.info(
                f"{self.name} reconciled, dispatching events for namespace {self.namespace}"
            )

    def get_desired_set(self) -> set[T]:
        """List the resources of this kind and convert them into entities.

        Resources that fail the support check or the conversion are skipped.
        """
        client = self.context.client
        resources: list[Any]
        if self.is_crd:
            crd = self.crd or CustomResourceDefinitionDescriptor(
                group=self.group,
                kind=self.kind,
                plural=self.descriptor.plural,
                version=self.descriptor.version,
            )
            resources = client.list_custom_resources(
                crd.group, crd.version, crd.plural or "", self.namespace
            )
            convert: Any = self.convert_cr
        else:
            resources = client.list_config_maps(
                self.namespace, self.label_selector.model_dump(exclude_none=True)
            )
            convert = self.convert

        desired: set[T] = set()
        for resource in resources:
            if not self.is_supported(resource):
                continue
            entity = convert(resource)
            if entity is None:
                logger.warning(f"Skipping unparsable {self.kind} {resource.metadata.name}")
                continue
            desired.add(entity)

        MANAGED_RESOURCES.labels(kind=self.kind).set(len(desired))
        return desired

    def stop(self) -> None:
        """Close the watch and release the client.

        Must not run concurrently with :meth:`start`.
        """
        logger.info(f"Stopping {self.name} for namespace {self.namespace}")
        if self.watcher is not None:
            self.watcher.close()
        else:
            self.gate.close()
            self.context.client.close()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _resolve_prefix(self, prefix: str | None) -> str:
        if not prefix:
            prefix = type(self).__module__.rpartition(".")[0]
        if not prefix:
            return ""
        return prefix if prefix.endswith("/") else f"{prefix}/"

    def _check_integrity(self) -> bool:
        problems = []
        if self.entity_type is None:
            problems.append("entity type")
        if not self.entity_name:
            problems.append("entity name")
        if not self.prefix or not self.prefix.endswith("/"):
            problems.append("prefix")
        if not self._name.endswith("operator"):
            problems.append("operator name")
        if problems:
            logger.warning(f"Invalid operator descriptor, check: {', '.join(problems)}")
        return not problems

    def _build_watcher(self) -> Watcher[T]:
        builder: WatcherBuilder[T] = (
            WatcherBuilder()
            .with_kind(self.kind)
            .with_namespace(self.namespace)
            .with_client(self.context.client)
            .with_on_add(self.on_add)
            .with_on_delete(self.on_delete)
            .with_on_modify(self.on_modify)
            .with_is_supported(self.is_supported)
            .with_gate(self.gate)
            .with_executor(self.context.executor)
            .with_reconnect_policy(self.context.reconnect_policy)
        )
        if self.is_crd and self.crd is not None:
            builder.with_crd(self.crd).with_convert(self.convert_cr)
        else:
            builder.with_label_selector(self.label_selector).with_convert(self.convert)
        return builder.build()
