"""Operator runtime.

Builds every registered operator for every watched namespace, starts them and
schedules their periodic full reconciliation.
"""

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from abstract_operator.config import OperatorSettings
from abstract_operator.controllers.context import OperatorContext
from abstract_operator.controllers.crd import CrdManager
from abstract_operator.controllers.operator import Operator
from abstract_operator.controllers.reconciliation import ReconciliationScheduler, initial_delay
from abstract_operator.controllers.registry import OperatorRegistry
from abstract_operator.controllers.watcher import ReconnectPolicy
from abstract_operator.errors import OperatorError
from abstract_operator.models.crds import SAME_NAMESPACE
from abstract_operator.utils.k8s_client import K8sClient

logger = logging.getLogger(__name__)


class OperatorRuntime:
    """Owns the operators, their worker pool and their reconciliation timers."""

    def __init__(
        self,
        registry: OperatorRegistry,
        settings: OperatorSettings,
        client_factory: Callable[[], K8sClient] = K8sClient,
    ) -> None:
        self.registry = registry
        self.settings = settings
        self.operators: list[Operator[Any]] = []
        self.scheduler = ReconciliationScheduler(settings.full_reconciliation_interval_s)
        self._client_factory = client_factory
        self._executor: ThreadPoolExecutor | None = None

    def resolve_namespaces(self, client: K8sClient) -> list[str]:
        """Replace the current-namespace sentinel with the actual namespace."""
        namespaces = self.settings.namespaces
        if namespaces == [SAME_NAMESPACE]:
            return [client.current_namespace()]
        return namespaces

    async def start(self) -> list[Operator[Any]]:
        """Start all enabled operators in all watched namespaces.

        Operators with an incomplete descriptor are skipped. Startup errors are
        logged; the first one is raised once every operator was attempted.
        """
        client = self._client_factory()
        is_openshift = await asyncio.to_thread(client.is_openshift)
        platform = "OpenShift" if is_openshift else "Kubernetes"
        logger.info(f"{platform} environment detected.")

        namespaces = self.resolve_namespaces(client)
        registrations = list(self.registry)
        enabled = [r for r in registrations if r.descriptor.enabled]
        for registration in registrations:
            if not registration.descriptor.enabled:
                logger.info(f"Skipping initialization of {registration.descriptor.kind} operator")

        # Every watcher keeps one worker busy with its delivery loop
        instances = max(1, len(enabled) * len(namespaces))
        pool_size = self.settings.worker_pool_size or instances
        if pool_size < instances:
            logger.warning(
                f"Worker pool size {pool_size} is too small for {instances} watchers, "
                f"using {instances}"
            )
            pool_size = instances
        self._executor = ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="watch")
        crd_manager = CrdManager(client)
        policy = ReconnectPolicy(max_delay=self.settings.reconnect_max_delay_s)

        candidates: list[tuple[Operator[Any], int]] = []
        for namespace_index, namespace in enumerate(namespaces):
            context = OperatorContext(
                client=client,
                namespace=namespace,
                executor=self._executor,
                crd_manager=crd_manager,
                is_openshift=is_openshift,
                force_crd=self.settings.crd,
                reconnect_policy=policy,
            )
            for operator_index, registration in enumerate(enabled):
                delay = initial_delay(
                    operator_index,
                    len(enabled),
                    namespace_index,
                    self.settings.reconciliation_base_delay_s,
                )
                candidates.append((registration.create(context), delay))

        results = await asyncio.gather(
            *(operator.start() for operator, _ in candidates), return_exceptions=True
        )

        failures: list[BaseException] = []
        for (operator, delay), result in zip(candidates, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, OperatorError):
                    logger.error(f"Unexpected error starting {operator.name}", exc_info=result)
                logger.error(f"{operator.name} in namespace {operator.namespace} failed to start")
                failures.append(result)
                continue
            if result is None:
                continue
            self.operators.append(operator)
            logger.info(f"{operator.name} started in namespace {operator.namespace}")
            self.scheduler.schedule(operator, delay)

        if failures:
            raise failures[0]
        return self.operators

    async def stop(self) -> None:
        """Cancel the timers, stop the operators and release the worker pool."""
        await self.scheduler.cancel_all()
        for operator in self.operators:
            operator.stop()
        self.operators = []
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def status(self) -> dict[str, str]:
        """Watcher state per running operator and namespace."""
        return {f"{op.name} ({op.namespace})": op.state for op in self.operators}
