"""Pytest fixtures for abstract operator tests."""

from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from abstract_operator.controllers.context import OperatorContext
from abstract_operator.controllers.crd import CrdManager
from abstract_operator.controllers.watcher import ReconnectPolicy


@pytest.fixture
def mock_k8s_client() -> MagicMock:
    """Create a mock Kubernetes client."""
    return MagicMock()


@pytest.fixture
def executor() -> Iterator[ThreadPoolExecutor]:
    """Create a worker pool for watch delivery."""
    pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="test-watch")
    yield pool
    pool.shutdown(wait=False, cancel_futures=True)


@pytest.fixture
def operator_context(mock_k8s_client: MagicMock, executor: ThreadPoolExecutor) -> OperatorContext:
    """Create an operator context bound to the mock client."""
    return OperatorContext(
        client=mock_k8s_client,
        namespace="default",
        executor=executor,
        crd_manager=CrdManager(mock_k8s_client),
        reconnect_policy=ReconnectPolicy(max_delay=0.0),
    )


@pytest.fixture
def sample_config() -> str:
    """Return a sample SparkCluster YAML definition."""
    return "name: my-cluster\nworkers: 3\nimage: quay.io/radanalyticsio/openshift-spark\n"
