import os
import shutil
import subprocess
import tempfile
import uuid

import pytest
from kubernetes import client, config

TEST_NAMESPACE = "spark-test"


@pytest.fixture(scope="session")
def k3d_cluster():
    """Starts a k3d cluster for integration tests."""
    if not shutil.which("k3d"):
        pytest.skip("k3d not installed")

    name = f"operator-test-{uuid.uuid4().hex[:8]}"
    kube_config_path = None

    try:
        # Create cluster
        subprocess.run(
            ["k3d", "cluster", "create", name, "--no-lb", "--wait", "--timeout", "60s"],
            check=True,
            capture_output=True,
        )

        # Get kubeconfig
        result = subprocess.run(
            ["k3d", "kubeconfig", "get", name], check=True, capture_output=True, text=True
        )

        with tempfile.NamedTemporaryFile(delete=False, mode="w", suffix=".yaml") as f:
            f.write(result.stdout)
            kube_config_path = f.name

        # K8sClient falls back to the default kubeconfig outside a cluster
        os.environ["KUBECONFIG"] = kube_config_path
        config.load_kube_config(config_file=kube_config_path)

        yield name

    except subprocess.CalledProcessError as e:
        pytest.skip(f"Could not start k3d cluster: {e}")
    finally:
        if shutil.which("k3d"):
            subprocess.run(["k3d", "cluster", "delete", name], check=False, capture_output=True)

        if kube_config_path and os.path.exists(kube_config_path):
            os.remove(kube_config_path)


@pytest.fixture(scope="session")
def k8s_client(k3d_cluster):
    """Returns a configured Kubernetes client."""
    return client.ApiClient()


@pytest.fixture(scope="session")
def test_namespace(k8s_client):
    """Creates the namespace the operators watch."""
    core_v1 = client.CoreV1Api(k8s_client)
    try:
        core_v1.create_namespace(
            body=client.V1Namespace(metadata=client.V1ObjectMeta(name=TEST_NAMESPACE))
        )
    except client.exceptions.ApiException as e:
        if e.status != 409:  # Conflict/AlreadyExists
            raise
    return TEST_NAMESPACE
