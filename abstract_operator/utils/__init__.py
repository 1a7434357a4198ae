"""Abstract operator utilities."""

from abstract_operator.utils.k8s_client import K8sClient, WatchStream

__all__ = [
    "K8sClient",
    "WatchStream",
]
