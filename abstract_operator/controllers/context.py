"""Runtime collaborators handed to every operator."""

from concurrent.futures import Executor
from dataclasses import dataclass, field

from abstract_operator.controllers.crd import CrdManager
from abstract_operator.controllers.watcher import ReconnectPolicy
from abstract_operator.utils.k8s_client import K8sClient


@dataclass(frozen=True)
class OperatorContext:
    """Explicit environment of one operator instance.

    ``namespace`` is a concrete namespace or ``"*"`` for all namespaces; the
    current-namespace sentinel is resolved before contexts are built.
    """

    client: K8sClient
    namespace: str
    executor: Executor
    crd_manager: CrdManager
    is_openshift: bool = False
    force_crd: bool = False
    reconnect_policy: ReconnectPolicy = field(default_factory=ReconnectPolicy)
