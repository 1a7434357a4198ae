"""Abstract operator controllers."""

from abstract_operator.controllers.context import OperatorContext
from abstract_operator.controllers.crd import CrdManager
from abstract_operator.controllers.operator import Operator
from abstract_operator.controllers.reconciliation import (
    GateState,
    ReconciliationGate,
    ReconciliationScheduler,
)
from abstract_operator.controllers.registry import OperatorRegistry, registry
from abstract_operator.controllers.watcher import (
    ConfigMapWatcher,
    CustomResourceWatcher,
    ReconnectPolicy,
    Watcher,
    WatcherBuilder,
    WatcherState,
)

__all__ = [
    "ConfigMapWatcher",
    "CrdManager",
    "CustomResourceWatcher",
    "GateState",
    "Operator",
    "OperatorContext",
    "OperatorRegistry",
    "ReconciliationGate",
    "ReconciliationScheduler",
    "ReconnectPolicy",
    "Watcher",
    "WatcherBuilder",
    "WatcherState",
    "registry",
]
