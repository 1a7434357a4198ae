"""Reconciliation gate and scheduler.

Watch events are only dispatched once a full reconciliation has established
a baseline. The gate records that fact; the scheduler runs the periodic full
reconciliation of every operator and opens the gate after each success.
"""

import asyncio
import logging
import threading
from enum import Enum
from typing import Protocol

from abstract_operator.utils.metrics import RECONCILIATION_DURATION, RECONCILIATION_TOTAL

logger = logging.getLogger(__name__)


class GateState(Enum):
    """Dispatch state of a watcher."""

    NOT_READY = "NotReady"
    RECONCILED = "Reconciled"
    CLOSED = "Closed"


_TRANSITIONS: dict[GateState, frozenset[GateState]] = {
    GateState.NOT_READY: frozenset({GateState.RECONCILED, GateState.CLOSED}),
    GateState.RECONCILED: frozenset({GateState.CLOSED}),
    GateState.CLOSED: frozenset(),
}


class ReconciliationGate:
    """One-way latch withholding event dispatch until the first reconciliation.

    Shared between the event delivery worker and the reconciliation scheduler.
    """

    def __init__(self) -> None:
        self._state = GateState.NOT_READY
        self._lock = threading.Lock()

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def is_open(self) -> bool:
        """True once reconciled and until closed."""
        return self._state is GateState.RECONCILED

    def advance(self, target: GateState) -> bool:
        """Move the gate to ``target``.

        Returns:
            True if the state changed. Repeating the current state and
            backward transitions leave the gate untouched.
        """
        with self._lock:
            if target not in _TRANSITIONS[self._state]:
                if target is not self._state:
                    logger.debug(f"Ignoring gate transition {self._state.value} -> {target.value}")
                return False
            self._state = target
            return True

    def open(self) -> bool:
        return self.advance(GateState.RECONCILED)

    def close(self) -> bool:
        return self.advance(GateState.CLOSED)


class Reconcilable(Protocol):
    """What the scheduler needs from an operator."""

    @property
    def name(self) -> str: ...

    def full_reconciliation(self) -> None: ...

    def mark_reconciled(self) -> None: ...


def initial_delay(
    operator_index: int,
    operator_count: int,
    namespace_index: int = 0,
    base_delay: int = 2,
) -> int:
    """Stagger the first reconciliation so operators don't all run at once.

    Args:
        operator_index: Position of the operator among the registered ones.
        operator_count: Number of registered operators.
        namespace_index: Position of the namespace among the watched ones.
        base_delay: Seconds added to every delay.

    Returns:
        The delay in seconds.
    """
    return namespace_index * operator_count + operator_index + base_delay


class ReconciliationScheduler:
    """Runs ``full_reconciliation`` of each operator at a fixed rate."""

    def __init__(self, interval: float) -> None:
        self._interval = interval
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def interval(self) -> float:
        return self._interval

    def schedule(self, operator: Reconcilable, delay: float) -> asyncio.Task[None]:
        """Start the reconciliation timer of ``operator``.

        Must be called from a running event loop.
        """
        task = asyncio.create_task(self._run(operator, delay), name=f"reconcile {operator.name}")
        self._tasks.append(task)
        logger.info(
            f"Full reconciliation for {operator.name} scheduled "
            f"(periodically each {self._interval} seconds)"
        )
        logger.info(
            f"The first full reconciliation for {operator.name} is happening in {delay} seconds"
        )
        return task

    async def run_once(self, operator: Reconcilable) -> bool:
        """Run one full reconciliation and open the gate on success.

        Exceptions are logged and never propagated.
        """
        with RECONCILIATION_DURATION.labels(operator=operator.name).time():
            try:
                await asyncio.to_thread(operator.full_reconciliation)
                operator.mark_reconciled()
            except Exception:
                RECONCILIATION_TOTAL.labels(operator=operator.name, result="error").inc()
                logger.exception(f"Error during full reconciliation of {operator.name}")
                return False
        RECONCILIATION_TOTAL.labels(operator=operator.name, result="success").inc()
        return True

    async def _run(self, operator: Reconcilable, delay: float) -> None:
        loop = asyncio.get_running_loop()
        next_run = loop.time() + delay
        while True:
            await asyncio.sleep(max(0.0, next_run - loop.time()))
            await self.run_once(operator)
            next_run += self._interval

    async def cancel_all(self) -> None:
        """Cancel every timer and wait for them to finish."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
