"""Unit tests for the reconciliation gate and scheduler."""

import asyncio

import pytest
from prometheus_client import REGISTRY

from abstract_operator.controllers.reconciliation import (
    GateState,
    ReconciliationGate,
    ReconciliationScheduler,
    initial_delay,
)


class FakeOperator:
    """Reconcilable recording its invocations."""

    def __init__(self, name: str, fail: bool = False) -> None:
        self._name = name
        self.fail = fail
        self.runs = 0
        self.reconciled = 0

    @property
    def name(self) -> str:
        return self._name

    def full_reconciliation(self) -> None:
        self.runs += 1
        if self.fail:
            raise RuntimeError("cluster unreachable")

    def mark_reconciled(self) -> None:
        self.reconciled += 1


class TestReconciliationGate:
    """Tests for ReconciliationGate transitions."""

    def test_starts_not_ready(self) -> None:
        gate = ReconciliationGate()
        assert gate.state is GateState.NOT_READY
        assert not gate.is_open

    def test_open(self) -> None:
        """Test that the first reconciliation opens the gate."""
        gate = ReconciliationGate()
        assert gate.open()
        assert gate.is_open
        assert gate.state is GateState.RECONCILED

    def test_open_is_idempotent(self) -> None:
        """Test that reopening reports no change."""
        gate = ReconciliationGate()
        gate.open()
        assert not gate.open()
        assert gate.is_open

    def test_close_from_any_state(self) -> None:
        """Test that both open and unopened gates can be closed."""
        unopened = ReconciliationGate()
        opened = ReconciliationGate()
        opened.open()

        assert unopened.close()
        assert opened.close()
        assert unopened.state is GateState.CLOSED
        assert opened.state is GateState.CLOSED

    def test_closed_gate_never_reopens(self) -> None:
        """Test that the closed state is final."""
        gate = ReconciliationGate()
        gate.close()

        assert not gate.open()
        assert not gate.is_open

    def test_no_backward_transition(self) -> None:
        """Test that a reconciled gate can't return to not ready."""
        gate = ReconciliationGate()
        gate.open()

        assert not gate.advance(GateState.NOT_READY)
        assert gate.state is GateState.RECONCILED


class TestInitialDelay:
    """Tests for the staggered first reconciliation."""

    def test_single_operator(self) -> None:
        assert initial_delay(0, 1) == 2

    def test_operators_are_staggered(self) -> None:
        """Test that no two operator instances share a delay."""
        delays = {initial_delay(op, 3, ns) for ns in range(2) for op in range(3)}
        assert delays == {2, 3, 4, 5, 6, 7}

    def test_base_delay(self) -> None:
        assert initial_delay(1, 2, namespace_index=1, base_delay=0) == 3


class TestReconciliationScheduler:
    """Tests for ReconciliationScheduler."""

    @pytest.mark.asyncio
    async def test_run_once_opens_gate(self) -> None:
        """Test that a successful reconciliation marks the operator reconciled."""
        operator = FakeOperator("'ok' operator")
        scheduler = ReconciliationScheduler(interval=60)

        assert await scheduler.run_once(operator)

        assert operator.runs == 1
        assert operator.reconciled == 1
        value = REGISTRY.get_sample_value(
            "operator_reconciliation_total",
            {"operator": "'ok' operator", "result": "success"},
        )
        assert value is not None
        assert value >= 1

    @pytest.mark.asyncio
    async def test_run_once_contains_errors(self) -> None:
        """Test that a failed reconciliation neither raises nor opens the gate."""
        operator = FakeOperator("'failing' operator", fail=True)
        scheduler = ReconciliationScheduler(interval=60)

        assert not await scheduler.run_once(operator)

        assert operator.reconciled == 0
        value = REGISTRY.get_sample_value(
            "operator_reconciliation_total",
            {"operator": "'failing' operator", "result": "error"},
        )
        assert value is not None
        assert value >= 1

    @pytest.mark.asyncio
    async def test_schedule_runs_periodically(self) -> None:
        """Test that the timer keeps firing after the first run."""
        operator = FakeOperator("'periodic' operator")
        scheduler = ReconciliationScheduler(interval=0.01)

        scheduler.schedule(operator, delay=0)
        for _ in range(200):
            if operator.runs >= 3:
                break
            await asyncio.sleep(0.01)
        await scheduler.cancel_all()

        assert operator.runs >= 3

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_timer(self) -> None:
        """Test that the timer survives failing reconciliations."""
        operator = FakeOperator("'flaky' operator", fail=True)
        scheduler = ReconciliationScheduler(interval=0.01)

        scheduler.schedule(operator, delay=0)
        for _ in range(200):
            if operator.runs >= 2:
                break
            await asyncio.sleep(0.01)
        await scheduler.cancel_all()

        assert operator.runs >= 2
        assert operator.reconciled == 0

    @pytest.mark.asyncio
    async def test_cancel_all(self) -> None:
        """Test that cancelled timers never fire."""
        operator = FakeOperator("'cancelled' operator")
        scheduler = ReconciliationScheduler(interval=60)

        task = scheduler.schedule(operator, delay=30)
        await scheduler.cancel_all()

        assert task.cancelled()
        assert operator.runs == 0
