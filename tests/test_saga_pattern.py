"""
Test Saga Pattern Implementation
Compensation ordering, retry behaviour and persisted saga state
"""

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, patch

from sqlalchemy import select

from app.core.exceptions import CapacityExceededError
from app.core.saga import SagaOrchestrator, SagaStatus, StepStatus
from app.models.saga_state import SagaState, SagaStateStatus


class TestSagaOrchestrator:
    """Test the core Saga orchestrator functionality"""

    @pytest_asyncio.fixture
    async def orchestrator(self):
        return SagaOrchestrator()

    @pytest.mark.asyncio
    async def test_saga_creation(self, orchestrator):
        saga = orchestrator.create_saga(
            name="test_saga",
            context={"test_key": "test_value"}
        )

        assert saga.name == "test_saga"
        assert saga.context["test_key"] == "test_value"
        assert saga.status == SagaStatus.STARTED
        assert len(saga.steps) == 0

    @pytest.mark.asyncio
    async def test_successful_saga_execution(self, orchestrator):
        saga = orchestrator.create_saga("test_success")

        async def step1_action(context):
            context["reserved"] = True
            return {"step1": "completed"}

        async def step2_action(context):
            return {"step2": context["reserved"]}

        orchestrator.add_step(saga, "step1", step1_action, AsyncMock())
        orchestrator.add_step(saga, "step2", step2_action, AsyncMock())

        success = await orchestrator.execute_saga(saga)

        assert success is True
        assert saga.status == SagaStatus.COMPLETED
        assert saga.completed_at is not None
        assert saga.steps[0].result == {"step1": "completed"}
        assert saga.steps[1].result == {"step2": True}

    @pytest.mark.asyncio
    async def test_failed_step_compensates_in_reverse_order(self, orchestrator):
        saga = orchestrator.create_saga("test_failure")
        calls = []

        async def ok(context):
            return None

        def compensation(name):
            async def _compensate(context):
                calls.append(name)
            return _compensate

        async def failing(context):
            raise CapacityExceededError("tour-1")

        orchestrator.add_step(saga, "reserve", ok, compensation("release"))
        orchestrator.add_step(saga, "persist", ok, compensation("delete"))
        failing_compensation = AsyncMock()
        orchestrator.add_step(saga, "charge", failing, failing_compensation)

        success = await orchestrator.execute_saga(saga)

        assert success is False
        assert calls == ["delete", "release"]
        failing_compensation.assert_not_called()
        assert isinstance(saga.error, CapacityExceededError)
        assert saga.status == SagaStatus.COMPENSATED
        assert saga.steps[2].status == StepStatus.FAILED

    @pytest.mark.asyncio
    async def test_domain_errors_are_not_retried(self, orchestrator):
        saga = orchestrator.create_saga("test_no_retry")
        action = AsyncMock(side_effect=CapacityExceededError("tour-1"))
        orchestrator.add_step(saga, "reserve", action, max_retries=3)

        assert await orchestrator.execute_saga(saga) is False
        assert action.await_count == 1

    @pytest.mark.asyncio
    async def test_transient_errors_retry_until_success(self, orchestrator):
        saga = orchestrator.create_saga("test_retry")
        action = AsyncMock(side_effect=[ConnectionError("blip"), "done"])
        step = orchestrator.add_step(saga, "flaky", action, max_retries=1)

        with patch("app.core.saga.asyncio.sleep", new=AsyncMock()):
            assert await orchestrator.execute_saga(saga) is True

        assert action.await_count == 2
        assert step.retry_count == 1
        assert step.result == "done"

    @pytest.mark.asyncio
    async def test_failed_compensation_marks_saga_for_reconciliation(self, orchestrator):
        saga = orchestrator.create_saga("test_compensation_failure")
        second_compensation = AsyncMock()

        orchestrator.add_step(
            saga, "reserve", AsyncMock(return_value=None), second_compensation
        )
        orchestrator.add_step(
            saga, "persist", AsyncMock(return_value=None), AsyncMock(side_effect=RuntimeError("db gone"))
        )
        orchestrator.add_step(saga, "charge", AsyncMock(side_effect=RuntimeError("gateway down")))

        success = await orchestrator.execute_saga(saga)

        assert success is False
        assert saga.status == SagaStatus.COMPENSATION_FAILED
        assert saga.steps[1].status == StepStatus.COMPENSATION_FAILED
        # Remaining compensations still run
        second_compensation.assert_awaited_once()
        assert saga.steps[0].status == StepStatus.COMPENSATED


class TestSagaPersistence:
    """Saga progress is written to saga_states"""

    @pytest.mark.asyncio
    async def test_completed_saga_is_persisted(self, session_factory):
        orchestrator = SagaOrchestrator(session_factory)
        saga = orchestrator.create_saga("create_booking", {"booking_id": "abc"})
        orchestrator.add_step(saga, "reserve", AsyncMock(return_value=None))

        assert await orchestrator.execute_saga(saga) is True

        async with session_factory() as session:
            state = (await session.execute(
                select(SagaState).where(SagaState.saga_id == saga.saga_id)
            )).scalar_one()

        assert state.status == SagaStateStatus.COMPLETED
        assert state.context == {"booking_id": "abc"}
        assert state.completed_steps == 1
        assert state.steps_data[0]["name"] == "reserve"

    @pytest.mark.asyncio
    async def test_compensation_failure_is_persisted(self, session_factory):
        orchestrator = SagaOrchestrator(session_factory)
        saga = orchestrator.create_saga("create_booking")
        orchestrator.add_step(
            saga, "reserve", AsyncMock(return_value=None), AsyncMock(side_effect=RuntimeError("stuck"))
        )
        orchestrator.add_step(saga, "charge", AsyncMock(side_effect=RuntimeError("declined")))

        assert await orchestrator.execute_saga(saga) is False

        async with session_factory() as session:
            state = (await session.execute(
                select(SagaState).where(SagaState.saga_id == saga.saga_id)
            )).scalar_one()

        assert state.status == SagaStateStatus.COMPENSATION_FAILED
        assert "declined" in state.error_message

    @pytest.mark.asyncio
    async def test_recover_incomplete_sagas(self, session_factory):
        async with session_factory() as session:
            session.add(SagaState(saga_id="stuck-1", saga_name="create_booking", status=SagaStateStatus.EXECUTING))
            session.add(SagaState(saga_id="done-1", saga_name="create_booking", status=SagaStateStatus.COMPLETED))
            await session.commit()

        orchestrator = SagaOrchestrator(session_factory)
        assert await orchestrator.recover_incomplete_sagas() == 1

        async with session_factory() as session:
            stuck = (await session.execute(
                select(SagaState).where(SagaState.saga_id == "stuck-1")
            )).scalar_one()

        assert stuck.status == SagaStateStatus.FAILED
        assert "manual investigation" in stuck.error_message
