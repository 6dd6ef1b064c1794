"""
Saga Pattern Implementation for multi-step booking transactions

Each step pairs a forward action with a compensation. When a step fails the
completed steps are compensated in reverse order. Saga progress is persisted
so a failed compensation leaves a record for manual reconciliation.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.exceptions import TravelTourException

logger = logging.getLogger(__name__)

StepAction = Callable[[Dict[str, Any]], Awaitable[Any]]


class SagaStatus(str, Enum):
    """Saga execution status"""
    STARTED = "started"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATING = "compensating"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"


class StepStatus(str, Enum):
    """Individual step status"""
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATING = "compensating"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"


@dataclass
class SagaStep:
    """
    Individual step in a Saga transaction
    """
    name: str
    action: StepAction
    compensation: Optional[StepAction] = None
    status: StepStatus = StepStatus.PENDING
    result: Any = None
    error: Optional[Exception] = None
    executed_at: Optional[datetime] = None
    compensated_at: Optional[datetime] = None

    # Retry configuration
    max_retries: int = 0
    retry_count: int = 0


@dataclass
class SagaTransaction:
    """
    Represents a complete Saga transaction with all steps.
    ``context`` is shared by every step; actions may write to it.
    """
    saga_id: str
    name: str
    steps: List[SagaStep] = field(default_factory=list)
    status: SagaStatus = SagaStatus.STARTED
    context: Dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    error: Optional[Exception] = None


def _jsonable(value: Any) -> Any:
    return json.loads(json.dumps(value, default=str))


class SagaOrchestrator:
    """
    Orchestrator for managing Saga transactions with persistent state
    """

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.logger = logging.getLogger(__name__)
        self.session_factory = session_factory
        self._active_sagas: Dict[str, SagaTransaction] = {}

    async def _persist_saga_state(self, saga: SagaTransaction):
        """
        Persist saga state to database for recovery
        """
        if self.session_factory is None:
            return

        try:
            from app.models.saga_state import SagaState, SagaStateStatus

            steps_data = [
                {
                    'name': step.name,
                    'status': step.status.value,
                    'retry_count': step.retry_count,
                    'error': str(step.error) if step.error else None,
                    'executed_at': step.executed_at.isoformat() if step.executed_at else None,
                    'compensated_at': step.compensated_at.isoformat() if step.compensated_at else None
                }
                for step in saga.steps
            ]
            completed_steps = len([s for s in saga.steps if s.status == StepStatus.COMPLETED])

            async with self.session_factory() as db:
                result = await db.execute(select(SagaState).where(SagaState.saga_id == saga.saga_id))
                saga_state = result.scalar_one_or_none()

                if saga_state is None:
                    saga_state = SagaState(
                        saga_id=saga.saga_id,
                        saga_name=saga.name,
                        started_at=saga.started_at
                    )
                    db.add(saga_state)

                saga_state.status = SagaStateStatus(saga.status.value)
                saga_state.context = _jsonable(saga.context)
                saga_state.steps_data = steps_data
                saga_state.completed_steps = completed_steps
                saga_state.completed_at = saga.completed_at
                if saga.error:
                    saga_state.error_message = str(saga.error)

                await db.commit()

        except Exception as e:
            self.logger.error(f"Failed to persist saga state for {saga.saga_id}: {e}")
            # Don't fail the saga for persistence issues

    def create_saga(self, name: str, context: Dict[str, Any] = None) -> SagaTransaction:
        """Create a new Saga transaction"""
        saga = SagaTransaction(
            saga_id=str(uuid.uuid4()),
            name=name,
            context=context or {}
        )
        self._active_sagas[saga.saga_id] = saga
        return saga

    def add_step(
        self,
        saga: SagaTransaction,
        name: str,
        action: StepAction,
        compensation: Optional[StepAction] = None,
        max_retries: int = 0
    ) -> SagaStep:
        """Add a step to the Saga"""
        step = SagaStep(
            name=name,
            action=action,
            compensation=compensation,
            max_retries=max_retries
        )
        saga.steps.append(step)
        return step

    async def execute_saga(self, saga: SagaTransaction) -> bool:
        """
        Execute all steps in the Saga
        Returns True if successful, False if compensation was required
        """
        self.logger.info(f"Starting saga execution: {saga.name} ({saga.saga_id})")
        saga.status = SagaStatus.EXECUTING
        await self._persist_saga_state(saga)

        executed_steps: List[SagaStep] = []

        try:
            for step in saga.steps:
                success = await self._execute_step(saga, step)

                if not success:
                    self.logger.warning(f"Step {step.name} failed, starting compensation")
                    saga.status = SagaStatus.FAILED
                    saga.error = step.error
                    await self._persist_saga_state(saga)

                    await self._compensate_saga(saga, executed_steps)
                    return False

                executed_steps.append(step)
                await self._persist_saga_state(saga)

            saga.status = SagaStatus.COMPLETED
            saga.completed_at = datetime.now(timezone.utc)
            await self._persist_saga_state(saga)
            self.logger.info(f"Saga completed successfully: {saga.name}")
            return True

        except Exception as e:
            self.logger.error(f"Unexpected error in saga {saga.name}: {e}")
            saga.status = SagaStatus.FAILED
            saga.error = e
            await self._persist_saga_state(saga)

            await self._compensate_saga(saga, executed_steps)
            return False

        finally:
            self._active_sagas.pop(saga.saga_id, None)

    async def _execute_step(self, saga: SagaTransaction, step: SagaStep) -> bool:
        """Execute a single step with retry logic"""
        step.status = StepStatus.EXECUTING

        for attempt in range(step.max_retries + 1):
            try:
                self.logger.debug(f"Executing step {step.name} (attempt {attempt + 1})")

                step.result = await step.action(saga.context)
                step.status = StepStatus.COMPLETED
                step.executed_at = datetime.now(timezone.utc)

                self.logger.info(f"Step {step.name} completed successfully")
                return True

            except Exception as e:
                step.retry_count = attempt + 1
                step.error = e

                # Business rule failures will not change on retry
                if isinstance(e, TravelTourException) or attempt >= step.max_retries:
                    self.logger.warning(f"Step {step.name} failed: {e}")
                    step.status = StepStatus.FAILED
                    return False

                self.logger.warning(f"Step {step.name} failed (attempt {attempt + 1}): {e}")
                await asyncio.sleep(min(2 ** attempt, 10))

        return False

    async def _compensate_saga(self, saga: SagaTransaction, executed_steps: List[SagaStep]):
        """Compensate executed steps in reverse order"""
        self.logger.info(f"Starting compensation for saga {saga.name}")
        saga.status = SagaStatus.COMPENSATING
        await self._persist_saga_state(saga)

        all_compensated = True
        for step in reversed(executed_steps):
            if step.status == StepStatus.COMPLETED:
                all_compensated = await self._compensate_step(saga, step) and all_compensated
                await self._persist_saga_state(saga)

        saga.completed_at = datetime.now(timezone.utc)
        if all_compensated:
            saga.status = SagaStatus.COMPENSATED
            self.logger.info(f"Saga compensation completed: {saga.name}")
        else:
            saga.status = SagaStatus.COMPENSATION_FAILED
            self.logger.critical(
                f"Saga {saga.name} ({saga.saga_id}) could not be fully compensated; manual reconciliation required"
            )
        await self._persist_saga_state(saga)

    async def _compensate_step(self, saga: SagaTransaction, step: SagaStep) -> bool:
        """Compensate a single step; returns False when the compensation itself failed"""
        if step.compensation is None:
            step.status = StepStatus.COMPENSATED
            return True

        step.status = StepStatus.COMPENSATING
        try:
            self.logger.debug(f"Compensating step {step.name}")
            await step.compensation(saga.context)

            step.status = StepStatus.COMPENSATED
            step.compensated_at = datetime.now(timezone.utc)
            self.logger.info(f"Step {step.name} compensated successfully")
            return True

        except Exception as e:
            step.status = StepStatus.COMPENSATION_FAILED
            self.logger.critical(f"Compensation failed for step {step.name}: {e}")
            return False

    async def recover_incomplete_sagas(self) -> int:
        """
        Mark sagas interrupted by a restart for manual investigation.
        Called during application startup. Returns the number of sagas marked.
        """
        if self.session_factory is None:
            return 0

        from app.models.saga_state import SagaState, SagaStateStatus

        async with self.session_factory() as db:
            result = await db.execute(
                select(SagaState).where(
                    SagaState.status.in_([
                        SagaStateStatus.STARTED,
                        SagaStateStatus.EXECUTING,
                        SagaStateStatus.COMPENSATING
                    ])
                )
            )
            incomplete_sagas = result.scalars().all()

            for saga_state in incomplete_sagas:
                saga_state.status = SagaStateStatus.FAILED
                saga_state.error_message = "Server restart during execution - requires manual investigation"
                saga_state.completed_at = datetime.now(timezone.utc)
                self.logger.warning(
                    f"Marked saga {saga_state.saga_id} ({saga_state.saga_name}) as failed due to server restart"
                )

            await db.commit()

        return len(incomplete_sagas)


def _default_session_factory():
    from app.core.database import async_session
    return async_session


# Global saga orchestrator
saga_orchestrator = SagaOrchestrator(_default_session_factory())
