"""
Saga state persistence model
"""

from sqlalchemy import Column, String, Text, DateTime, Enum, Integer, JSON
import enum
from datetime import datetime, timezone

from app.models.base import BaseModel


class SagaStateStatus(str, enum.Enum):
    STARTED = "started"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATING = "compensating"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"


class SagaState(BaseModel):
    """
    Persistent record of a booking saga.
    Rows left in COMPENSATION_FAILED need manual reconciliation.
    """
    __tablename__ = "saga_states"

    saga_id = Column(String(100), unique=True, nullable=False, index=True)
    saga_name = Column(String(255), nullable=False)
    status = Column(Enum(SagaStateStatus), nullable=False, index=True)

    # Serialized context and step data
    context = Column(JSON)
    steps_data = Column(JSON)

    completed_steps = Column(Integer, default=0)

    started_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    completed_at = Column(DateTime(timezone=True))

    error_message = Column(Text)

    def __repr__(self):
        return f"<SagaState(saga_id={self.saga_id}, name={self.saga_name}, status={self.status})>"
