"""
Base Pydantic schemas and shared field types
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, PlainSerializer

from app.services.pricing import as_utc, to_money

# Amounts leave the API as two-decimal strings, e.g. "575.00"
Money = Annotated[
    Decimal,
    AfterValidator(to_money),
    PlainSerializer(lambda v: f"{v:.2f}", return_type=str, when_used="json"),
]

# SQLite hands timestamps back without tzinfo; everything is stored as UTC
UTCDateTime = Annotated[datetime, AfterValidator(as_utc)]


class BaseSchema(BaseModel):
    """Base schema with common configuration"""
    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
    )


class TimestampSchema(BaseSchema):
    created_at: UTCDateTime
    updated_at: Optional[UTCDateTime] = None


class IDSchema(BaseSchema):
    id: UUID
