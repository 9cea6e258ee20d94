# keyshop/models/base.py
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

class RecordModel(BaseModel):
    """Row shape read back from asyncpg; extra selected columns are ignored"""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

class TimeStampedModel(RecordModel):
    created_at: datetime
    updated_at: Optional[datetime] = None
