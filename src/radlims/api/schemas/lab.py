"""Pydantic schemas for the inspection office registry."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class LabResponse(BaseModel):
    """Schema for lab response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    is_active: bool
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    created_at: datetime
