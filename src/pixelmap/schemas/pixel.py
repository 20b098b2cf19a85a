"""Pydantic schemas for pixels and users.

Learn: Pydantic v2 models validate request/response data. Separate
"Create" schemas (input) from "Read" schemas (output) for clean APIs.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


# ─── Pixels ─────────────────────────────────────────────

class PixelPaint(BaseModel):
    row: int = Field(..., ge=0)
    color: str = Field(..., pattern=r"^#[0-9a-fA-F]{6}$")
    state: str = Field(default="claimed", min_length=1, max_length=20)


class PixelRead(BaseModel):
    id: uuid.UUID
    row: int
    color: str
    state: str
    owner_id: Optional[uuid.UUID] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ─── Users ──────────────────────────────────────────────

class UserRead(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    point: int
    created_at: datetime

    model_config = {"from_attributes": True}
