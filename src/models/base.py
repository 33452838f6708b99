"""Shared Pydantic base model for API schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class WellnestBase(BaseModel):
    """Base model with shared config for all Wellnest schemas."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class SyncErrorDetail(BaseModel):
    """Body returned when a calendar operation fails with a classified error."""

    kind: str
    message: str
