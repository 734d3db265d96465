"""Pydantic schemas for the administrative admission API."""

from __future__ import annotations

from datetime import datetime

from pydantic import AwareDatetime, BaseModel, Field, model_validator


class GroupPolicyRequest(BaseModel):
    """Body of a group registration. Replaces any existing policy for the name."""

    max: int = Field(
        ...,
        ge=0,
        description="Maximum weighted events allowed per window (0 rejects everything).",
    )
    window_seconds: float = Field(
        ...,
        gt=0,
        description="Rolling window length in seconds.",
    )


class GroupPolicyResponse(BaseModel):
    name: str = Field(..., description="Traffic group name.")
    max: int = Field(..., description="Maximum weighted events per window.")
    window_seconds: float = Field(..., description="Rolling window length in seconds.")


class AdmitRequest(BaseModel):
    weight: int = Field(
        1,
        ge=0,
        description="Capacity units to consume. 0 only reads the current usage.",
    )


class RemainingResponse(BaseModel):
    """Capacity left for a key after an admission attempt."""

    group: str = Field(..., description="Traffic group the key was checked against.")
    key: str = Field(..., description="Limited entity (client address, account id, ...).")
    remaining: int = Field(
        ...,
        description="Capacity left in the window. Negative means over budget.",
    )
    allowed: bool = Field(..., description="Whether the attempt fits the budget.")


class BlockRequest(BaseModel):
    """Body of a block request: give either an absolute expiry or a duration."""

    cause: str = Field(
        ...,
        max_length=256,
        description="Reason recorded with the block (e.g. 'abuse', 'fraud').",
    )
    expires_at: AwareDatetime | None = Field(
        None,
        description="Absolute time the block lifts; must carry a UTC offset.",
    )
    duration_seconds: float | None = Field(
        None,
        gt=0,
        description="Block length from now, in seconds.",
    )

    @model_validator(mode="after")
    def _exactly_one_deadline(self) -> "BlockRequest":
        if (self.expires_at is None) == (self.duration_seconds is None):
            raise ValueError("provide exactly one of expires_at or duration_seconds")
        return self


class BlockStateResponse(BaseModel):
    key: str = Field(..., description="Blocked entity.")
    blocked: bool = Field(..., description="Whether the key is blocked right now.")
    cause: str = Field("", description="Reason recorded with the active block.")
    expires_at: datetime | None = Field(
        None,
        description="UTC time the active block lifts (null when not blocked).",
    )
