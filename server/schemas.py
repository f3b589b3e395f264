from __future__ import annotations

from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Direction = Literal["up", "down", "none"]


class ScrollSample(BaseModel):
    """Raw scroll sample posted by the page.

    Accepts both the short field names (``positionPx``, ``timestampMs``) and
    the ones the feed component sends (``scrollPosition``, ``timestamp``,
    ``videoHeight``). The position is required and every number must be
    finite.
    """

    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)

    position_px: float = Field(
        ..., validation_alias=AliasChoices("positionPx", "scrollPosition", "position_px")
    )
    timestamp_ms: Optional[float] = Field(
        None, validation_alias=AliasChoices("timestampMs", "timestamp", "timestamp_ms")
    )
    container_index: Optional[int] = Field(
        None, validation_alias=AliasChoices("containerIndex", "container_index")
    )
    container_height: Optional[float] = Field(
        None, validation_alias=AliasChoices("videoHeight", "containerHeight", "container_height")
    )
    total_height: Optional[float] = Field(
        None, validation_alias=AliasChoices("totalHeight", "total_height")
    )


class ScrollMetrics(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    current_speed: float = 0.0
    average_speed: float = 0.0
    total_distance: float = 0.0
    scroll_position: float = 0.0
    direction: Direction = "none"
    container_index: int = 0
    total_containers: int = 0
    time_in_container_ms: float = 0.0


class DeviceCommandRequest(BaseModel):
    """Manual motor command sent by the dashboard test buttons."""

    speed: int = Field(..., ge=0, le=255)
    direction: int = Field(..., ge=0, le=1)
    angle: Optional[int] = Field(None, ge=0, le=180)


class TransmissionLog(BaseModel):
    type: str = "unknown"
    data: Optional[dict | list | str | float] = None
