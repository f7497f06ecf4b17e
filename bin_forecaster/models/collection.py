"""
Collection-side domain models: bins, collection events, and planned route stops.

``CollectionEvent`` is one observed emptying of a bin. Events are created by
the collection-confirmation workflow and are never mutated by this engine, so
the model is frozen. ``collected_at`` may be ``None`` — such events are kept
but cannot anchor a cycle.

``CollectionBin`` and ``RouteStop`` are read-only context for the priority
list (region, active status, and whether a collection is already planned).
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from bin_forecaster.utils.time_utils import ensure_utc

BinStatus = Literal["active", "inactive"]


class CollectionBin(BaseModel):
    """A registered collection bin.

    Attributes:
        bin_id: Bin identifier (PK).
        region: Region display name, or ``None`` if unassigned.
        bin_status: ``"active"`` or ``"inactive"``. Inactive bins are not ranked.
    """

    model_config = ConfigDict(frozen=True)

    bin_id: int
    region: Optional[str] = None
    bin_status: BinStatus = "active"

    @field_validator("bin_status", mode="before")
    @classmethod
    def normalize_status(cls, v: str) -> str:
        return v.strip().lower() if isinstance(v, str) else v


class CollectionEvent(BaseModel):
    """One observed emptying of a bin.

    Attributes:
        collection_id: Auto-assigned DB PK; ``None`` before insertion.
        bin_id: Bin this event belongs to.
        collected_at: UTC timestamp of the collection, or ``None`` if unrecorded.
        fill_level: Fill percentage observed at collection (0–100).
    """

    model_config = ConfigDict(frozen=True)

    collection_id: Optional[int] = None
    bin_id: int
    collected_at: Optional[datetime] = None
    fill_level: int

    @field_validator("collected_at")
    @classmethod
    def validate_collected_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @field_validator("fill_level")
    @classmethod
    def validate_fill_level(cls, v: int) -> int:
        if not 0 <= v <= 100:
            raise ValueError(f"fill_level must be in [0, 100], got {v}.")
        return v


class RouteStop(BaseModel):
    """A planned collection of a bin on a route.

    Attributes:
        stop_id: Auto-assigned DB PK; ``None`` before insertion.
        route_id: Route the stop belongs to, if assigned.
        bin_id: Bin to be collected.
        planned_collection_at: Planned UTC collection time.
    """

    model_config = ConfigDict(frozen=True)

    stop_id: Optional[int] = None
    route_id: Optional[int] = None
    bin_id: int
    planned_collection_at: datetime

    @field_validator("planned_collection_at")
    @classmethod
    def validate_planned_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)
