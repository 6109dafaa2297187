"""Region — a named circular area the user wants reminders for."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def _new_region_id() -> str:
    return str(uuid4())


class GeoPoint(BaseModel):
    """WGS84 coordinate."""

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class Region(BaseModel):
    """
    A reminder region as stored by the Region Registry.

    The engine tolerates any positive radius; the 50-500 m range is a
    presentation-layer rule.
    """

    id: str = Field(default_factory=_new_region_id)
    name: str
    address: str = ""
    center: GeoPoint
    radius_meters: float = Field(gt=0)
    entry_message: str = ""                 # empty -> templated default
    exit_message: str = ""
    notify_on_entry: bool = True
    notify_on_exit: bool = True
    enabled: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RegistryChangeKind(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    DELETED = "deleted"


class RegistryChange(BaseModel):
    """Change notification emitted by the Region Registry."""

    kind: RegistryChangeKind
    region_id: str
