"""Notification history records — the ledger's unit of storage."""

from datetime import date, datetime
from typing import List
from uuid import uuid4

from pydantic import BaseModel, Field

from geofence_kernel.models.transition import TransitionType


class NotificationHistoryRecord(BaseModel):
    """
    One dispatched notification.

    region_name is a snapshot taken at dispatch time so the record survives
    region rename or deletion.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    region_id: str
    region_name: str
    title: str
    message: str
    transition_type: TransitionType
    dispatched_at: datetime


class NotificationDateGroup(BaseModel):
    """History records sharing a calendar day, for display."""

    day: date
    display_name: str                       # "TODAY" | "YESTERDAY" | ISO date
    items: List[NotificationHistoryRecord]
