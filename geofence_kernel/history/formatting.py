"""Display helpers for notification history: relative times and day groups."""

from datetime import date, datetime, timedelta, tzinfo
from typing import Dict, List, Optional

from geofence_kernel.clock import as_utc
from geofence_kernel.models.history import NotificationDateGroup, NotificationHistoryRecord


def time_ago(timestamp: datetime, now: datetime) -> str:
    """Short relative age, e.g. "Just now", "5m ago", "Yesterday"."""
    seconds = int((as_utc(now) - as_utc(timestamp)).total_seconds())

    if seconds < 60:
        return "Just now"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    if seconds < 172800:
        return "Yesterday"
    if seconds < 604800:
        return f"{seconds // 86400}d ago"
    return as_utc(timestamp).date().isoformat()


def group_by_date(
    records: List[NotificationHistoryRecord],
    today: date,
    tz: Optional[tzinfo] = None,
) -> List[NotificationDateGroup]:
    """
    Group records by local calendar day, newest day first.
    Items keep their incoming order within a day.
    """
    if not records:
        return []

    yesterday = today - timedelta(days=1)
    buckets: Dict[date, List[NotificationHistoryRecord]] = {}
    for record in records:
        stamp = as_utc(record.dispatched_at)
        day = (stamp.astimezone(tz) if tz else stamp).date()
        buckets.setdefault(day, []).append(record)

    groups = []
    for day in sorted(buckets, reverse=True):
        if day == today:
            display_name = "TODAY"
        elif day == yesterday:
            display_name = "YESTERDAY"
        else:
            display_name = day.isoformat()
        groups.append(
            NotificationDateGroup(day=day, display_name=display_name, items=buckets[day])
        )
    return groups
