"""Monitoring reconciliation results."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class ReconcileReport(BaseModel):
    """Outcome of one reconcile pass against the monitoring backend."""

    started_at: datetime
    cleared: bool = False                   # unregister_all succeeded
    registered: List[str] = []
    failed: List[str] = []
    skipped_reason: Optional[str] = None
