"""
Geofence Kernel API — FastAPI endpoints.

Exposes the kernel for:
- Region management (drives monitoring reconciliation)
- Raw event ingestion from the monitoring backend
- Notification history
- Monitoring inspection and manual reconcile
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from geofence_kernel.clock import as_utc
from geofence_kernel.engine import GeofenceEngine
from geofence_kernel.errors import RegionNotFoundError
from geofence_kernel.history.formatting import group_by_date
from geofence_kernel.models.region import GeoPoint, Region
from geofence_kernel.observability.logging import get_logger, setup_logging

logger = get_logger(__name__)


# --- Request/Response Models ---

class RegionRequest(BaseModel):
    name: str
    address: str = ""
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    radius_meters: float = Field(gt=0)
    entry_message: str = ""
    exit_message: str = ""
    notify_on_entry: bool = True
    notify_on_exit: bool = True
    enabled: bool = True

    def to_region(self, region_id: Optional[str] = None) -> Region:
        fields = dict(
            name=self.name,
            address=self.address,
            center=GeoPoint(latitude=self.latitude, longitude=self.longitude),
            radius_meters=self.radius_meters,
            entry_message=self.entry_message,
            exit_message=self.exit_message,
            notify_on_entry=self.notify_on_entry,
            notify_on_exit=self.notify_on_exit,
            enabled=self.enabled,
        )
        if region_id is not None:
            fields["id"] = region_id
        return Region(**fields)


class EnabledRequest(BaseModel):
    enabled: bool


# --- Application Factory ---

def create_app(engine: Optional[GeofenceEngine] = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    eng = engine or GeofenceEngine()
    setup_logging(eng.config.log_level, json=eng.config.log_json)
    eng.start()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run the event pipeline workers for the lifetime of the app."""
        await eng.pipeline.start()
        try:
            yield
        finally:
            logger.info("Application shutting down")
            await eng.pipeline.stop()

    app = FastAPI(
        title="Geofence Kernel API",
        description="Dwell-confirmed geofence reminders",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = eng

    def _require(region_id: str) -> Region:
        try:
            return eng.registry.require(region_id)
        except RegionNotFoundError:
            raise HTTPException(404, "Region not found")

    # === REGIONS ===

    @app.post("/regions")
    def create_region(req: RegionRequest):
        """Create a region; monitoring is reconciled on the change."""
        region = eng.registry.add(req.to_region())
        return region.model_dump(mode="json")

    @app.get("/regions")
    def list_regions():
        return [r.model_dump(mode="json") for r in eng.registry.list_regions()]

    @app.get("/regions/{region_id}")
    def get_region(region_id: str):
        return _require(region_id).model_dump(mode="json")

    @app.put("/regions/{region_id}")
    def update_region(region_id: str, req: RegionRequest):
        _require(region_id)
        region = eng.registry.update(req.to_region(region_id))
        return region.model_dump(mode="json")

    @app.post("/regions/{region_id}/enabled")
    def set_region_enabled(region_id: str, req: EnabledRequest):
        _require(region_id)
        region = eng.registry.set_enabled(region_id, req.enabled)
        return region.model_dump(mode="json")

    @app.delete("/regions/{region_id}")
    def delete_region(region_id: str):
        if not eng.registry.delete(region_id):
            raise HTTPException(404, "Region not found")
        return {"status": "deleted", "region_id": region_id}

    @app.get("/regions/{region_id}/state")
    def region_state(region_id: str):
        """Occupancy diagnostics for one region."""
        _require(region_id)
        return {
            "region_id": region_id,
            "occupancy": eng.machine.occupancy(region_id).value,
        }

    # === RAW EVENTS ===

    @app.post("/events", status_code=202)
    async def ingest_event(payload: Dict[str, Any]):
        """
        Backend delivery. The event is queued for the worker pipeline;
        `accepted` is False when it was malformed or the queue was full.
        Must stay a coroutine: the queue is only touched on the event loop.
        """
        return {"accepted": eng.enqueue_payload(payload)}

    @app.get("/events/pipeline")
    def pipeline_status():
        return {
            "status": eng.pipeline.status,
            "processed": eng.pipeline.processed,
            "dropped": eng.pipeline.dropped,
        }

    # === HISTORY ===

    @app.get("/history")
    def get_history(window_days: Optional[int] = None, grouped: bool = False):
        records = eng.ledger.query_recent(window_days)
        if grouped:
            today = as_utc(eng.clock()).date()
            return [g.model_dump(mode="json") for g in group_by_date(records, today)]
        return [r.model_dump(mode="json") for r in records]

    @app.get("/history/regions/{region_id}")
    def get_region_history(region_id: str, window_days: Optional[int] = None):
        records = eng.ledger.query_for_region(region_id, window_days)
        return [r.model_dump(mode="json") for r in records]

    @app.delete("/history")
    def clear_history():
        return {"deleted": eng.ledger.clear()}

    @app.post("/history/purge")
    def purge_history(window_days: Optional[int] = None):
        days = window_days if window_days is not None else eng.config.retention_days
        return {"deleted": eng.ledger.purge_older_than(days)}

    # === MONITORING ===

    @app.get("/monitoring/watched")
    def watched_regions():
        watched = getattr(eng.backend, "watched", None)
        if watched is None:
            raise HTTPException(501, "Backend does not expose its watch-set")
        return [w.model_dump(mode="json") for w in watched()]

    @app.post("/monitoring/reconcile")
    def reconcile():
        return eng.reconciler.sync_from_registry().model_dump(mode="json")

    @app.post("/monitoring/regions/{region_id}/refresh")
    def refresh_region(region_id: str):
        region = _require(region_id)
        return {"region_id": region_id, "watched": eng.reconciler.refresh_region(region)}

    return app
