from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.device_map import DeviceMap, get_device_map
from ..db.session import get_db
from ..models.panel import Panel
from ..services.live_status import build_live_status, overlay_panels
from ..services.registry import get_devices, reading_counts
from ..services.sensor_ingest import ingest_sensor_reading, parse_sensor_payload
from ..services.status import PANEL_STATUSES

router = APIRouter(prefix="/api/panels", tags=["panels"])


def _ordered(q):
    return q.order_by(Panel.zone.asc(), Panel.row.asc(), Panel.column.asc())


@router.get("/")
def list_panels(
    status: Optional[str] = None,
    zone: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    device_map: DeviceMap = Depends(get_device_map),
):
    q = db.query(Panel)
    if zone:
        q = q.filter(Panel.zone == zone)
    if status in PANEL_STATUSES:
        q = q.filter(Panel.status == status)
    if search and search.strip():
        q = q.filter(Panel.panel_id.ilike(f"%{search.strip()}%"))
    return overlay_panels(db, device_map, _ordered(q).all(), datetime.utcnow())


@router.get("/stats")
def panel_stats(db: Session = Depends(get_db)):
    by_status = dict(db.query(Panel.status, func.count(Panel.id)).group_by(Panel.status).all())
    total, current_gen, max_capacity = db.query(
        func.count(Panel.id), func.sum(Panel.current_output), func.sum(Panel.max_output)
    ).one()
    avg_efficiency = (
        db.query(func.avg(Panel.efficiency)).filter(Panel.status != "offline").scalar() or 0.0
    )
    return {
        "totalPanels": total or 0,
        "healthyPanels": by_status.get("healthy", 0),
        "warningPanels": by_status.get("warning", 0),
        "faultPanels": by_status.get("fault", 0),
        "offlinePanels": by_status.get("offline", 0),
        "currentGeneration": (current_gen or 0.0) / 1000,
        "maxCapacity": (max_capacity or 0.0) / 1000,
        "efficiency": avg_efficiency,
    }


@router.get("/live")
def live_panels(db: Session = Depends(get_db), device_map: DeviceMap = Depends(get_device_map)):
    return overlay_panels(db, device_map, _ordered(db.query(Panel)).all(), datetime.utcnow())


@router.get("/live-status")
def live_status(db: Session = Depends(get_db), device_map: DeviceMap = Depends(get_device_map)):
    return build_live_status(db, device_map, datetime.utcnow())


@router.get("/debug/devices")
def debug_devices(db: Session = Depends(get_db), device_map: DeviceMap = Depends(get_device_map)):
    devices = get_devices(db, device_map.device_ids)
    counts = reading_counts(db, device_map.device_ids)
    return {
        "setup": {
            "type": "Panels in series per ESP32",
            "description": "Each ESP32 measures one series string through a single sensor",
            "dataDistribution": "Voltage/n, current shared, power/n per panel",
        },
        "deviceMapping": {d: ", ".join(p) for d, p in device_map.as_dict().items()},
        "devices": [
            {
                "device": d.device_id,
                "panels": device_map.panels_for(d.device_id),
                "lastSeenAt": d.last_seen_at.isoformat() if d.last_seen_at else None,
                "latestVoltage": d.latest_voltage,
                "latestCurrentMa": d.latest_current_ma,
                "latestPowerMw": d.latest_power_mw,
                "readingCount": counts.get(d.device_id, 0),
            }
            for d in devices
        ],
    }


@router.get("/zone/{zone_name}")
def zone_panels(zone_name: str, db: Session = Depends(get_db), device_map: DeviceMap = Depends(get_device_map)):
    q = db.query(Panel).filter(Panel.zone == zone_name).order_by(Panel.row.asc(), Panel.column.asc())
    return overlay_panels(db, device_map, q.all(), datetime.utcnow())


@router.post("/sensor-update")
def sensor_update(
    body: Any = Body(default=None),
    db: Session = Depends(get_db),
    device_map: DeviceMap = Depends(get_device_map),
):
    reading = parse_sensor_payload(body)
    return ingest_sensor_reading(db, device_map, reading)


@router.get("/{panel_id}")
def get_panel(panel_id: str, db: Session = Depends(get_db), device_map: DeviceMap = Depends(get_device_map)):
    panel = db.query(Panel).filter(Panel.panel_id == panel_id).first()
    if not panel:
        raise HTTPException(status_code=404, detail="Panel not found")
    [item] = overlay_panels(db, device_map, [panel], datetime.utcnow())
    return item
