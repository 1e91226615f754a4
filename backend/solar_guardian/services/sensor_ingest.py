from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.device_map import DeviceMap
from ..core.errors import DeviceNotMapped, InvalidReading, PanelsNotFound, PersistenceFailure
from ..db.upsert import upsert
from ..models.panel import Panel
from ..models.power_generation import PowerGeneration
from ..schemas.common import SensorReadingIn
from .registry import record_reading
from .status import StatusThresholds, classify_panel, per_panel_voltage

logger = logging.getLogger("solar_guardian.sensors")

REQUIRED_FIELDS_MESSAGE = "Missing required fields: device_id, voltage, current, power"


def _parse_number(value: Any) -> float:
    if isinstance(value, bool):
        return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value)
        except ValueError:
            return math.nan
    return math.nan


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise InvalidReading("timestamp must be an ISO-8601 string")
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise InvalidReading(f"Invalid timestamp: {value}") from exc
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def parse_sensor_payload(body: Any) -> SensorReadingIn:
    if not isinstance(body, dict):
        raise InvalidReading(REQUIRED_FIELDS_MESSAGE)
    device_id = body.get("device_id")
    voltage = _parse_number(body.get("voltage"))
    current = _parse_number(body.get("current"))
    power = _parse_number(body.get("power"))
    if (
        not isinstance(device_id, str)
        or not device_id.strip()
        or not all(math.isfinite(v) for v in (voltage, current, power))
    ):
        raise InvalidReading(REQUIRED_FIELDS_MESSAGE)
    return SensorReadingIn(
        device_id=device_id.strip(),
        voltage=voltage,
        current=current,
        power=power,
        timestamp=_parse_timestamp(body.get("timestamp")),
    )


def ingest_sensor_reading(
    db: Session,
    device_map: DeviceMap,
    reading: SensorReadingIn,
    thresholds: Optional[StatusThresholds] = None,
    received_at: Optional[datetime] = None,
) -> dict:
    """Persist one ESP32 reading and push its per-panel share onto the panel rows.

    Everything is written in one transaction: the device snapshot, the
    reading, every mapped panel and the generation point either all land or
    none do.

    Liveness always follows the server clock (``received_at``). A client
    ``timestamp`` only dates the stored reading and generation point, and one
    further ahead than the online window is rejected.
    """
    thresholds = thresholds or StatusThresholds.from_settings()
    received_at = received_at or datetime.utcnow()
    max_skew = timedelta(seconds=settings.DEVICE_ONLINE_THRESHOLD_SECONDS)
    if reading.timestamp and reading.timestamp - received_at > max_skew:
        raise InvalidReading(f"timestamp {reading.timestamp.isoformat()} is in the future")
    if reading.device_id not in device_map:
        raise DeviceNotMapped(reading.device_id)

    panel_ids = device_map.panels_for(reading.device_id)
    panels = db.query(Panel).filter(Panel.panel_id.in_(panel_ids)).order_by(Panel.panel_id).all()
    if not panels:
        raise PanelsNotFound(f"Panels not found: {', '.join(panel_ids)}")

    recorded_at = reading.timestamp or received_at
    panel_count = device_map.panel_count(reading.device_id)
    voltage_per_panel = per_panel_voltage(reading.voltage, panel_count)
    power_per_panel_w = reading.power / panel_count / 1000

    try:
        record_reading(
            db,
            device_map,
            reading.device_id,
            reading.voltage,
            reading.current,
            reading.power,
            recorded_at,
            seen_at=received_at,
        )

        status = classify_panel(True, voltage_per_panel, power_per_panel_w, thresholds)
        updated = []
        for panel in panels:
            efficiency = (power_per_panel_w / panel.max_output) * 100 if panel.max_output > 0 else 0.0
            panel.current_output = power_per_panel_w
            panel.efficiency = min(100.0, efficiency)
            panel.status = status
            panel.last_checked = received_at
            updated.append(panel)
        db.flush()

        generation_w = db.query(func.sum(Panel.current_output)).scalar() or 0.0
        upsert(db, PowerGeneration, "timestamp", {"timestamp": recorded_at, "value": generation_w / 1000})
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to store reading from %s", reading.device_id)
        raise PersistenceFailure(f"Failed to update sensor data: {exc.__class__.__name__}") from exc

    logger.info(
        "Reading from %s: %.2fV %.1fmA %.1fmW -> %d panels %s",
        reading.device_id, reading.voltage, reading.current, reading.power, len(updated), status,
    )
    return {
        "success": True,
        "message": f"{len(updated)} panels updated from {reading.device_id}",
        "device": reading.device_id,
        "panelCount": panel_count,
        "totalInput": {
            "voltage": reading.voltage,
            "currentMa": reading.current,
            "powerMw": reading.power,
        },
        "perPanel": {
            "voltage": voltage_per_panel,
            "currentMa": reading.current,
            "powerW": power_per_panel_w,
        },
        "panels": [
            {
                "id": p.id,
                "panelId": p.panel_id,
                "currentOutput": p.current_output,
                "efficiency": p.efficiency,
                "status": p.status,
            }
            for p in updated
        ],
    }
