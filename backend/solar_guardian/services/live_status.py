from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.device_map import DeviceMap
from ..models.device import Device
from ..models.panel import Panel
from ..schemas.common import PanelOut
from .history import bucket_power_history
from .registry import get_devices, get_readings
from .status import (
    FAULT,
    HEALTHY,
    OFFLINE,
    WARNING,
    StatusThresholds,
    classify_panel,
    is_device_online,
    per_panel_voltage,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def device_label(device_id: str) -> str:
    return device_id.lower().replace("_", "", 1)


def _device_snapshot(
    device_id: str,
    device: Optional[Device],
    panel_count: int,
    now: datetime,
    thresholds: StatusThresholds,
    online_threshold: int,
) -> dict:
    last_seen = device.last_seen_at if device else None
    online = is_device_online(last_seen, now, online_threshold)
    stale_seconds = (
        max(0, math.floor((now - last_seen).total_seconds())) if last_seen else None
    )
    latest_voltage = device.latest_voltage if device else None
    latest_current = device.latest_current_ma if device else None
    latest_power = device.latest_power_mw if device else None
    panel_voltage = (
        per_panel_voltage(latest_voltage, panel_count) if latest_voltage is not None else None
    )
    status = classify_panel(online, panel_voltage, latest_power, thresholds)

    # Offline devices never report their last-known values as current
    return {
        "deviceId": device_id,
        "label": device_label(device_id),
        "online": online,
        "status": status,
        "lastSeenAt": _iso(last_seen),
        "staleSeconds": stale_seconds,
        "voltage": (latest_voltage or 0.0) if online else 0.0,
        "currentMa": (latest_current or 0.0) if online else 0.0,
        "powerMw": (latest_power or 0.0) if online else 0.0,
    }


def _overlay_status(stored: str, snapshot: dict, panel_count: int, thresholds: StatusThresholds) -> str:
    # Live data only demotes: offline when the device is silent, healthy to warning on low voltage
    if not snapshot["online"]:
        return OFFLINE
    if stored == HEALTHY and per_panel_voltage(snapshot["voltage"], panel_count) < thresholds.healthy_voltage:
        return WARNING
    return stored


def _panel_counts(db: Session) -> dict:
    by_status = dict(
        db.query(Panel.status, func.count(Panel.id)).group_by(Panel.status).all()
    )
    return {
        "totalPanels": db.query(func.count(Panel.id)).scalar() or 0,
        "healthyPanels": by_status.get(HEALTHY, 0),
        "warningPanels": by_status.get(WARNING, 0),
        "faultPanels": by_status.get(FAULT, 0),
        "offlinePanels": by_status.get(OFFLINE, 0),
    }


def build_live_status(
    db: Session,
    device_map: DeviceMap,
    now: datetime,
    thresholds: Optional[StatusThresholds] = None,
    online_threshold: Optional[int] = None,
    history_minutes: Optional[int] = None,
) -> dict:
    """Consolidated live view of the fleet. Read-only: no Device or Panel row is touched."""
    thresholds = thresholds or StatusThresholds.from_settings()
    online_threshold = online_threshold or settings.DEVICE_ONLINE_THRESHOLD_SECONDS
    history_minutes = history_minutes or settings.HISTORY_MINUTES

    device_ids = device_map.device_ids
    db_devices = {d.device_id: d for d in get_devices(db, device_ids)}

    devices = [
        _device_snapshot(
            device_id,
            db_devices.get(device_id),
            device_map.panel_count(device_id),
            now,
            thresholds,
            online_threshold,
        )
        for device_id in device_ids
    ]

    reporting = [d for d in db_devices.values() if d.last_seen_at]
    latest_seen = max((d.last_seen_at for d in reporting), default=None)
    online_ids = [d["deviceId"] for d in devices if d["online"]]

    online_power_mw = sum(d["powerMw"] for d in devices if d["online"])
    total_power_mw = sum(d["powerMw"] for d in devices)
    total_voltage = sum(d["voltage"] for d in devices)
    total_current_ma = sum(d["currentMa"] for d in devices)

    max_output_by_panel = dict(
        db.query(Panel.panel_id, Panel.max_output)
        .filter(Panel.panel_id.in_(device_map.panel_ids))
        .all()
    )
    online_max_output_w = sum(
        max_output_by_panel.get(panel_id) or 0.0
        for device_id in online_ids
        for panel_id in device_map.panels_for(device_id)
    )
    if not online_ids or online_max_output_w <= 0:
        efficiency = 0.0
    else:
        efficiency = min(100.0, (online_power_mw / 1000) / online_max_output_w * 100)

    generation_sum, efficiency_avg = db.query(
        func.sum(Panel.current_output), func.avg(Panel.efficiency)
    ).one()

    history = bucket_power_history(
        get_readings(db, now - timedelta(minutes=history_minutes), device_ids),
        online_threshold,
    )

    return {
        **_panel_counts(db),
        "currentGenerationKw": online_power_mw / 1_000_000,
        "avgEfficiency": round(efficiency, 1),
        "panelGenerationKw": (generation_sum or 0.0) / 1000,
        "panelAvgEfficiency": round(efficiency_avg or 0.0, 1),
        "mappedDevices": len(device_ids),
        "reportingDevices": len(reporting),
        "onlineDevices": len(online_ids),
        "latestDeviceSeenAt": _iso(latest_seen),
        "averageVoltage": total_voltage / len(device_ids) if device_ids else 0.0,
        "averageCurrentMa": total_current_ma / len(device_ids) if device_ids else 0.0,
        "totalPowerMw": total_power_mw,
        "devices": devices,
        "powerHistory30s": history,
    }


def overlay_panels(
    db: Session,
    device_map: DeviceMap,
    panels: Iterable[Panel],
    now: datetime,
    thresholds: Optional[StatusThresholds] = None,
    online_threshold: Optional[int] = None,
) -> List[dict]:
    """Panel rows merged with their device's live readings.

    Device-mapped panels whose device is offline read as ``offline`` with zero
    sensor values; panels without a device keep their stored status.
    """
    thresholds = thresholds or StatusThresholds.from_settings()
    online_threshold = online_threshold or settings.DEVICE_ONLINE_THRESHOLD_SECONDS
    panels = list(panels)

    wanted = {device_map.device_for(p.panel_id) for p in panels} - {None}
    db_devices = {d.device_id: d for d in get_devices(db, wanted)}

    result = []
    for panel in panels:
        item = PanelOut.model_validate(panel).model_dump()
        device_id = device_map.device_for(panel.panel_id)
        if device_id is None:
            item.update(
                sensorDeviceId=None,
                sensorLastUpdated=None,
                sensorVoltage=None,
                sensorCurrentMa=None,
                sensorPowerMw=None,
            )
            result.append(item)
            continue

        device = db_devices.get(device_id)
        snapshot = _device_snapshot(
            device_id, device, device_map.panel_count(device_id), now, thresholds, online_threshold
        )
        item.update(
            status=_overlay_status(panel.status, snapshot, device_map.panel_count(device_id), thresholds),
            sensorDeviceId=device_id,
            sensorLastUpdated=snapshot["lastSeenAt"],
            sensorVoltage=snapshot["voltage"],
            sensorCurrentMa=snapshot["currentMa"],
            sensorPowerMw=snapshot["powerMw"],
        )
        result.append(item)
    return result
