from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.device_map import DeviceMap
from ..core.errors import DeviceNotMapped
from ..db.upsert import upsert
from ..models.device import Device
from ..models.reading import Reading


def record_reading(
    db: Session,
    device_map: DeviceMap,
    device_id: str,
    voltage: float,
    current_ma: float,
    power_mw: float,
    recorded_at: datetime,
    seen_at: Optional[datetime] = None,
) -> Reading:
    """Upsert the device's latest snapshot and append one reading.

    ``seen_at`` is the server receive time that drives liveness; it defaults
    to ``recorded_at``. The caller owns the transaction; nothing is committed
    here.
    """
    if device_id not in device_map:
        raise DeviceNotMapped(device_id)

    upsert(
        db,
        Device,
        "device_id",
        {
            "device_id": device_id,
            "last_seen_at": seen_at or recorded_at,
            "latest_voltage": voltage,
            "latest_current_ma": current_ma,
            "latest_power_mw": power_mw,
        },
    )
    device = (
        db.query(Device)
        .populate_existing()
        .filter(Device.device_id == device_id)
        .one()
    )
    reading = Reading(
        device_ref_id=device.id,
        voltage=voltage,
        current_ma=current_ma,
        power_mw=power_mw,
        recorded_at=recorded_at,
    )
    db.add(reading)
    return reading


def get_devices(db: Session, device_ids: Iterable[str]) -> List[Device]:
    ids = list(device_ids)
    if not ids:
        return []
    return db.query(Device).filter(Device.device_id.in_(ids)).order_by(Device.device_id).all()


def get_readings(db: Session, since: datetime, device_ids: Iterable[str]) -> List[dict]:
    ids = list(device_ids)
    if not ids:
        return []
    rows = (
        db.query(Device.device_id, Reading.recorded_at, Reading.voltage, Reading.current_ma, Reading.power_mw)
        .select_from(Reading)
        .join(Reading.device)
        .filter(Reading.recorded_at >= since, Device.device_id.in_(ids))
        .order_by(Reading.recorded_at.asc(), Reading.id.asc())
        .all()
    )
    return [
        {
            "device_id": row.device_id,
            "recorded_at": row.recorded_at,
            "voltage": row.voltage,
            "current_ma": row.current_ma,
            "power_mw": row.power_mw,
        }
        for row in rows
    ]


def get_device_readings(db: Session, device_id: str, limit: int) -> List[Reading]:
    q = (
        db.query(Reading)
        .join(Reading.device)
        .filter(Device.device_id == device_id)
        .order_by(Reading.recorded_at.desc(), Reading.id.desc())
        .limit(limit)
    )
    return list(reversed(q.all()))


def reading_counts(db: Session, device_ids: Iterable[str]) -> dict[str, int]:
    ids = list(device_ids)
    if not ids:
        return {}
    rows = (
        db.query(Device.device_id, func.count(Reading.id))
        .outerjoin(Reading, Reading.device_ref_id == Device.id)
        .filter(Device.device_id.in_(ids))
        .group_by(Device.device_id)
        .all()
    )
    return {device_id: count for device_id, count in rows}
