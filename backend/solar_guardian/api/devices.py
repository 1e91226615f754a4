from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from ..core.device_map import DeviceMap, get_device_map
from ..db.session import get_db
from ..models.device import Device
from ..schemas.common import DeviceOut, ReadingOut
from ..services.registry import get_devices, get_device_readings
from typing import List

router = APIRouter(prefix="/api/devices", tags=["devices"])

@router.get("/", response_model=List[DeviceOut])
def list_devices(db: Session = Depends(get_db), device_map: DeviceMap = Depends(get_device_map)):
    return get_devices(db, device_map.device_ids)


@router.get("/{device_id}/readings", response_model=List[ReadingOut])
def device_readings(device_id: str, limit: int = 50, db: Session = Depends(get_db)):
    limit = max(1, min(limit, 500))
    readings = get_device_readings(db, device_id, limit)
    if not readings:
        exists = db.query(Device.id).filter(Device.device_id == device_id).first()
        if not exists:
            raise HTTPException(status_code=404, detail="Device not found")
    return readings
