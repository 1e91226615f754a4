from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from ..db.session import get_db
from ..models.scan import Scan
from ..schemas.common import ScanAck, ScanOut, ScanStatusUpdate
from ..services.vision_ingest import VisionIngestor, get_vision_ingestor

router = APIRouter(prefix="/api/solar-scans", tags=["solar-scans"])


def _with_detections(db: Session):
    return db.query(Scan).options(selectinload(Scan.panel_detections))


@router.post("/", response_model=ScanAck, status_code=201)
async def create_scan(
    body: Any = Body(default=None),
    db: Session = Depends(get_db),
    ingestor: VisionIngestor = Depends(get_vision_ingestor),
):
    return await ingestor.submit(db, body)


@router.get("/", response_model=List[ScanOut])
def list_scans(status: Optional[str] = None, limit: int = 50, db: Session = Depends(get_db)):
    limit = max(1, min(limit, 200))
    q = _with_detections(db)
    if status:
        q = q.filter(Scan.status == status)
    return q.order_by(Scan.timestamp.desc()).limit(limit).all()


@router.get("/latest", response_model=ScanOut)
def latest_scan(db: Session = Depends(get_db)):
    scan = _with_detections(db).order_by(Scan.timestamp.desc()).first()
    if not scan:
        raise HTTPException(status_code=404, detail="No scans found")
    return scan


@router.get("/stats/summary")
def scan_stats(db: Session = Depends(get_db)):
    by_status = dict(db.query(Scan.status, func.count(Scan.id)).group_by(Scan.status).all())
    by_severity = dict(db.query(Scan.severity, func.count(Scan.id)).group_by(Scan.severity).all())
    return {
        "totalScans": sum(by_status.values()),
        "pendingScans": by_status.get("pending", 0),
        "processedScans": by_status.get("processed", 0),
        "archivedScans": by_status.get("archived", 0),
        "criticalScans": by_severity.get("CRITICAL", 0),
        "highRiskScans": by_severity.get("CRITICAL", 0) + by_severity.get("HIGH", 0),
        "avgThermalDelta": db.query(func.avg(Scan.thermal_delta)).scalar() or 0.0,
    }


@router.get("/{scan_id}", response_model=ScanOut)
def get_scan(scan_id: str, db: Session = Depends(get_db)):
    scan = _with_detections(db).filter(Scan.id == scan_id).first()
    if not scan:
        raise HTTPException(status_code=404, detail="Scan not found")
    return scan


@router.patch("/{scan_id}", response_model=ScanOut)
def update_scan_status(scan_id: str, payload: ScanStatusUpdate, db: Session = Depends(get_db)):
    scan = _with_detections(db).filter(Scan.id == scan_id).first()
    if not scan:
        raise HTTPException(status_code=404, detail="Scan not found")
    scan.status = payload.status
    scan.updated_at = datetime.utcnow()
    db.commit(); db.refresh(scan)
    return scan
