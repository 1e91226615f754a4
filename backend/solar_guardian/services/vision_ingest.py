from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import Depends
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..core.errors import IngestionError, InvalidReading, PersistenceFailure
from ..models.scan import PanelDetection, Scan
from ..schemas.common import PiAnalysisResultIn, ThermalBlock
from .broadcast import NEW_RESULT, Broadcaster, get_broadcaster
from .images import CAPTURES, PANEL_CROPS, ImageStore, get_image_store, sanitize_file_part, timestamp_suffix

logger = logging.getLogger("solar_guardian.vision")

NEW_SOLAR_SCAN = "new-solar-scan"
MISSING_FIELDS_MESSAGE = "Missing required fields (capture_id/report)"


def severity_from_health_score(health_score: float) -> str:
    if health_score < 30:
        return "CRITICAL"
    if health_score < 50:
        return "HIGH"
    if health_score < 75:
        return "MODERATE"
    return "LOW"


def default_risk_score(health_score: float) -> int:
    return max(0, min(100, round(100 - health_score)))


def resolve_thermal(payload: PiAnalysisResultIn) -> ThermalBlock:
    """Single thermal view of the payload: ``thermal`` first, then the legacy ``thermal_stats``."""
    if payload.thermal is not None:
        return payload.thermal
    if payload.thermal_stats is not None:
        return payload.thermal_stats
    return ThermalBlock()


def _failure(message: str) -> dict:
    return {"success": False, "error": message}


def _image_refs(result: dict) -> set:
    refs = {result["main_image_web"], result["thermal_image_web"]}
    for crop in result["panel_crops"]:
        refs.update((crop["web_path"], crop["thermal_web_path"]))
    return refs - {None}


class VisionIngestor:
    """Turns one Raspberry Pi capture into a stored scan plus a dashboard notification.

    The returned ack is the durable outcome for the submitter; fan-out to
    observers is best effort and cannot change it.
    """

    def __init__(self, images: ImageStore, broadcaster: Broadcaster):
        self.images = images
        self.broadcaster = broadcaster

    def _save_crops(self, payload: PiAnalysisResultIn, safe_capture: str, suffix: str) -> list[dict]:
        crops = []
        for index, crop in enumerate(payload.panel_crops):
            panel_number = crop.panel_number or f"P{index + 1}"
            status = crop.status or "UNKNOWN"
            safe_panel = sanitize_file_part(panel_number)
            crops.append({
                "panel_number": panel_number,
                "status": status,
                "has_dust": crop.has_dust if crop.has_dust is not None else status == "DUSTY",
                "web_path": self.images.save(
                    PANEL_CROPS, f"panel_{safe_panel}_cap{safe_capture}_{suffix}.jpg", crop.image_b64
                ),
                "thermal_web_path": self.images.save(
                    PANEL_CROPS, f"thermal_panel_{safe_panel}_cap{safe_capture}_{suffix}.jpg", crop.thermal_image_b64
                ),
                "x1": crop.x1 or 0.0,
                "y1": crop.y1 or 0.0,
                "x2": crop.x2 or 0.0,
                "y2": crop.y2 or 0.0,
            })
        return crops

    def _build_scan(self, payload: PiAnalysisResultIn, received_at: datetime) -> tuple[Scan, dict]:
        capture_id = str(payload.capture_id)
        report = payload.report
        health_score = float(report.health_score or 0)
        priority = report.priority or "NORMAL"
        thermal = resolve_thermal(payload)
        safe_capture = sanitize_file_part(capture_id)
        suffix = timestamp_suffix(received_at)

        main_image = self.images.save(CAPTURES, f"capture_{safe_capture}_{suffix}.jpg", payload.frame_b64)
        thermal_image = self.images.save(CAPTURES, f"thermal_{safe_capture}_{suffix}.jpg", payload.thermal_b64)
        crops = self._save_crops(payload, safe_capture, suffix)

        stats = payload.rgb_stats
        dusty = stats.dusty if stats and stats.dusty is not None else sum(1 for c in crops if c["status"] == "DUSTY")
        clean = stats.clean if stats and stats.clean is not None else sum(1 for c in crops if c["status"] == "CLEAN")
        total = stats.total if stats and stats.total is not None else len(crops)

        severity = thermal.severity or severity_from_health_score(health_score)
        risk_score = thermal.risk_score if thermal.risk_score is not None else default_risk_score(health_score)

        scan = Scan(
            capture_id=capture_id,
            timestamp=received_at,
            priority=priority,
            status="pending",
            risk_score=risk_score,
            severity=severity,
            thermal_min_temp=thermal.min_temp,
            thermal_max_temp=thermal.max_temp,
            thermal_mean_temp=thermal.mean_temp,
            thermal_delta=thermal.delta,
            thermal_image_url=thermal_image,
            rgb_image_url=main_image,
            dusty_panel_count=dusty,
            clean_panel_count=clean,
            total_panels=total,
            device_id=payload.device_id or "raspberry-pi",
            device_name=payload.device_name or "Raspberry Pi Scanner",
            ai_health_score=round(health_score),
            ai_recommendation=report.recommendation,
            ai_summary=report.summary,
            ai_root_cause=report.root_cause,
            ai_impact_assessment=report.impact_assessment,
            ai_timeframe=report.timeframe,
            ai_source=report.source,
            ai_baseline_aware=report.baseline_aware,
            ai_deviation_from_baseline=report.deviation_from_baseline,
            ai_genai_insights=report.genai_insights,
            panel_detections=[
                PanelDetection(
                    panel_number=c["panel_number"],
                    status=c["status"],
                    x1=c["x1"], y1=c["y1"], x2=c["x2"], y2=c["y2"],
                    crop_image_url=c["web_path"],
                    thermal_crop_image_url=c["thermal_web_path"] or thermal_image,
                    fault_type="dust" if c["has_dust"] else None,
                )
                for c in crops
            ],
        )

        result = {
            "capture_id": capture_id,
            "timestamp": received_at.isoformat(),
            "received_at": received_at.isoformat(),
            "report": {
                "health_score": health_score,
                "priority": priority,
                "recommendation": report.recommendation or "",
                "timeframe": report.timeframe or "",
                "summary": report.summary or "",
                "root_cause": report.root_cause or "",
                "impact_assessment": report.impact_assessment or "",
                "source": report.source or "fallback",
                "baseline_aware": bool(report.baseline_aware),
                "deviation_from_baseline": report.deviation_from_baseline or "N/A",
                "genai_insights": report.genai_insights or "",
            },
            "rgb_stats": {"total": total, "clean": clean, "dusty": dusty},
            "main_image_web": main_image,
            "thermal_image_web": thermal_image,
            "thermal": {
                "min_temp": thermal.min_temp,
                "max_temp": thermal.max_temp,
                "mean_temp": thermal.mean_temp,
                "delta": thermal.delta,
                "risk_score": risk_score,
                "severity": severity,
            },
            "panel_crops": crops,
        }
        return scan, result

    async def _notify(self, result: dict) -> None:
        try:
            self.broadcaster.record(result)
            await self.broadcaster.publish(NEW_RESULT, result)
            await self.broadcaster.publish(NEW_SOLAR_SCAN, {"scanId": result["id"], "source": "pi_analysis_result"})
        except Exception as exc:
            logger.warning("Broadcast of scan %s failed: %s", result.get("id"), exc)

    @staticmethod
    def parse(data: Any) -> PiAnalysisResultIn:
        if not isinstance(data, dict) or not data.get("capture_id") or data.get("report") is None:
            raise InvalidReading(MISSING_FIELDS_MESSAGE)
        try:
            return PiAnalysisResultIn.model_validate(data)
        except ValidationError as exc:
            logger.warning("Rejected malformed vision result: %s", exc.errors()[:3])
            raise InvalidReading(f"Invalid payload: {exc.error_count()} validation error(s)") from exc

    def _store(self, db: Session, payload: PiAnalysisResultIn, received_at: datetime) -> tuple[Scan, dict]:
        scan, result = self._build_scan(payload, received_at)
        try:
            if db.query(Scan.id).filter(Scan.capture_id == str(payload.capture_id)).first():
                logger.warning("Capture %s already stored; recording a duplicate scan", payload.capture_id)
            # Detections ride on the scan's cascade: one commit stores all or nothing
            db.add(scan)
            db.commit()
            db.refresh(scan)
        except SQLAlchemyError as exc:
            db.rollback()
            self.images.discard(_image_refs(result))
            logger.exception("Failed to store scan for capture %s", payload.capture_id)
            raise PersistenceFailure(f"Failed to store scan: {exc.__class__.__name__}") from exc
        return scan, {"id": scan.id, **result}

    async def submit(self, db: Session, data: Any, received_at: Optional[datetime] = None) -> dict:
        """Validate, store and announce one vision result; raises ``IngestionError`` on failure.

        Image writes and the commit run in the threadpool.
        """
        payload = self.parse(data)
        received_at = received_at or datetime.utcnow()
        logger.info("Received pi_analysis_result capture_id=%s", payload.capture_id)
        scan, result = await run_in_threadpool(self._store, db, payload, received_at)
        logger.info(
            "Saved scan %s severity=%s risk=%s panels=%d",
            scan.id, scan.severity, scan.risk_score, scan.total_panels,
        )
        await self._notify(result)
        return {"success": True, "scanId": scan.id}

    async def ingest(self, db: Session, data: Any, received_at: Optional[datetime] = None) -> dict:
        """Same as ``submit`` but always returns an ack and never raises."""
        try:
            return await self.submit(db, data, received_at)
        except IngestionError as exc:
            return _failure(exc.message)
        except Exception as exc:
            db.rollback()
            logger.exception("Error processing vision result")
            return _failure(str(exc) or exc.__class__.__name__)


def get_vision_ingestor(
    broadcaster: Broadcaster = Depends(get_broadcaster),
    images: ImageStore = Depends(get_image_store),
) -> VisionIngestor:
    return VisionIngestor(images, broadcaster)
