import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ..db.session import SessionLocal
from ..services.broadcast import Broadcaster, get_broadcaster
from ..services.vision_ingest import VisionIngestor, get_vision_ingestor

router = APIRouter(tags=["realtime"])
logger = logging.getLogger("solar_guardian.realtime")

PI_ANALYSIS_RESULT = "pi_analysis_result"
PI_ANALYSIS_RECEIVED = "pi-analysis-received"


async def _handle_event(websocket: WebSocket, ingestor: VisionIngestor, raw: str) -> None:
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        await websocket.send_json({"event": PI_ANALYSIS_RECEIVED, "data": {"success": False, "error": "Malformed message"}})
        return
    if not isinstance(message, dict) or message.get("event") != PI_ANALYSIS_RESULT:
        return

    db = SessionLocal()
    try:
        ack = await ingestor.ingest(db, message.get("data"))
    finally:
        db.close()
    await websocket.send_json({"event": PI_ANALYSIS_RECEIVED, "data": ack})


@router.websocket("/ws")
async def ws_endpoint(
    websocket: WebSocket,
    broadcaster: Broadcaster = Depends(get_broadcaster),
    ingestor: VisionIngestor = Depends(get_vision_ingestor),
):
    """Dashboards observe here; the Pi submits ``pi_analysis_result`` events on the same channel."""
    try:
        await broadcaster.connect(websocket)
        logger.info("Client connected (%d observers)", broadcaster.client_count)
        while True:
            await _handle_event(websocket, ingestor, await websocket.receive_text())
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(websocket)
        logger.info("Client disconnected (%d observers)", broadcaster.client_count)


@router.get("/api/pi-results")
def pi_results(broadcaster: Broadcaster = Depends(get_broadcaster)):
    results = broadcaster.backlog()
    return {"total": len(results), "results": results}


@router.delete("/api/pi-results/{result_id}")
def delete_pi_result(result_id: str, broadcaster: Broadcaster = Depends(get_broadcaster)):
    return {"success": True, "removed": broadcaster.remove(result_id)}
