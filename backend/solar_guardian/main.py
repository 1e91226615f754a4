import logging
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .core.config import settings
from .core.errors import IngestionError
from .db.session import init_db, SessionLocal
from .db.seed import seed_panels
from .api import panels, devices, solar_scans, realtime
from .services.broadcast import Broadcaster

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("solar_guardian")

app = FastAPI(title="Solar Guardian API")
app.state.broadcaster = Broadcaster(settings.PI_RESULTS_BACKLOG)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",")],
    allow_credentials=True, allow_methods=["*"], allow_headers=["*"],
)

app.include_router(panels.router)
app.include_router(devices.router)
app.include_router(solar_scans.router)
app.include_router(realtime.router)


@app.exception_handler(IngestionError)
async def ingestion_error_handler(request: Request, exc: IngestionError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


@app.on_event("startup")
def on_startup():
    init_db()
    if settings.SEED_PANELS:
        db = SessionLocal()
        try:
            added = seed_panels(db)
        finally:
            db.close()
        if added:
            logger.info("Seeded %d panels", added)
    logger.info("Solar Guardian API ready (%d mapped devices)", len(settings.DEVICE_PANEL_MAP))

@app.get("/health")
def health(): return {"status": "ok", "timestamp": datetime.utcnow().isoformat()}
