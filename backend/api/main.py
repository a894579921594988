from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from backend.core.config import settings
from backend.core.db import init_db, now_ms
from backend.core.hub import get_hub
from backend.core.network import local_ip
from backend.core.worker import init_worker, stop_scheduler, get_scheduler_status
from backend.api.routers import sessions_router, relay_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown."""
    # Startup
    init_db()
    try:
        init_worker()
    except Exception as e:
        logger.warning(f"Failed to start worker: {e}")

    yield  # Application runs here

    # Shutdown
    await get_hub().close()
    stop_scheduler()


app = FastAPI(title="Tally Scan Sessions", version=settings.VERSION, lifespan=lifespan)

# CORS - scanners are phones on the local network, so any origin by default
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials="*" not in settings.ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions_router)
app.include_router(relay_router)


@app.get("/api/health")
def health_check():
    return {"status": "ok", "timestamp": now_ms(), "version": settings.VERSION}


@app.get("/api/ip")
def lan_address():
    """Address scanners on the local network should use to reach this server."""
    return {"ip": local_ip()}


@app.get("/api/worker/status")
def worker_status():
    """Background purge job status."""
    return get_scheduler_status()
