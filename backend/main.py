import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse

from .config import settings
from .database import init_db
from .deletions import start_sweeper, stop_sweeper
from .logger import setup_logger
from .routes import api_router
from .storage import open_stored

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logger(settings.log_level, settings.log_dir)
    init_db()  # Create tables
    start_sweeper(settings.deletion_sweep_interval)
    logger.info("Weighbridge API started (database: %s)", settings.database_url.split("://", 1)[0])
    try:
        yield
    finally:
        await stop_sweeper()


app = FastAPI(
    title="Weighbridge API",
    description="Weighbridge tickets, SAD declarations, outgate and reporting back office.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
def health_check():
    return {"status": "running"}


@app.get("/api/files")
def download_file(path: str = Query(..., description="Stored path returned by an upload")) -> FileResponse:
    target = open_stored(path)
    return FileResponse(target, filename=target.name)


app.include_router(api_router, prefix="/api")
