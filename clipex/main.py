"""Clipex render service - FastAPI main application.

Renders timed template compositions (video, image, text and audio blocks
with animations and burned-in subtitles) into MP4 files with ffmpeg.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from loguru import logger

from clipex import __version__
from clipex.config import settings
from clipex.api import (
    render_router,
    upload_router,
    set_render_supervisor,
    set_job_store,
    set_uploads_dir,
)
from clipex.services.job_store import JobStore, start_eviction_loop
from clipex.services.record_reporter import RecordReporter
from clipex.services.render_supervisor import RenderSupervisor
from clipex.workers.export import ExportWorker
from clipex.workers.fetch import RemoteFetcher


# Services
job_store: JobStore = None
record_reporter: RecordReporter = None
render_supervisor: RenderSupervisor = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    global job_store, record_reporter, render_supervisor

    logger.info(f"Starting Clipex render service v{__version__}")
    logger.info(f"Data directory: {settings.data_dir}")

    job_store = JobStore(retention_seconds=settings.job_retention_seconds)
    record_reporter = RecordReporter(
        base_url=settings.records_url,
        api_key=settings.records_api_key,
    )
    render_supervisor = RenderSupervisor(
        store=job_store,
        fetcher=RemoteFetcher(
            temp_dir=settings.temp_dir,
            timeout=settings.fetch_timeout,
            max_redirects=settings.max_redirects,
        ),
        exporter=ExportWorker(
            ffmpeg_path=settings.ffmpeg_path,
            preset=settings.ffmpeg_preset,
            timeout_floor=settings.export_timeout_floor,
            timeout_per_second=settings.export_timeout_per_second,
        ),
        renders_dir=settings.renders_dir,
        uploads_dir=settings.uploads_dir,
        reporter=record_reporter,
        max_words=settings.subtitle_max_words,
        font_file=settings.font_file,
    )

    set_job_store(job_store)
    set_render_supervisor(render_supervisor)
    set_uploads_dir(settings.uploads_dir)

    if not settings.render_secret:
        logger.warning("No render secret configured, /render is open")
    if record_reporter.enabled:
        logger.info(f"Render records reported to {settings.records_url}")

    eviction_task = start_eviction_loop(job_store, settings.eviction_interval_seconds)

    yield

    # Cleanup
    eviction_task.cancel()
    try:
        await eviction_task
    except asyncio.CancelledError:
        pass
    await record_reporter.close()
    logger.info("Shutting down Clipex render service")


app = FastAPI(
    title="Clipex Render",
    description="Template composition renderer: timeline blocks to H.264 MP4",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware for the editor front-end
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(render_router)
app.include_router(upload_router)

# Uploaded sources and finished renders, served by filename
app.mount("/uploads", StaticFiles(directory=settings.uploads_dir), name="uploads")
app.mount("/renders", StaticFiles(directory=settings.renders_dir), name="renders")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Clipex Render",
        "version": __version__,
        "status": "running",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "clipex-render",
        "timestamp": datetime.now().isoformat(),
        "jobs": job_store.get_stats() if job_store else {"total": 0, "by_status": {}},
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "clipex.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
