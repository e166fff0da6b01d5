"""AI Music Maker - FastAPI main application.

Generation backend: provider submission, polling, media archiving and cleanup.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from aimm import __version__
from aimm.config import settings
from aimm.api import (
    admin_router,
    health_router,
    jobs_router,
    tracks_router,
    set_cleanup_service,
    set_health_job_queue,
    set_job_manager,
    set_job_queue,
    set_jobs_job_manager,
    set_jobs_track_manager,
    set_track_manager,
)
from aimm.providers import get_active_provider
from aimm.services.cleanup import CleanupService, start_background_cleanup
from aimm.services.job_manager import JobManager
from aimm.services.queue import JobQueue
from aimm.services.storage import create_storage
from aimm.services.tracing import TracingService
from aimm.services.track_manager import TrackManager
from aimm.workers.download import DownloadWorker
from aimm.workers.generate import GenerateWorker


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"Starting AI Music Maker v{__version__}")
    logger.info(f"Data directory: {settings.data_dir}")

    # Managers
    job_manager = JobManager(jobs_dir=settings.jobs_dir)
    track_manager = TrackManager(
        tracks_dir=settings.tracks_dir,
        retention_days=settings.track_retention_days,
        job_manager=job_manager,
    )
    logger.info(
        f"Initialized managers: {track_manager.get_stats()['total']} tracks, "
        f"{job_manager.get_stats()['total']} jobs"
    )

    # Collaborators
    storage = create_storage(settings)
    tracing = TracingService.from_settings(settings)
    provider = get_active_provider(settings)
    job_queue = JobQueue(
        max_concurrent=settings.max_concurrent_jobs,
        queue_dir=settings.queue_dir,
    )

    # Workers
    generate_worker = GenerateWorker(
        job_manager=job_manager,
        track_manager=track_manager,
        provider=provider,
        storage=storage,
        queue=job_queue,
        tracing=tracing,
    )
    download_worker = DownloadWorker(track_manager=track_manager, storage=storage)
    job_queue.register("generate", generate_worker.handle)
    job_queue.register("download", download_worker.handle)

    cleanup_service = CleanupService(track_manager=track_manager, storage=storage)

    # Set API module dependencies
    set_track_manager(track_manager)
    set_job_manager(job_manager)
    set_job_queue(job_queue)
    set_jobs_job_manager(job_manager)
    set_jobs_track_manager(track_manager)
    set_cleanup_service(cleanup_service)
    set_health_job_queue(job_queue)

    await job_queue.start()

    # Start background cleanup task if enabled
    cleanup_task = None
    if settings.cleanup_enabled:
        cleanup_task = start_background_cleanup(
            cleanup_service,
            interval_hours=settings.cleanup_interval_hours,
        )
        logger.info(
            f"Background cleanup enabled: retention={settings.track_retention_days} days, "
            f"every {settings.cleanup_interval_hours}h"
        )

    yield

    # Cleanup
    if cleanup_task:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass
    await job_queue.stop()
    await provider.close()
    await storage.close()
    tracing.shutdown()
    logger.info("Shutting down AI Music Maker")


app = FastAPI(
    title="AI Music Maker",
    description="Asynchronous music generation pipeline with A/B variants",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(tracks_router)
app.include_router(jobs_router)
app.include_router(admin_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "AI Music Maker",
        "version": __version__,
        "status": "running",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "aimm.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
