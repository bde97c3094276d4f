"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.config import settings
from app.database import engine, get_db
from app.models import Base

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, start background workers."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Return any jobs stuck in "processing" from a previous crash to the queue
    from app.services.job_worker import recover_stale_jobs, worker_loop
    await recover_stale_jobs()

    worker_tasks = []
    if settings.WORKER_ENABLED:
        worker_tasks = [
            asyncio.create_task(worker_loop(f"worker-{i}"))
            for i in range(max(settings.WORKER_CONCURRENCY, 1))
        ]
        logger.info(f"Started {len(worker_tasks)} job worker(s)")

    yield

    # Cleanup
    for task in worker_tasks:
        task.cancel()
    await asyncio.gather(*worker_tasks, return_exceptions=True)
    await engine.dispose()


app = FastAPI(
    title="Campus Events API",
    version="1.0.0",
    description="Event check-in, attendance workflow and certificate job queue.",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
async def health_check():
    """Verify API and database connectivity."""
    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected"}
    except Exception as e:
        return {"status": "error", "database": str(e)}


# Register routers
from app.routes.jobs import router as jobs_router
from app.routes.credentials import router as credentials_router
from app.routes.attendance import router as attendance_router
from app.routes.events import router as events_router
from app.routes.surveys import router as surveys_router
from app.routes.certificates import router as certificates_router
app.include_router(jobs_router)
app.include_router(credentials_router)
app.include_router(attendance_router)
app.include_router(events_router)
app.include_router(surveys_router)
app.include_router(certificates_router)
