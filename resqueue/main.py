import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from resqueue.settings import settings
from resqueue.api.deps import close_context
from resqueue.api.v1.jobs import router as jobs_router
from resqueue.api.v1.workers import router as workers_router
from resqueue.api.v1.admin import router as admin_router
from resqueue.api.v1.metrics import router as metrics_router

logger = logging.getLogger("uvicorn")

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"{settings.PROJECT_NAME} using {settings.STORE_BACKEND} store")
    yield
    # Shutdown
    close_context()

app = FastAPI(
    title=settings.PROJECT_NAME,
    lifespan=lifespan
)

app.include_router(jobs_router, prefix="/api/v1/jobs", tags=["jobs"])
app.include_router(workers_router, prefix="/api/v1/workers", tags=["workers"])
app.include_router(admin_router, prefix="/api/v1/admin", tags=["admin"])
app.include_router(metrics_router, tags=["metrics"])

@app.get("/health")
async def health():
    return {"status": "ok"}

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000, log_level=settings.LOG_LEVEL.lower())
