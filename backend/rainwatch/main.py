import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rainwatch.config import settings
from rainwatch.database import init_db

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    from rainwatch.tasks.scheduler import start_scheduler, stop_scheduler
    if settings.timer_enabled:
        start_scheduler(settings)
    yield
    stop_scheduler()


app = FastAPI(
    title="Rainwatch",
    description="Multi-source rain probability monitoring with scheduled push notifications",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from rainwatch.routers import cron, notifications  # noqa: E402

app.include_router(cron.router, prefix="/api/v1")
app.include_router(notifications.router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok"}
