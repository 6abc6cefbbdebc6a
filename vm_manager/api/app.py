"""FastAPI application initialization."""
from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ..config import configure_logging, get_settings
from ..storage import init_db
from ..tasks import get_task_tracker


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    init_db()
    sweeper = asyncio.create_task(
        get_task_tracker().run_sweeper(settings.task_sweep_interval_seconds)
    )
    yield
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper


app = FastAPI(
    title="Vultr VM Manager",
    description="Batch-create Vultr instances and bootstrap them over SSH or WinRM",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
def health_check() -> dict[str, str]:
    return {"status": "healthy"}


# Import and include routers
from .auth_routes import router as auth_router
from .catalog_routes import router as catalog_router
from .instance_routes import router as instance_router
from .task_routes import router as task_router

app.include_router(auth_router)
app.include_router(catalog_router)
app.include_router(instance_router)
app.include_router(task_router)
