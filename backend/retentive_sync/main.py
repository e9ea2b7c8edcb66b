import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from . import __version__
from .config import Settings, get_settings
from .context import SyncContext, close_context, get_context
from .data_routes import router as data_router
from .logging_config import configure_logging
from .sync_routes import router as sync_router


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    await close_context()


app = FastAPI(title="Retentive Sync Bridge", version=__version__, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(sync_router)
app.include_router(data_router)

settings_snapshot = get_settings()
logger.info("Local store: %s", settings_snapshot.database_url)
logger.info("Remote store configured: %s", bool(settings_snapshot.remote_url))


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "mode": "local-first"}


@app.get("/healthz/database")
def database_health(context: SyncContext = Depends(get_context)) -> Dict[str, Any]:
    try:
        with context.db_engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Local store health check failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {
        "status": "ok",
        "database": context.db_engine.url.render_as_string(hide_password=True),
        "pending_operations": context.queue.pending_count(),
    }
