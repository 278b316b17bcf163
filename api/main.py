import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from certificates import router as certificates_router
from core.db import ConnectionManager
from core.settings import Settings, load_settings
from ingestion import router as ingestion_router
from maintenance import router as maintenance_router
from maintenance.sweeper import RetentionSweeper

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    # Stray task failures are logged; the server keeps running.
    exc = context.get("exception")
    logger.error("unhandled_async_error message=%s", context.get("message"), exc_info=exc)


def build_runtime(settings: Settings) -> tuple[ConnectionManager, RetentionSweeper]:
    manager = ConnectionManager(settings.database)
    sweeper = RetentionSweeper(
        manager,
        upload_dir=settings.upload_dir,
        record_retention_months=settings.record_retention_months,
        file_retention_days=settings.file_retention_days,
        interval_s=settings.cleanup_interval_s,
    )
    return manager, sweeper


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    configure_logging(settings.log_level)
    asyncio.get_running_loop().set_exception_handler(_log_loop_exception)
    settings.upload_dir.mkdir(parents=True, exist_ok=True)

    manager, sweeper = build_runtime(settings)
    app.state.settings = settings
    app.state.connection_manager = manager
    app.state.sweeper = sweeper

    # Initialize the DB pool once per process; failures leave the service
    # running in database-unavailable mode.
    await manager.start()
    if settings.auto_cleanup:
        sweeper.start()

    try:
        yield
    finally:
        await sweeper.stop()
        await manager.close()


app = FastAPI(lifespan=lifespan)

# Allow local frontend dev server to call this API from the browser.
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(certificates_router.router, tags=["certificates"])
app.include_router(ingestion_router.router, tags=["ingestion"])
app.include_router(maintenance_router.router, tags=["maintenance"])


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_error path=%s", request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error."},
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/")
def root() -> dict:
    return {"message": "certificate registry api"}
