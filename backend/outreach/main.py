"""
FastAPI Application Entry Point
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from outreach.api.v1.routes import api_router
from outreach.core.config import Settings, get_settings
from outreach.core.engine import build_engine
from outreach.core.logging import configure_logging
from outreach.core.validation import validate_backends_on_startup
from outreach.workers.orchestrator_worker import OrchestratorWorker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - startup and shutdown events.

    Startup:
    - Validates backend configuration
    - Builds the engine (storage, audit, executor, orchestrator)
    - Optionally starts the tick loop in-process

    Shutdown:
    - Stops the embedded worker
    - Drains in-flight dispatches and closes connections
    """
    settings: Settings = app.state.settings
    strict_validation = settings.environment == "production"

    # ========================
    # STARTUP
    # ========================
    logger.info("Starting Outreach Engine...")

    try:
        validate_backends_on_startup(settings, strict=strict_validation)
    except RuntimeError as e:
        if strict_validation:
            logger.error(f"Startup failed: {e}")
            raise
        logger.warning(f"Configuration warnings (non-fatal in {settings.environment}): {e}")

    engine = await build_engine(settings)
    app.state.engine = engine

    worker_task: Optional[asyncio.Task] = None
    worker: Optional[OrchestratorWorker] = None
    if settings.embedded_worker:
        worker = OrchestratorWorker(engine)
        worker_task = asyncio.create_task(worker.run())
        logger.info("Embedded orchestrator worker started")

    logger.info("Outreach Engine started successfully")

    yield  # Application is running

    # ========================
    # SHUTDOWN
    # ========================
    logger.info("Shutting down Outreach Engine...")

    if worker is not None and worker_task is not None:
        worker.running = False
        worker_task.cancel()
        await asyncio.gather(worker_task, return_exceptions=True)

    try:
        await engine.close()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")

    logger.info("Outreach Engine shutdown complete")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Outreach Engine",
        description="Multi-stage candidate outreach with human approval gates and rate limits",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.settings = settings

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/")
    async def root():
        return {"message": "Outreach Engine API", "status": "running", "docs": "/docs"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
