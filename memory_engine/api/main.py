"""Main FastAPI application and server startup."""

from fastapi import Depends, FastAPI
import uvicorn

from memory_engine import __version__
from memory_engine.memory.integrate import MemoryEngine
from memory_engine.telemetry import configure_logging, get_logger

from .memory import close_engine, get_engine
from .memory import router as memory_router
from .schemas import HealthResponse

logger = get_logger(__name__)

app = FastAPI(
    title="Memory Engine API",
    description="Long-term memory ranking, feedback and retention for conversational assistants",
    version=__version__,
)

app.include_router(memory_router, prefix="/api", tags=["memory"])


@app.on_event("startup")
async def startup_event():
    """Configure logging; the engine itself is created on first request."""
    configure_logging()
    logger.info("memory_api_started", version=__version__)


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    await close_engine()


@app.get("/", response_model=dict)
async def root():
    """Root endpoint."""
    return {
        "message": "Memory Engine API is running",
        "version": __version__,
    }


@app.get("/health", response_model=HealthResponse)
async def health(engine: MemoryEngine = Depends(get_engine)):
    """Health check endpoint; probes the remote memory service once."""
    status = await engine.health()
    return HealthResponse(
        status="ok" if status["healthy"] else "degraded",
        backend=status["backend"],
        healthy=status["healthy"],
        failed_queue_size=status["failed_queue_size"],
        last_error=status["last_error"],
    )


def run():
    """Run the development server."""
    uvicorn.run("memory_engine.api.main:app", host="0.0.0.0", port=8000, reload=True)


if __name__ == "__main__":
    run()
