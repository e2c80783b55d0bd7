"""Main application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager

# Configure logging FIRST, before any other imports
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)

# Reduce noise from third-party libraries (must be set before importing them)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine.Engine").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from sentinel import __version__
from sentinel.api import router
from sentinel.config import get_settings
from sentinel.runtime import Runtime

# Startup timeout in seconds
STARTUP_TIMEOUT = 120

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    logger.info("Starting candle sentinel...")
    logger.info(f"Storage: {'in-memory' if settings.uses_memory_store else 'PostgreSQL'}")
    logger.info(f"Volume filter: {'ON' if settings.require_volume_spike else 'OFF'}")

    runtime = Runtime(settings)
    try:
        await asyncio.wait_for(runtime.start(), timeout=STARTUP_TIMEOUT)
    except asyncio.TimeoutError:
        await runtime.stop()
        raise RuntimeError(f"Startup timed out after {STARTUP_TIMEOUT}s")
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        await runtime.stop()
        raise  # Re-raise to prevent app from starting in broken state

    app.state.runtime = runtime
    yield

    # Shutdown
    logger.info("Shutting down...")
    app.state.runtime = None
    await runtime.stop()
    logger.info("Shutdown complete")


# Create FastAPI app with orjson for faster JSON serialization
app = FastAPI(
    title="Candle Sentinel",
    description="Live candle aggregation and EMA/RSI signal service",
    version=__version__,
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include REST routes
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Candle Sentinel",
        "version": __version__,
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


def main():
    """Run the application."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "sentinel.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
