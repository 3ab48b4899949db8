"""FastAPI application for the platform package installer."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
import uvicorn

from pkginstaller.api.routes import router
from pkginstaller.config import get_settings
from pkginstaller.utils.logging import setup_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown hooks.

    Startup:
    - Initialize logger
    - Create the status and unpack directories

    Shutdown:
    - Log shutdown message
    """
    settings = get_settings()
    logger = setup_logger("pkginstaller", settings.log_file, level=settings.log_level)
    logger.info("Package installer starting up...")

    for directory in (settings.state_dir, settings.unpack_dir):
        try:
            directory.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Ensured directory exists: {directory}")
        except OSError as e:
            logger.warning(f"Cannot create directory {directory}: {e}")

    logger.info(f"Package installer ready on port {settings.port}")

    yield

    logger.info("Package installer shutting down...")


app = FastAPI(
    title="Platform Package Installer",
    description="Installs platform images into the cluster image registry",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "pkginstaller", "version": "1.0.0"}


def main():
    """Main entry point for running the server."""
    settings = get_settings()
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    main()
