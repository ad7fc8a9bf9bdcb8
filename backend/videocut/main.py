"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from videocut.config import settings
from videocut.api.routes import router
from videocut.pipeline.runner import Pipeline
from videocut.pipeline.segmentation import SegmentationEngine
from videocut.workers.batch import BatchExportOrchestrator

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info(f"Starting {settings.app_name}...")

    pipeline = await Pipeline.create()
    if not pipeline.available:
        logger.warning(f"Video editing disabled: {pipeline.capability.reason}")

    app.state.pipeline = pipeline
    app.state.segmentation = SegmentationEngine()
    app.state.orchestrator = BatchExportOrchestrator(pipeline)
    app.state.orchestrator.start()
    logger.info("Export worker started")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")
    await app.state.orchestrator.shutdown()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Video edit, segmentation and batch export service",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": "1.0.0",
        "api": "/api",
        "docs": "/docs"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "videocut.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
