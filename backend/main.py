"""
Pixel Blueprint - Python Backend
FastAPI server for image-to-blueprint extraction, verification and export.
"""

import argparse
import asyncio
from contextlib import asynccontextmanager
from typing import Dict

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from config import API_HOST, API_PORT, DATA_DIR
from logging_config import get_api_logger
from routers import blueprint
from services.progress_manager import get_progress_manager

logger = get_api_logger()

# Global progress manager for WebSocket updates
progress_manager = get_progress_manager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    logger.info("Starting Pixel Blueprint Backend...")

    (DATA_DIR / "blueprints").mkdir(parents=True, exist_ok=True)
    logger.info("Data directory: %s", DATA_DIR.absolute())
    logger.info("Backend ready!")

    yield

    logger.info("Shutting down Pixel Blueprint Backend...")


app = FastAPI(
    title="Pixel Blueprint API",
    description="Backend API for pixel-accurate UI blueprint reconstruction",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware for the desktop shell
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for local development
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(blueprint.router, prefix="/api/blueprint", tags=["Blueprint"])


@app.get("/health")
async def health_check() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "service": "pixel-blueprint"}


@app.websocket("/ws/progress")
async def websocket_progress(websocket: WebSocket):
    """WebSocket endpoint for real-time scan progress."""
    await websocket.accept()
    progress_manager.add_client(websocket)

    try:
        while True:
            # Keep connection alive
            await asyncio.sleep(1)
    except WebSocketDisconnect:
        progress_manager.remove_client(websocket)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Pixel Blueprint API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }


def main():
    """Main entry point for the backend server."""
    parser = argparse.ArgumentParser(description="Pixel Blueprint Backend")
    parser.add_argument("--host", default=API_HOST, help="Host to bind to")
    parser.add_argument("--port", type=int, default=API_PORT, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()

    uvicorn.run(
        "main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
