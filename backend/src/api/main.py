"""FastAPI application main entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

load_dotenv()

from .middleware import register_error_handlers
from .routes import maps
from ..services.config import get_config
from ..services.database import init_database

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler to run startup tasks."""
    config = get_config()
    logger.info("Running startup: initializing database...")
    init_database(config.db_path)
    logger.info(f"Startup complete: database ready at {config.db_path}")
    yield


app = FastAPI(
    title="Mind Map AI Engine",
    description="Generate, expand, regenerate and summarize mind maps with LLM providers",
    version="0.1.0",
    lifespan=lifespan,
)

register_error_handlers(app)

app.include_router(maps.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


__all__ = ["app"]
