"""FastAPI application main entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from .middleware import register_error_handlers
from .routes import library, queries
from ..services.config import get_config
from ..services.tree_store import close_tree_store, get_tree_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the library store on startup and flush it on shutdown."""
    logger.info("Running startup: loading query library...")
    store = get_tree_store()
    store.on_persist_error(
        lambda error: logger.error("Library changes are not being saved: %s", error.message)
    )
    logger.info("Startup complete: %d root nodes in library", len(store.forest))
    try:
        yield
    finally:
        logger.info("Shutting down: flushing query library")
        close_tree_store()


app = FastAPI(
    title="Query Library API",
    description="Saved SQL query library with folders and drag-and-drop organization",
    version="0.1.0",
    lifespan=lifespan,
)

config = get_config()

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(queries.router, tags=["queries"])
app.include_router(library.router, tags=["library"])


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


__all__ = ["app"]
