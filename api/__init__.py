"""REST API module for the best orders service.

This module provides HTTP endpoints for:
- Enqueueing order update triggers from producers running elsewhere
- Inspecting queued jobs and queue depth

When background work is enabled, the worker pool and queue cleaner run inside
the API process as well.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from config import settings_conf
from database import init_db, close as db_close
from order_updates import OrderUpdatesService

logger = logging.getLogger(__name__)

# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Initializing API...")
    pool = await init_db(settings_conf['db_url'])
    service = OrderUpdatesService(pool, settings_conf)
    service.start()
    app.state.order_updates = service

    yield

    logger.info("Shutting down API...")
    await service.stop()
    await db_close()

# Create FastAPI app
app = FastAPI(
    title="Best Orders API",
    description="Order update intake for the best-order cache",
    version="1.0.0",
    lifespan=lifespan
)

from .order_updates import router as order_updates_router

app.include_router(order_updates_router)
