"""
Coded Signal API - Main Application Entry Point.

This module initializes and configures the FastAPI application for the Coded
Signal social backend: profiles, posts and their acceptance workflow, chat,
manual payments and the realtime presence channel.

Key Responsibilities:
- Configure logging, create the database tables and build the service
  singletons at startup.
- Reset every persisted `isOnline` flag, since no websocket survives a
  restart.
- Run the background sweep that expires posts past their lifetime.
- Install middleware (correlation IDs, error handling, timing, CORS) and
  mount the routers.
"""

import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import dependencies
from api.auth_endpoints import router as auth_router
from api.chat_endpoints import router as chat_router
from api.health_router import health_router, monitoring_router
from api.payment_endpoints import router as payment_router
from api.post_endpoints import router as post_router
from api.realtime_endpoints import websocket_router
from api.user_endpoints import router as user_router
from core import config
from core.database import create_db_and_tables
from core.logging_config import setup_logging, get_logger
from core.middleware import (
    CorrelationMiddleware,
    ErrorHandlingMiddleware,
    PerformanceMiddleware,
    register_exception_handlers,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    logger = get_logger("api.startup")

    await create_db_and_tables()
    logger.info("Database initialized successfully")

    dependencies.init_services()
    logger.info("Services initialized")

    reset = await dependencies.get_user_service().mark_all_offline()
    logger.info(f"Presence flags reset for {reset} user(s)")

    sweep = asyncio.create_task(
        dependencies.get_post_service().run_expiry_sweep(config.POST_EXPIRY_SWEEP_SECONDS)
    )
    logger.info("Post expiry sweep started")

    logger.info("Service startup completed")
    yield

    # Cleanup on shutdown
    logger.info("Shutting down Coded Signal API")
    sweep.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweep
    logger.info("Cleanup completed")


app = FastAPI(
    title=config.APP_NAME,
    description="Profiles, posts, chat and realtime presence for Coded Signal",
    version=config.APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Added last runs first: correlation wraps error handling and timing
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(PerformanceMiddleware)
app.add_middleware(CorrelationMiddleware)

register_exception_handlers(app)

# Health routers first (no authentication required for monitoring)
app.include_router(health_router)
app.include_router(monitoring_router)

app.include_router(auth_router)
app.include_router(user_router)
app.include_router(post_router)
app.include_router(chat_router)
app.include_router(payment_router)
app.include_router(websocket_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=config.PORT,
        reload=config.DEBUG,
        log_level="info",
    )
