"""
Application entry point with database pool lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from mobile_trust.config import settings
from mobile_trust.db.pool import db_pool
from mobile_trust.features.phone_trust.api.router import (
    phone_trust_exception_handler,
)
from mobile_trust.features.phone_trust.api.router import router as phone_trust_router
from mobile_trust.features.phone_trust.errors import PhoneTrustError
from mobile_trust.infrastructure.observability.logging import (
    get_logger,
    log_request,
    setup_logging,
)
from mobile_trust.routes import health

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool on startup and close it on shutdown."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    try:
        await db_pool.initialize()
    except Exception as e:
        logger.error("Failed to initialize database pool", error=str(e))
        raise

    yield

    logger.info("Application shutting down")
    try:
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))


app = FastAPI(
    title="Mobile Trust",
    description="Phone number trust scoring from Mobile Money evidence",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(phone_trust_router)
app.add_exception_handler(PhoneTrustError, phone_trust_exception_handler)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.time() - start_time) * 1000, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
