"""Main application entry point."""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import redis.asyncio as aioredis
import httpx
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from config import REDIS_URL, API_VERSION, GATEWAY_TIMEOUT_SECONDS, LOG_LEVEL, TELEMETRY_ENABLED
from database import init_db, engine
from monitoring import init_profiling
from logging_config import setup_logging
from routers import orders, payment, products
from services.external_service import ExternalServiceClient
from services.notification_service import NotificationDispatcher

# Setup structured logging
setup_logging(getattr(logging, LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info("Starting application...")

    init_db()

    # Reservations live in Redis so any worker can complete any checkout
    redis_client = aioredis.from_url(REDIS_URL, decode_responses=True)
    if TELEMETRY_ENABLED:
        RedisInstrumentor().instrument(redis_client=redis_client)
    app.state.redis_client = redis_client
    logger.info("Redis client initialized")

    # Bounded timeout for every outbound call
    http_client = httpx.AsyncClient(timeout=GATEWAY_TIMEOUT_SECONDS)
    if TELEMETRY_ENABLED:
        HTTPXClientInstrumentor().instrument_client(http_client)
    app.state.http_client = http_client
    logger.info("HTTP client initialized")

    dispatcher = NotificationDispatcher(ExternalServiceClient(http_client))
    app.state.dispatcher = dispatcher

    init_profiling()

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application...")
    await dispatcher.drain()
    await http_client.aclose()
    await redis_client.aclose()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="WebStore Checkout Service",
    version=API_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if TELEMETRY_ENABLED:
    FastAPIInstrumentor.instrument_app(app)
    SQLAlchemyInstrumentor().instrument(engine=engine)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors (400), not 422."""
    logger.warning("Request validation failed", extra={
        "path": request.url.path,
        "errors": len(exc.errors())
    })
    return JSONResponse(
        status_code=400,
        content={"success": False, "detail": jsonable_encoder(exc.errors())}
    )


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


app.include_router(payment.router)
app.include_router(orders.router)
app.include_router(products.router)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
