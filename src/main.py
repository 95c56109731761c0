"""FastAPI application entry point."""

import logging

import structlog
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.api.v1.point_rates import router as point_rates_router
from src.api.v1.pricing import router as pricing_router
from src.config import settings
from src.pricing.errors import PricingDataError, PricingValidationError
from src.redis_client import close_redis

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.dev.ConsoleRenderer() if settings.environment == "development"
        else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        getattr(logging, settings.log_level.upper(), logging.INFO)
    ),
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    logger.info("app_starting", environment=settings.environment)
    yield
    await close_redis()
    logger.info("app_shutting_down")


app = FastAPI(
    title="TPA Pricing API",
    description="Pricing rules, point rates and price calculation for claims",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(pricing_router)
app.include_router(point_rates_router)


@app.exception_handler(PricingValidationError)
async def pricing_validation_handler(request: Request, exc: PricingValidationError):
    logger.info("pricing_request_invalid", path=request.url.path, errors=exc.errors)
    return JSONResponse(
        status_code=422,
        content={"message": exc.message, "errors": exc.errors},
    )


@app.exception_handler(PricingDataError)
async def pricing_data_handler(request: Request, exc: PricingDataError):
    # details were logged where the lookup failed
    return JSONResponse(status_code=503, content={"message": "Pricing data unavailable"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


@app.get("/health")
async def health():
    """Liveness check."""
    return {
        "name": "TPA Pricing API",
        "version": "0.1.0",
        "status": "running",
    }
