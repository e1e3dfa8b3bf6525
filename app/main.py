"""
FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.config import settings
from app.middleware.error_handler import ErrorHandlerMiddleware
from app.api.v1.routers import simulations

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Rate limiter, applied to every route
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_requests}/minute"],
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Handles startup and shutdown events using the modern FastAPI pattern.
    """
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Field config: dimensions=[{settings.field_min_dimension}, "
                f"{settings.field_max_dimension}], jitter={settings.grid_jitter_ratio}")
    logger.info(f"Timeline config: horizon={settings.default_horizon_days} days, "
                f"playback={settings.playback_base_interval_ms} ms/day")
    logger.info(f"Rate limit: {settings.rate_limit_requests} requests/minute")

    yield

    # Shutdown
    from app.infrastructure.growth_rate_client import close_growth_rate_client
    from app.services.application.simulation_service import get_simulation_registry
    logger.info("Shutting down application...")
    get_simulation_registry().close_all()
    await close_growth_rate_client()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    Crop Field Growth Simulation API

    This API simulates the day-by-day development of a planted field and lets
    users apply products whose effect reshapes the rest of the season.

    ## Features

    - **Field Layout**: Scale an arbitrary outline to a target area and lay out
      crop rows inside it
    - **Synthetic Weather**: Seasonal weather for temperate fields and for the
      tropical savanna of central Brazil
    - **Growth Timeline**: Daily growth factor, growth stage and render settings
    - **Playback**: Step through or play the season at adjustable speed
    - **Products**: Apply and remove growth boosts, estimated by an external
      growth-rate service when not given
    - **Rate Limiting**: Protects the API from abuse

    ## Growth Model

    Each day's growth factor is a weighted score of:
    1. Temperature distance from the crop optimum
    2. Sunlight for the day's weather
    3. Humidity, penalised above the saturation threshold

    Stages follow fixed thresholds: SEEDLING < 0.2 ≤ VEGETATIVE < 0.6 ≤
    REPRODUCTIVE < 0.9 ≤ MATURE.
    """,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# Add CORS middleware with configurable origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add global error handling middleware
app.add_middleware(ErrorHandlerMiddleware)

# Include routers
app.include_router(simulations.router, prefix="/api/v1")


@app.get("/", tags=["health"])
async def root():
    """
    Root endpoint for health check.

    Returns:
        Status message
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
    }


@app.get("/health", tags=["health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        Health status
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
    }
