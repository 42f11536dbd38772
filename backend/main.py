"""
Registry Network Engine - Main FastAPI Application
Relationship graphs, ownership chains and risk networks from corporate registry data.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from loguru import logger
import sys

from config import settings
from api.routes import network


# Configure logging
logger.remove()
logger.add(
    sys.stdout,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Debug mode: {settings.DEBUG}")
    if not settings.UK_COMPANIES_HOUSE_API_KEY:
        logger.warning("UK_COMPANIES_HOUSE_API_KEY is not set - every registry call will be unavailable")

    from network.engine import get_network_engine
    engine = get_network_engine()
    logger.info(f"Analysis cache backend: {settings.CACHE_BACKEND}, TTL {settings.CACHE_TTL_HOURS}h")

    # Startup
    yield

    # Shutdown
    removed = engine.cache.purge_expired()
    logger.info(f"Shutting down... ({removed} expired cache entries purged)")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Company networks, ownership chains, address clusters and risk propagation over registry data.",
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(network.router, prefix=f"{settings.API_PREFIX}/network", tags=["Network"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "operational",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "registry_configured": bool(settings.UK_COMPANIES_HOUSE_API_KEY),
        "cache_backend": settings.CACHE_BACKEND,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
