# freightdesk/main.py
import logging
from fastapi import FastAPI
from contextlib import asynccontextmanager

from freightdesk.config.settings import settings
from freightdesk.core.middleware import setup_middleware
from freightdesk.api.v1.router import api_router
from freightdesk.modules.pricing.engine import build_pricing_engine
from freightdesk.shared.services.notifications import NotificationDispatcher

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    app.state.pricing_engine = build_pricing_engine()
    app.state.notifier = NotificationDispatcher(
        webhook_url=settings.notification_webhook_url,
        timeout=settings.notification_timeout_seconds,
    )
    logger.info("🚀 FreightDesk API starting...")
    logger.info(f"📍 Version: {settings.version}")
    logger.info(f"🌍 Environment: {'Development' if settings.debug else 'Production'}")
    logger.info(f"🤖 External pricing: {'on' if app.state.pricing_engine.estimator else 'off'}")
    logger.info(f"🗄️  Database: {settings.database_url.split('@')[1] if '@' in settings.database_url else 'localhost'}")

    yield

    # Shutdown
    await app.state.notifier.drain()
    app.state.pricing_engine.cache.clear()
    logger.info("🛑 FreightDesk API shutting down...")

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Transport request lifecycle, pricing and assignment engine",
    docs_url="/docs",
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

# Setup middleware
setup_middleware(app)

# Include routers
app.include_router(api_router, prefix="/api/v1")

# Root endpoint
@app.get("/")
async def root():
    return {
        "message": "🚚 FreightDesk API",
        "version": settings.version,
        "status": "running",
        "environment": "production" if not settings.debug else "development",
        "docs": "/docs",
        "api": "/api/v1"
    }

# Health check
@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "version": settings.version,
        "app": settings.app_name,
        "environment": "production" if not settings.debug else "development"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "freightdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
