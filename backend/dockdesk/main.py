"""DockDesk - Warehouse dock check-in and appointment API"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from dockdesk.core.config import get_settings
from dockdesk.core.logging import configure_logging, logger
from dockdesk.routers import yard


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(
        "DockDesk API starting",
        version="0.1.0",
        yard_timezone=settings.yard_timezone,
        docks=len(settings.dock_number_list()),
    )
    yield
    # Shutdown
    logger.info("DockDesk API shutting down")


app = FastAPI(
    title="DockDesk API",
    description="Driver check-in, dock assignment with conflict detection, and appointment tracking",
    version="0.1.0",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(yard.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "DockDesk API",
        "version": "0.1.0",
        "mode": get_settings().normalized_app_mode(),
        "description": "Warehouse dock check-in and appointment desk",
        "endpoints": {
            "check_ins": "/yard/check-ins",
            "docks": "/yard/docks",
            "loads": "/yard/loads",
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
