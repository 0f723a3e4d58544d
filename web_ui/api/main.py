"""
Pocket Protector Entitlements API - Main FastAPI Application

Serves subscription status, feature gates and upgrade/cancel transitions
to the Pocket Protector web app.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from utils.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events"""
    settings.create_directories()
    logger.info(f"Pocket Protector Entitlements API on http://{settings.API_HOST}:{settings.API_PORT}")
    logger.info(f"Subscription records stored in {settings.STORAGE_DIR}")
    yield
    logger.info("Pocket Protector Entitlements API shutting down...")


app = FastAPI(
    title="Pocket Protector Entitlements API",
    description="Subscription tiers, feature gates and usage limits",
    version="1.0.0",
    lifespan=lifespan,
    redirect_slashes=False,
)

# CORS configuration for the web app dev servers
cors_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Accept",
        "Authorization",
        "Content-Type",
        "X-Requested-With",
    ],
)

from web_ui.api.routes import subscription

app.include_router(subscription.router, prefix="/api/v1", tags=["Subscription"])


@app.get("/")
async def root():
    """API root endpoint"""
    return {
        "name": "Pocket Protector Entitlements API",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
