# bookingsync/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bookingsync.core.config import get_settings
from bookingsync.core.errors import BookingSyncError, RateLimitError

#Import Routers
from bookingsync.api.v1 import appointments
from bookingsync.api.v1 import calendar_webhook
from bookingsync.api.v1.auth import google_calendar

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Booking Sync API",
    description="Appointment scheduling with Google Calendar sync",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookingSyncError)
async def booking_sync_error_handler(request: Request, exc: BookingSyncError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    headers = {}
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        headers["Retry-After"] = str(int(exc.retry_after))
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


#Include routers
app.include_router(appointments.router, prefix="/api", tags=["bookings"])
app.include_router(calendar_webhook.router)
app.include_router(google_calendar.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Booking Sync API",
        "version": "1.0.0",
        "status": "running"
    }

@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "environment": settings.app_env
    }
