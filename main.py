from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from database import engine, Base, SessionLocal, verify_db_connection
from config import settings
from routers import orders, drivers, chat, notifications, realtime
from services.driver_service import DriverService
from services.exceptions import DispatchError
from services.geo_index import GeoIndex
from services.presence_sweep import PresenceSweeper
from services.realtime_hub import RealtimeHub
from utils.logger import log_info
import models  # noqa: F401  registers every table on Base.metadata
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Delivery Dispatch API",
    description="Order lifecycle, driver assignment and live tracking for on-demand deliveries",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# Process-wide dispatch state shared by every request
app.state.geo_index = GeoIndex()
app.state.hub = RealtimeHub()
app.state.session_factory = SessionLocal
app.state.presence_sweeper = None

@app.exception_handler(DispatchError)
async def dispatch_exception_handler(request: Request, exc: DispatchError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": type(exc).__name__}
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler to prevent information leakage"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "An internal error occurred. Please try again later."}
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)

app.include_router(orders.router)
app.include_router(drivers.router)
app.include_router(chat.router)
app.include_router(notifications.router)
app.include_router(realtime.router)

@app.on_event("startup")
async def startup_event():
    """Create tables, warm the GeoIndex from the drivers table and start the presence sweep"""
    if engine is None:
        logger.error("DATABASE_URL not configured - database features disabled")
        return

    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created/verified")

        db = SessionLocal()
        try:
            count = DriverService(db, app.state.geo_index).load_index()
            log_info(f"Dispatch started with {count} drivers indexed", db=db)
        finally:
            db.close()
    except Exception as e:
        logger.error(f"Startup error: {e}")
        return

    sweeper = PresenceSweeper(
        SessionLocal,
        app.state.geo_index,
        interval_seconds=settings.presence_sweep_interval_seconds,
        stale_after_seconds=settings.presence_stale_after_seconds,
    )
    sweeper.start()
    app.state.presence_sweeper = sweeper

@app.on_event("shutdown")
async def shutdown_event():
    if app.state.presence_sweeper is not None:
        await app.state.presence_sweeper.stop()

@app.get("/")
def root():
    return {
        "message": "Delivery Dispatch API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }

@app.get("/health")
def health_check():
    """Health check endpoint - always returns healthy so the platform keeps the process up"""
    db_status = "connected" if verify_db_connection() else "not connected"
    return {
        "status": "healthy",
        "database": db_status,
        "drivers_indexed": len(app.state.geo_index),
        "realtime": app.state.hub.get_connection_count()["connections"],
    }
