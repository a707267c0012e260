"""Main application entry point."""
from fastapi import FastAPI
import logging

from vaccine_reminders.config import settings
from vaccine_reminders.database import init_db
from vaccine_reminders.scheduler import DispatchScheduler
from vaccine_reminders.api.reminders import router as reminders_router, register_exception_handlers


logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Vaccination Reminder Engine",
    description="Scheduling and notification engine for vaccination reminders",
    version="1.0.0",
    debug=settings.debug
)

app.include_router(reminders_router, prefix=settings.api_prefix)
register_exception_handlers(app)

dispatch_scheduler = DispatchScheduler()


@app.on_event("startup")
async def startup_event():
    """Initialize application on startup."""
    logger.info("Application starting up...")
    init_db()

    if settings.dispatcher_enabled:
        dispatch_scheduler.start()
    else:
        logger.info("Notification dispatcher disabled by configuration")
    logger.info("Application startup complete")


@app.on_event("shutdown")
async def shutdown_event():
    """Clean up on application shutdown."""
    dispatch_scheduler.stop()


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Vaccination Reminder Engine"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "dispatcher_running": dispatch_scheduler.running}


@app.get("/ping")
async def ping():
    return {"ping": "pong"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
