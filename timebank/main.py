from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging
import os
from pathlib import Path

from timebank.database import engine, Base, SessionLocal
from timebank import models  # Import all models to register them with Base
from timebank.constants import (
    DEFAULT_LOG_DIRECTORY_PROD,
    DEFAULT_LOG_DIRECTORY_DEV,
    DEFAULT_STORAGE_KEY,
)
from timebank.exceptions import (
    TimeBankException,
    ValidationException,
    TransactionNotFoundException,
    PersistenceException,
)
from timebank.repositories.settings_repository import SettingsRepository
from timebank.repositories.state_repository import SqlAlchemyStateStore
from timebank.routes import router
from timebank.services.clock_service import SystemClock
from timebank.services.ledger_service import TimeBankLedger
from timebank.services.scheduler_service import start_scheduler, stop_scheduler

LOG_DIR = os.getenv("TIMEBANK_LOG_DIR", DEFAULT_LOG_DIRECTORY_PROD)
LOG_FILE = os.getenv("TIMEBANK_LOG_FILE", "timebank.log")

try:
    Path(LOG_DIR).mkdir(parents=True, exist_ok=True)
    log_path = Path(LOG_DIR) / LOG_FILE
except PermissionError:
    # Fallback to local directory if no permissions for /var/log
    LOG_DIR = DEFAULT_LOG_DIRECTORY_DEV
    Path(LOG_DIR).mkdir(parents=True, exist_ok=True)
    log_path = Path(LOG_DIR) / LOG_FILE

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(log_path),
        logging.StreamHandler()  # Also log to console
    ]
)

logger = logging.getLogger("timebank")

STORAGE_KEY = os.getenv("TIMEBANK_STORAGE_KEY", DEFAULT_STORAGE_KEY)
SCHEDULER_ENABLED = os.getenv("TIMEBANK_ENABLE_SCHEDULER", "true").lower() != "false"

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="TimeBank API",
    description="Time currency ledger: earn minutes from habits, spend them on apps",
    version="1.0.0"
)

app.include_router(router)


@app.exception_handler(TimeBankException)
async def timebank_exception_handler(request: Request, exc: TimeBankException):
    if isinstance(exc, ValidationException):
        status_code = 422
    elif isinstance(exc, TransactionNotFoundException):
        status_code = 404
    elif isinstance(exc, PersistenceException):
        status_code = 503
    else:
        status_code = 400
    logger.warning(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def create_ledger() -> TimeBankLedger:
    """Build the ledger from stored settings and the stored snapshot"""
    db = SessionLocal()
    try:
        settings = SettingsRepository.get(db)
        policy = SettingsRepository.to_policy(settings)
        timezone = settings.timezone
    finally:
        db.close()

    store = SqlAlchemyStateStore(SessionLocal, STORAGE_KEY)
    return TimeBankLedger(store, clock=SystemClock(timezone), policy=policy)


@app.on_event("startup")
async def startup_event():
    ledger = create_ledger()
    app.state.ledger = ledger
    logger.info(
        f"TimeBank API started. Balance {ledger.get_balance()} min, "
        f"logging to: {log_path}"
    )
    if SCHEDULER_ENABLED:
        start_scheduler(ledger, ledger.clock.timezone)


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down TimeBank API")
    stop_scheduler()
    ledger = getattr(app.state, "ledger", None)
    if ledger is not None and not ledger.flush():
        logger.error(f"Ledger snapshot lost on shutdown: {ledger.last_persistence_error}")


# Health check (no auth required)
@app.get("/")
async def root():
    return {"message": "TimeBank API", "status": "active"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("timebank.main:app", host="0.0.0.0", port=8000, reload=False)
