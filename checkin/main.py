import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import Depends, FastAPI

from checkin.database import close_db, init_db
from checkin.errors import capture_request_body, register_exception_handlers
from checkin.repositories import RecordStore, get_store, reset_store
from checkin.routers import admin, clinical_forms, completion, insurance, patients

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting patient check-in service...")
    store = await get_store()
    if store.engine != "memory":
        await init_db()
        logger.info("Database initialized")
    yield
    reset_store()
    await close_db()
    logger.info("Patient check-in service shut down")


app = FastAPI(
    title="Patient Check-In",
    description="Multi-step patient intake: demographics, insurance, clinical forms and completion",
    version="0.1.0",
    lifespan=lifespan,
    dependencies=[Depends(capture_request_body)],
)

register_exception_handlers(app)

# Include routers
app.include_router(patients.router)
app.include_router(insurance.router)
app.include_router(clinical_forms.router)
app.include_router(completion.router)
app.include_router(admin.router)


@app.get("/api/health")
async def health(store: RecordStore = Depends(get_store)):
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "store": store.engine,
    }
