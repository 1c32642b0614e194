import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from fastapi import FastAPI, status
from app.core.db import init_db, close_db
from app.api.v1.tools import router as tools_router
from app.api.v1.bookings import router as bookings_router
from app.api.v1.orders import router as orders_router
from app.core.config import PROJECT_NAME, VERSION, ENABLE_BACKGROUND_WORKERS
from app.core.exception_handlers import setup_exception_handlers
from app.workers.hold_reaper import run_hold_reaper
from app.workers.outbox_poller import run_outbox_poller

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles startup and shutdown events."""
    log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
    await init_db() # Connect to DB and generate schemas
    workers = []
    if ENABLE_BACKGROUND_WORKERS:
        workers = [
            asyncio.create_task(run_hold_reaper()),
            asyncio.create_task(run_outbox_poller()),
        ]
    yield
    for task in workers:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    await close_db()
    log.info(f"{PROJECT_NAME} stopped.")

app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    lifespan=lifespan,
    # Configure API documentation and paths
    docs_url="/docs",
    redoc_url="/redoc"
)

# Include routers for modular API structure
app.include_router(tools_router, prefix="/api/v1/tools", tags=["Tools & Availability"])
app.include_router(bookings_router, prefix="/api/v1/bookings", tags=["Bookings"])
app.include_router(orders_router, prefix="/api/v1/orders", tags=["Order Lifecycle"])


setup_exception_handlers(app)

@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Simple health check endpoint."""
    return {"status": "ok", "app_name": PROJECT_NAME}
