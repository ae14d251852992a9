"""Application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from paylink.config import settings, load_engine_secrets
from paylink.api.v1 import router as api_v1_router
from paylink.api.webhooks import router as webhooks_router
from paylink.api.cron import router as cron_router
from paylink.core.cache import cache_service
from paylink.database import AsyncSessionLocal
from paylink.services import scheduler_service
from paylink.services.stripe_service import StripeService
from paylink.services.tbi_service import TbiService

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(timezone="UTC")


async def cancel_expired_payments_job():
    """Hourly: cancel payment links that expired unpaid."""
    try:
        await scheduler_service.cancel_expired_payments(AsyncSessionLocal, StripeService(), TbiService())
    except Exception as e:
        logger.error(f"Expired payment cancellation failed: {e}", exc_info=True)


async def charge_deferred_payments_job():
    """Daily at 06:00 UTC: charge due installments."""
    try:
        await scheduler_service.charge_deferred_payments(AsyncSessionLocal, StripeService())
    except Exception as e:
        logger.error(f"Deferred payment charge failed: {e}", exc_info=True)


async def process_scheduled_cancellations_job():
    """Daily at 00:05 UTC: cancel subscriptions that reached their cancellation date."""
    try:
        await scheduler_service.process_scheduled_cancellations(AsyncSessionLocal)
    except Exception as e:
        logger.error(f"Scheduled cancellation processing failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan."""
    # Startup: fails fast if a required secret is missing
    app.state.secrets = load_engine_secrets()
    await cache_service.connect()

    if settings.scheduler_enabled:
        scheduler.add_job(
            cancel_expired_payments_job,
            trigger=CronTrigger(minute=0),
            id="cancel_expired_payments",
            name="Cancel expired payment links",
            replace_existing=True,
        )
        scheduler.add_job(
            charge_deferred_payments_job,
            trigger=CronTrigger(hour=6, minute=0),
            id="charge_deferred_payments",
            name="Charge deferred payments",
            replace_existing=True,
        )
        scheduler.add_job(
            process_scheduled_cancellations_job,
            trigger=CronTrigger(hour=0, minute=5),
            id="process_scheduled_cancellations",
            name="Process scheduled cancellations",
            replace_existing=True,
        )
        scheduler.start()
        logger.info("Scheduler started: expired links hourly, charges at 06:00 UTC, cancellations at 00:05 UTC")

    yield

    # Shutdown
    if scheduler.running:
        scheduler.shutdown(wait=False)
    await cache_service.disconnect()


app = FastAPI(
    title="Payment Link Engine API",
    description="Payment links, gateway webhooks and subscription lifecycle",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS: any origin in development, configured origins otherwise
if settings.is_development:
    cors_origins = ["*"]
    allow_creds = False
else:
    cors_origins = list(set(settings.cors_origins))
    allow_creds = True

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_creds,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

app.include_router(api_v1_router, prefix="/api/v1")
app.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks"])
app.include_router(cron_router, prefix="/cron", tags=["cron"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Payment Link Engine API",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}
