import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.core.database import Base, engine, SessionLocal
from app.core.config import settings
from app.api.v1.main import api_router
from app.initial_data import create_initial_data
from app.services.plan_sync_service import PlanCatalogSynchronizer
from app.services.stripe_gateway import StripeGateway

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create all database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
)

# Parse CORS origins from comma-separated string in settings
cors_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.API_V1_STR)

@app.get("/")
async def read_root():
    return {"message": f"{settings.PROJECT_NAME} is running"}


# Initialize scheduler for background tasks
scheduler = AsyncIOScheduler()

def run_catalog_sync():
    """Sync the plan catalog to Stripe with a fresh DB session"""
    db = SessionLocal()
    try:
        report = PlanCatalogSynchronizer(db, StripeGateway.from_settings()).synchronize()
        if report.errors:
            logger.warning(f"[Scheduler] Catalog sync finished with errors: {report.message}")
    finally:
        db.close()


@app.on_event("startup")
async def on_startup():
    create_initial_data()

    if settings.CATALOG_SYNC_INTERVAL_MINUTES > 0:
        if not settings.STRIPE_SECRET_KEY:
            logger.warning("[Startup] STRIPE_SECRET_KEY is not set; catalog sync scheduler not started")
        else:
            scheduler.add_job(
                run_catalog_sync,
                'interval',
                minutes=settings.CATALOG_SYNC_INTERVAL_MINUTES,
                id='catalog_sync',
                replace_existing=True,
                max_instances=1,
            )
            logger.info(f"[Startup] Catalog sync scheduler started (interval: {settings.CATALOG_SYNC_INTERVAL_MINUTES}m)")

    # Start the scheduler if not already started
    if scheduler.get_jobs() and not scheduler.running:
        scheduler.start()

@app.on_event("shutdown")
async def on_shutdown():
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("[Shutdown] Scheduler stopped")

if __name__ == "__main__":
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
