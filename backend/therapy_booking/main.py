import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .redis_client import redis_client
from .routers import availability, bookings, calendar_sync, recurring_blocks
from .services.calendar_sync import calendar_sync_scheduler
from .services.default_availability import daily_availability_loop

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    tasks = []
    if settings.enable_background_jobs:
        tasks.append(asyncio.create_task(calendar_sync_scheduler.run_forever()))
        tasks.append(asyncio.create_task(daily_availability_loop()))
        logger.info(f"Started {len(tasks)} background job(s)")
    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


app = FastAPI(title="Therapy Booking API", lifespan=lifespan)

app.include_router(availability.router)
app.include_router(bookings.router)
app.include_router(recurring_blocks.router)
app.include_router(calendar_sync.router)


@app.get("/health")
def health():
    try:
        redis_ok = bool(redis_client.ping())
    except Exception as e:
        logger.warning(f"Redis ping failed: {e}")
        redis_ok = False
    return {"status": "ok", "redis": redis_ok}
