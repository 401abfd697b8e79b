import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from resource_booker.config import EXPIRY_SWEEP_INTERVAL_SECONDS, LOG_LEVEL
from resource_booker.db import init_database
from resource_booker.routers import approvals, bookings, resources
from resource_booker.services.reaper import expiry_loop

logging.basicConfig(level=LOG_LEVEL)


@asynccontextmanager
async def lifespan(_: FastAPI):
    "lifespan for initing database and running the expiry sweep"
    init_database()
    sweeper = None
    if EXPIRY_SWEEP_INTERVAL_SECONDS > 0:
        sweeper = asyncio.create_task(expiry_loop(EXPIRY_SWEEP_INTERVAL_SECONDS))
    yield
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper


app = FastAPI(
    lifespan=lifespan,
    title="Resource booker",
    description="Priority-aware scheduler for shared rooms, labs and vehicles.",
    version="0.1.0",
    license_info={
        "name": "MIT",
        "url": "https://opensource.org/licenses/MIT",
    },
)


app.include_router(resources.router)
app.include_router(resources.maintenance_router)
app.include_router(bookings.router)
app.include_router(approvals.router)
