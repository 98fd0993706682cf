import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from . import routes

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await routes.db.connect()
    logger.info(f"Connected to database: {routes.db.db_path}")
    try:
        yield
    finally:
        await routes.db.close()


app = FastAPI(title="CineFind", description="Video catalog and activity tracker", lifespan=lifespan)

# Include routes
app.include_router(routes.router)
