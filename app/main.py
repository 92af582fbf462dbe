# Run from project root: uvicorn app.main:app --reload

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.dependencies import initialise_stores
from app.api.handlers import register_error_handlers
from app.api.routes import ai_router, router
from app.mcp.server import mcp_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    await initialise_stores()
    logger.info("Notes assistant booting...")
    yield


app = FastAPI(title="Notes Assistant Backend", lifespan=lifespan)
app.include_router(router)
app.include_router(ai_router)
app.include_router(mcp_router, prefix="/mcp")
register_error_handlers(app)
