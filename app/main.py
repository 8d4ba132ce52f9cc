import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from app.core.config import settings
from app.core import models  # noqa: F401  (registers tables on Base)
from app.core.database import engine, AsyncSessionLocal, create_tables
from app.core.repositories.db import RealCountriesDBRepository
from app.core.repositories.web import RealCountriesWebRepository, build_async_client
from app.core.services.countries import RealCountriesService
from app.api.router import api_router

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


# Build the shared client/service on startup, close everything on shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables()
    logger.info("Database tables are ready")

    client = build_async_client(settings)
    app.state.countries_service = RealCountriesService(
        web_repository=RealCountriesWebRepository(client),
        db_repository=RealCountriesDBRepository(AsyncSessionLocal),
        refresh_floor=settings.REFRESH_FLOOR_SECONDS,
    )

    yield
    await client.aclose()
    await engine.dispose()


app = FastAPI(title="Countries API", lifespan=lifespan)

# Include the master router containing all our endpoints
app.include_router(api_router)


@app.get("/")
async def root():
    return {"message": "Welcome to the Countries API"}
