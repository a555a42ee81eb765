import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.database import engine, Base
from app.core import models  # noqa: F401  registers the tables on Base
from app.api.router import api_router
from app.ai_feature.errors import InvalidInput
from app.ai_feature.sandbox import reap_orphaned_artifacts
from app.ai_feature.service import get_model_client

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


async def reap_periodically():
    """Sweep the sandbox scratch area for directories a crashed run left behind."""
    while True:
        try:
            await asyncio.to_thread(
                reap_orphaned_artifacts,
                settings.SANDBOX_SCRATCH_DIR,
                settings.SANDBOX_ORPHAN_MAX_AGE_SECONDS,
            )
        except OSError as e:
            logger.error(f"Artifact reaper failed: {e}")
        await asyncio.sleep(settings.SANDBOX_REAP_INTERVAL_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create the tables the upload flow writes into if they are missing
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    mode = "fallback" if get_model_client() is None else f"model {settings.OPENAI_MODEL}"
    logger.info(f"Assistant ready ({mode})")

    reaper = asyncio.create_task(reap_periodically())
    yield
    reaper.cancel()
    try:
        await reaper
    except asyncio.CancelledError:
        pass
    await engine.dispose()


app = FastAPI(title="DeepScanRx Analytics Assistant API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include the master router containing all our endpoints
app.include_router(api_router)


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)}
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"error": "Malformed request", "detail": jsonable_encoder(exc.errors())},
    )


@app.get("/")
async def root():
    return {"message": "Welcome to the DeepScanRx Analytics Assistant API"}


@app.get("/health")
async def health_check():
    return {"status": "ok"}
