from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from routers.rooms import rooms_router, files_router
from dependencies import get_room_registry
from errors import TransferError
from constants import ALLOWED_ORIGINS, SWEEP_INTERVAL_SECONDS
import asyncio
from logging_config import get_logger, setup_logging
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


async def sweep_expired_rooms(interval: int):
    """Periodic sweep on top of the lazy one done on every request.

    Bounds memory held by rooms nobody asks for again.
    """
    logger.info(f"Starting background room sweeper every {interval} seconds")
    while True:
        await asyncio.sleep(interval)
        try:
            provider = app.dependency_overrides.get(get_room_registry, get_room_registry)
            removed = await asyncio.get_running_loop().run_in_executor(None, provider().sweep_expired)
            if removed:
                logger.debug(f"Background sweep removed {removed} entries")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Background room sweep failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = None
    if SWEEP_INTERVAL_SECONDS > 0:
        sweeper = asyncio.create_task(sweep_expired_rooms(SWEEP_INTERVAL_SECONDS))

    yield

    if sweeper:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            logger.info("Background room sweeper cancelled")
    logger.info("Application shutdown")


app = FastAPI(title="Ephemeral Drop", lifespan=lifespan)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],  # Allow all HTTP methods
    allow_headers=["*"],  # Allow all headers
)

app.include_router(rooms_router)
app.include_router(files_router)


@app.exception_handler(TransferError)
async def transfer_error_handler(request: Request, exc: TransferError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path} ({exc.status_code}): {exc.message}")
    else:
        logger.warning(f"{type(exc).__name__} on {request.url.path} ({exc.status_code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Invalid request on {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"error": "Invalid request"})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"{type(exc).__name__} on {request.url.path} (500): {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/health")
async def health():
    return {"status": "healthy"}


logger.info("FastAPI application initialized")
