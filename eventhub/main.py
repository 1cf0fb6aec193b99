import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .dependencies import build_storage
from .errors import EventHubError
from .routers import events, users

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    storage = build_storage(settings)
    storage.open()
    app.state.storage = storage
    try:
        yield
    finally:
        storage.close()


app = FastAPI(
    title="EventHub API",
    version="1.0.0",
    description="Publish capacity-bounded events, join and leave them, search listings",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Configure CORS for docs UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify exact origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EventHubError)
async def handle_eventhub_error(request: Request, exc: EventHubError):
    if exc.retryable:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.message},
    )


# Include routers
app.include_router(users.router)
app.include_router(events.router)


@app.get("/")
def read_root():
    return {"message": "EventHub API", "status": "running"}
