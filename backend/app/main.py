import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Configure structured JSON logging as early as possible so every subsequent
# log record (including import-time warnings) uses the JSON formatter.
from app.logging_config import RequestIdMiddleware, configure_logging

# Use LOG_LEVEL env var directly here because settings hasn't been imported yet
configure_logging(level=os.environ.get("LOG_LEVEL", "INFO"))

from app.api.artifacts import router as artifacts_router  # noqa: E402
from app.api.images import router as images_router  # noqa: E402
from app.api.jobs import router as jobs_router  # noqa: E402
from app.api.proxy import router as proxy_router  # noqa: E402
from app.config import settings  # noqa: E402
from app.database import init_db  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up")
    init_db()
    logger.info("Database initialised")
    yield
    logger.info("Application shutting down")


app = FastAPI(title="Interior Studio API", lifespan=lifespan)

# Request ID middleware must be added BEFORE CORS so every response carries
# the X-Request-ID header (including preflight OPTIONS responses).
app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*", "X-Request-ID", "X-User-Id"],
    expose_headers=["X-Request-ID"],
)

app.include_router(artifacts_router)
app.include_router(images_router)
app.include_router(jobs_router)
app.include_router(proxy_router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
