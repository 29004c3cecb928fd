from dotenv import load_dotenv
load_dotenv()  # Load environment variables before other imports

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from ragchat.core.config import get_config
from ragchat.core.errors import InvalidInput, NotFound, StorageFailure
from ragchat.core.logging_config import configure_logging, RequestContextMiddleware, get_logger
from ragchat.core.rate_limiter import RateLimiter, get_rate_limiter

config = get_config()

# Configure logging before anything else
configure_logging(json_format=config.logging.json_format, log_level=config.logging.level)

logger = get_logger(__name__)

from ragchat.api import deps
from ragchat.api.endpoints import messages, sessions
from ragchat.api.rate_limit import RateLimitMiddleware
from ragchat.init_db import init_db
from ragchat.services.chat_archive import ChatArchive


def create_app(
    archive: Optional[ChatArchive] = None,
    limiter: Optional[RateLimiter] = None,
    db_engine: Optional[Engine] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        archive: Archive to serve (defaults to the one bound to the configured database)
        limiter: Rate limiter to gate /api/ requests with (defaults to the process-wide one)
        db_engine: Engine whose tables are created on startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting RAG Chat Storage API", version=config.app_version)
        if db_engine is not None:
            init_db(db_engine)
        else:
            init_db()
        logger.info("Database tables created")
        yield
        logger.info("Shutting down RAG Chat Storage API")

    app = FastAPI(title=config.app_name, version=config.app_version, lifespan=lifespan)

    # Middleware added last runs first: CORS, then request context, then throttling
    if config.rate_limit.enabled:
        app.add_middleware(RateLimitMiddleware, limiter=limiter, path_prefix=config.rate_limit.path_prefix)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if archive is not None:
        app.dependency_overrides[deps.get_archive] = lambda: archive

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidInput)
    async def invalid_input_handler(request: Request, exc: InvalidInput):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(StorageFailure)
    async def storage_failure_handler(request: Request, exc: StorageFailure):
        logger.error("Storage failure", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    app.include_router(sessions.router, prefix="/api/v1/sessions", tags=["sessions"])
    app.include_router(
        messages.router,
        prefix="/api/v1/sessions/{session_id}/messages",
        tags=["messages"],
    )

    @app.get("/health")
    def health_check():
        logger.debug("Health check requested")
        active_limiter = limiter or get_rate_limiter()
        return {
            "status": "ok",
            "version": config.app_version,
            "rate_limit_enabled": config.rate_limit.enabled,
            "rate_limit_buckets": active_limiter.bucket_count,
        }

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("ragchat.main:app", host="0.0.0.0", port=8000, reload=True)
