"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from casesim.api import router as api_router
from casesim.api.deps import build_engine
from casesim.api.errors import engine_error_handler, validation_error_handler
from casesim.core.errors import EngineError
from casesim.core.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests may install their own engine before startup
    owns_engine = getattr(app.state, "engine", None) is None
    if owns_engine:
        app.state.engine = build_engine()
    try:
        yield
    finally:
        if owns_engine:
            app.state.engine.close()
            app.state.engine = None
            logger.info("Engine shut down")


app = FastAPI(
    title="Case Simulation Engine",
    description="Persona dialogue, case knowledge retrieval and stage progression for clinical teaching cases",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_exception_handler(EngineError, engine_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        content={"success": False, "error": exc.detail, "detail": exc.detail},
        status_code=exc.status_code,
    )


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# Include v1 API router
app.include_router(api_router, prefix="/v1", tags=["v1"])
