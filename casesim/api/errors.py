"""HTTP translation of engine error codes."""

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from casesim.core.errors import EngineError, ErrorCode
from casesim.core.logging import get_logger
from casesim.core.schemas_knowledge import IngestResult

logger = get_logger(__name__)

STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.UNSUPPORTED_TYPE: 400,
    ErrorCode.EXTRACTION_ERROR: 400,
    ErrorCode.EMPTY_TEXT: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.EMBEDDING_MODEL_ACCESS: 502,
    ErrorCode.EMBEDDING_ERROR: 502,
    ErrorCode.PROVIDER_ERROR: 502,
    ErrorCode.CONFIG_ERROR: 500,
    ErrorCode.CHUNKING_ERROR: 500,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.UNKNOWN_ERROR: 500,
}


def status_for(code: ErrorCode | None) -> int:
    if code is None:
        return 500
    return STATUS_BY_CODE.get(code, 500)


def ingest_response(result: IngestResult) -> JSONResponse:
    """200 for successful ingestion, otherwise the status for its error code."""
    status_code = 200 if result.success else status_for(result.code)
    return JSONResponse(content=result.to_wire(), status_code=status_code)


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    status_code = status_for(exc.code)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        content={"success": False, "error": exc.message, "code": exc.code.value},
        status_code=status_code,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        content={"success": False, "error": "Invalid request", "details": jsonable_errors(exc)},
        status_code=400,
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": str(error.get("msg", "")), "type": error.get("type")}
        for error in exc.errors()
    ]
