"""Error taxonomy shared by every engine component.

Exceptions are raised inside components and translated into discriminated
results (a ``success`` flag plus an ``ErrorCode``) at each public edge.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Structured error codes reported to callers."""

    UNSUPPORTED_TYPE = "UNSUPPORTED_TYPE"
    EXTRACTION_ERROR = "EXTRACTION_ERROR"
    EMPTY_TEXT = "EMPTY_TEXT"
    CHUNKING_ERROR = "CHUNKING_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"
    EMBEDDING_ERROR = "EMBEDDING_ERROR"
    EMBEDDING_MODEL_ACCESS = "EMBEDDING_MODEL_ACCESS"
    DATABASE_ERROR = "DATABASE_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class EngineError(Exception):
    """Base class for engine failures that carry a structured code."""

    default_code = ErrorCode.UNKNOWN_ERROR

    def __init__(self, message: str, code: ErrorCode | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class ExtractionFailure(EngineError):
    """Bad or unsupported input document."""

    default_code = ErrorCode.EXTRACTION_ERROR


class ChunkingFailure(EngineError):
    """Internal chunking failure. Should not happen; treat as a bug signal."""

    default_code = ErrorCode.CHUNKING_ERROR


class ProviderUnavailable(EngineError):
    """An external AI provider failed.

    ``fatal`` failures (authorization or model access) must not be retried.
    ``transport`` is True when no response was received at all.
    """

    def __init__(
        self,
        message: str,
        provider: str,
        status: int | None = None,
        fatal: bool = False,
        transport: bool = False,
    ):
        code = ErrorCode.EMBEDDING_MODEL_ACCESS if fatal else ErrorCode.PROVIDER_ERROR
        super().__init__(message, code)
        self.provider = provider
        self.status = status
        self.fatal = fatal
        self.transport = transport

    @property
    def retryable(self) -> bool:
        return not self.fatal


class PersistenceFailure(EngineError):
    """Storage read or write failure."""

    default_code = ErrorCode.DATABASE_ERROR

    def __init__(self, message: str, succeeded: int = 0):
        super().__init__(message)
        self.succeeded = succeeded


class ConfigurationMissing(EngineError):
    """No credentials configured for the requested provider."""

    default_code = ErrorCode.CONFIG_ERROR
