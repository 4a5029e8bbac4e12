"""Application errors and their RFC 7807 rendering.

Errors raised anywhere below a route are subclasses of ``TracePulseError``;
each carries its HTTP status, a machine-readable ``code`` and structured
``details`` (the offending metric, the extraction path, ...).
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from app.core.logging import get_logger
from app.core.problem_details import ERROR_TYPES, ProblemDetailResponse, problem_response

logger = get_logger(__name__)


# =============================================================================
# Exception Classes
# =============================================================================


class TracePulseError(Exception):
    """Base class for errors rendered as problem details.

    Attributes:
        message: Human-readable explanation, returned as ``detail``.
        code: Machine-readable code, returned as ``code``.
        status_code: HTTP status.
        details: Structured context, returned as ``details``.
    """

    error_type_uri: str = ERROR_TYPES["INTERNAL_ERROR"]

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    @property
    def title(self) -> str:
        """Problem title derived from the code, e.g. ``Unknown Metric``."""
        return self.code.replace("_", " ").title()


class BadRequestError(TracePulseError):
    """The request is well-formed but asks for something unsupported.

    Examples: a keyed metric without ``key``, an aggregation the metric does
    not allow, the same series twice.
    """

    error_type_uri: str = ERROR_TYPES["BAD_REQUEST"]

    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=400, details=details)


class StoreUnavailableError(TracePulseError):
    """The document store is unreachable, timed out or overloaded.

    The only retryable error; nothing in the service retries it.
    """

    error_type_uri: str = ERROR_TYPES["SERVICE_UNAVAILABLE"]

    def __init__(
        self,
        message: str = "Document store unavailable",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code="SERVICE_UNAVAILABLE", status_code=503, details=details)


# =============================================================================
# Exception Handlers
# =============================================================================


async def tracepulse_exception_handler(
    request: Request,
    exc: TracePulseError,
) -> ProblemDetailResponse:
    """Render a ``TracePulseError``.

    Client errors are logged at warning level; server errors at error level
    with the traceback.
    """
    server_error = exc.status_code >= 500
    log = logger.error if server_error else logger.warning
    log(
        "app.error_handled",
        path=request.url.path,
        error=exc.message,
        error_type=type(exc).__name__,
        error_code=exc.code,
        status_code=exc.status_code,
        details=exc.details,
        exc_info=server_error,
    )

    return problem_response(
        status=exc.status_code,
        title=exc.title,
        detail=exc.message,
        error_code=exc.code,
        details=exc.details,
    )


def _field_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    return [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": str(error.get("msg", "Validation failed")),
            "type": str(error.get("type", "unknown")),
        }
        for error in exc.errors()
    ]


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> ProblemDetailResponse:
    """Render request validation failures as a 422 with per-field errors."""
    errors = _field_errors(exc)
    logger.warning(
        "app.validation_error",
        path=request.url.path,
        fields=[error["field"] for error in errors],
    )

    return problem_response(
        status=422,
        title="Validation Error",
        detail=f"Request validation failed with {len(errors)} error(s)",
        error_code="VALIDATION_ERROR",
        errors=errors,
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> ProblemDetailResponse:
    """Render anything else as an opaque 500; details stay in the logs."""
    logger.error(
        "app.unhandled_error",
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return problem_response(
        status=500,
        title="Internal Server Error",
        detail="An unexpected error occurred. Quote the request_id when reporting it.",
        error_code="INTERNAL_ERROR",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the problem-detail handlers to ``app``."""
    app.add_exception_handler(TracePulseError, tracepulse_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)
