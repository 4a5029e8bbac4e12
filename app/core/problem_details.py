"""RFC 7807 problem details.

Every error response is ``application/problem+json``. Clients branch on
``code``; only ``SERVICE_UNAVAILABLE`` is worth retrying.

Reference: https://datatracker.ietf.org/doc/html/rfc7807
"""

from typing import Any

from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from app.core.logging import request_id_ctx

ERROR_TYPE_BASE = "/errors"

# Problem type URI per error code
ERROR_TYPES = {
    code: f"{ERROR_TYPE_BASE}/{slug}"
    for code, slug in (
        ("NOT_FOUND", "not-found"),
        ("VALIDATION_ERROR", "validation"),
        ("BAD_REQUEST", "bad-request"),
        ("UNKNOWN_METRIC", "unknown-metric"),
        ("UNKNOWN_GROUP", "unknown-group"),
        ("UNSUPPORTED_PIPELINE_KIND", "unsupported-pipeline-kind"),
        ("EXTRACTION_PATH_MISMATCH", "extraction-path-mismatch"),
        ("PERIOD_LENGTH_MISMATCH", "period-length-mismatch"),
        ("INTERNAL_ERROR", "internal"),
        ("SERVICE_UNAVAILABLE", "service-unavailable"),
    )
}


class ProblemDetail(BaseModel):
    """Problem details body.

    ``type``, ``title``, ``status``, ``detail`` and ``instance`` are the RFC
    members; ``code``, ``details``, ``errors`` and ``request_id`` are
    extensions.
    """

    model_config = ConfigDict(extra="allow")

    type: str = "about:blank"
    title: str
    status: int = Field(..., ge=400, le=599)
    detail: str | None = None
    instance: str | None = None
    code: str | None = None
    details: dict[str, Any] | None = Field(
        None, description="Structured context, e.g. the unknown metric id or the extraction path."
    )
    errors: list[dict[str, Any]] | None = Field(
        None, description="Per-field request validation errors (422 only)."
    )
    request_id: str | None = None


class ProblemDetailResponse(JSONResponse):
    """JSONResponse with the problem+json media type."""

    media_type = "application/problem+json"


def create_problem_detail(
    status: int,
    title: str,
    detail: str | None = None,
    error_code: str = "INTERNAL_ERROR",
    errors: list[dict[str, Any]] | None = None,
    details: dict[str, Any] | None = None,
) -> ProblemDetail:
    """Build a ``ProblemDetail`` for the current request.

    Args:
        status: HTTP status code.
        title: Short summary of the problem type.
        detail: Explanation of this occurrence.
        error_code: Error code; selects the ``type`` URI.
        errors: Per-field validation errors.
        details: Structured context.

    Returns:
        Problem detail carrying the current request ID, if any.
    """
    request_id = request_id_ctx.get()
    return ProblemDetail(
        type=ERROR_TYPES.get(error_code, f"{ERROR_TYPE_BASE}/{error_code.lower()}"),
        title=title,
        status=status,
        detail=detail,
        instance=f"/requests/{request_id}" if request_id else None,
        code=error_code,
        details=details or None,
        errors=errors,
        request_id=request_id,
    )


def problem_response(
    status: int,
    title: str,
    detail: str | None = None,
    error_code: str = "INTERNAL_ERROR",
    errors: list[dict[str, Any]] | None = None,
    details: dict[str, Any] | None = None,
) -> ProblemDetailResponse:
    """Wrap ``create_problem_detail`` in a response, omitting empty members."""
    problem = create_problem_detail(status, title, detail, error_code, errors, details)
    return ProblemDetailResponse(status_code=status, content=problem.model_dump(exclude_none=True))
