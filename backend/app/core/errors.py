"""
Error model for the compliance API.

    ComplianceError                 500  INTERNAL_ERROR
    ├── ValidationError             422  VALIDATION_ERROR   (field-level ``errors``)
    ├── NotFoundError               404  NOT_FOUND
    ├── StateInvariantViolation     409  STATE_CONFLICT
    ├── AuthenticationRequired      401  UNAUTHENTICATED
    ├── PermissionDenied            403  FORBIDDEN
    └── ExternalServiceError        502  EXTERNAL_SERVICE_ERROR

Every one of them, and FastAPI's own request validation failures, leave
the API in the same envelope:

    {"error": {"code": ..., "message": ..., "status": ..., "details": {...}}}

Push delivery problems have no exception class: a dead or
unreachable endpoint is a DeliveryOutcome value recorded in the
dispatch result, never an exception raised to the incident submitter.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class ComplianceError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(ComplianceError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class ValidationError(ComplianceError):
    """
    Input validation failed (422).

    ``errors`` carries field-level detail as a list of
    ``{"field": ..., "message": ...}`` entries.
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        errors: Optional[List[Dict[str, str]]] = None,
    ):
        field_errors = list(errors or [])
        if field:
            field_errors.append({"field": field, "message": message})
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details={"errors": field_errors},
        )
        self.errors = field_errors

    @classmethod
    def from_pydantic(cls, exc: Any, message: str = "Invalid input") -> "ValidationError":
        """Convert a pydantic ValidationError into field-level detail."""
        errors = [
            {
                "field": ".".join(str(p) for p in err.get("loc", ())) or "__root__",
                "message": err.get("msg", "invalid"),
            }
            for err in exc.errors()
        ]
        return cls(message, errors=errors)


class StateInvariantViolation(ComplianceError):
    """
    A write would break a one-per-key invariant (409).

    Raised by stores when a second Alert is saved for an incident that
    already has one. The dispatcher treats it as idempotent success.
    """

    def __init__(self, message: str, **details: Any):
        super().__init__(
            message=message,
            status_code=409,
            error_code="STATE_CONFLICT",
            details=details,
        )


class AuthenticationRequired(ComplianceError):
    """No acting user on the request (401)."""

    def __init__(self, message: str = "X-User-Id header is required"):
        super().__init__(message=message, status_code=401, error_code="UNAUTHENTICATED")


class PermissionDenied(ComplianceError):
    """Acting user lacks the role for this operation (403)."""

    def __init__(self, message: str = "Manager role required", **details: Any):
        super().__init__(
            message=message,
            status_code=403,
            error_code="FORBIDDEN",
            details=details,
        )


class ExternalServiceError(ComplianceError):
    """External service misconfigured or unavailable (502)."""

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(
            message=f"External service '{service}' failed: {message}",
            status_code=502,
            error_code="EXTERNAL_SERVICE_ERROR",
            details={"service": service, **details},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Response envelope
# ═══════════════════════════════════════════════════════════════════════════

def error_body(error: ComplianceError, request: Optional[Request] = None) -> Dict[str, Any]:
    """The JSON envelope for ``error``; ``request`` adds path and method."""
    payload: Dict[str, Any] = {
        "code": error.error_code,
        "message": error.message,
        "status": error.status_code,
    }
    if error.details:
        payload["details"] = error.details
    if request is not None:
        payload["path"] = request.url.path
        payload["method"] = request.method
    return {"error": payload}


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI, settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    # Path/method are echoed outside production only
    echo_request = not settings.is_production

    def respond(error: ComplianceError, request: Request) -> JSONResponse:
        return JSONResponse(
            status_code=error.status_code,
            content=error_body(error, request if echo_request else None),
        )

    @app.exception_handler(ComplianceError)
    async def handle_compliance_error(request: Request, exc: ComplianceError):
        logger.log(
            logging.ERROR if exc.status_code >= 500 else logging.WARNING,
            "%s %s failed [%s]: %s",
            request.method, request.url.path, exc.error_code, exc.message,
        )
        return respond(exc, request)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        error = ValidationError.from_pydantic(exc, "Invalid request")
        logger.warning(
            "%s %s rejected: %d invalid field(s)",
            request.method, request.url.path, len(error.errors),
        )
        return respond(error, request)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.critical(
            "Unhandled %s on %s %s\n%s",
            type(exc).__name__, request.method, request.url.path, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        return respond(ComplianceError(message), request)
