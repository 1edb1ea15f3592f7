"""Error taxonomy and the FastAPI handlers that render it.

Every failure leaves the service as ``{"error", "message", "code"}`` plus
``details`` for validation failures. Anything not raised as an
:class:`IntakeError` is logged with the (redacted) request body and turned
into a generic 500.
"""

from __future__ import annotations

import json
import logging
import traceback
from typing import Any, Mapping

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from checkin import config

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"
SENSITIVE_FIELDS = frozenset({
    "password",
    "ssn",
    "creditcard",
    "credit_card",
    "bankaccount",
    "bank_account",
})


class IntakeError(Exception):
    """Base class for errors that map onto a structured HTTP response."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "INTERNAL_ERROR"
    error = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        *,
        error: str | None = None,
        code: str | None = None,
        details: list[Any] | None = None,
    ) -> None:
        self.error = error or self.error
        self.message = message or self.error
        self.code = code or self.code
        self.details = details
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "error": self.error,
            "message": self.message,
            "code": self.code,
        }
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationFailed(IntakeError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    error = "Validation failed"

    def __init__(self, details: list[dict[str, str]], message: str | None = None) -> None:
        super().__init__(
            message or "Please correct the following errors",
            details=details,
        )

    @property
    def fields(self) -> list[str]:
        return [d["field"] for d in self.details or []]


class InvalidIdentifier(IntakeError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_PATIENT_ID"
    error = "Invalid patient ID"


class InvalidStatus(IntakeError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_STATUS"
    error = "Invalid status parameter"


class NotFound(IntakeError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    error = "Not found"


class PatientNotFound(NotFound):
    code = "PATIENT_NOT_FOUND"
    error = "Patient not found"


class AlreadyCompleted(IntakeError):
    """A completion record already exists for the patient."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "ALREADY_COMPLETED"
    error = "Check-in already completed for this patient"


class InvalidFileType(IntakeError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_FILE_TYPE"
    error = "Invalid file type"


class TooManyFiles(IntakeError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "TOO_MANY_FILES"
    error = "Too many files"


class PayloadTooLarge(IntakeError):
    status_code = status.HTTP_413_CONTENT_TOO_LARGE
    code = "FILE_TOO_LARGE"
    error = "File too large"


class ConstraintViolation(IntakeError):
    """The backing store rejected a write because it broke a table constraint."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "CONSTRAINT_VIOLATION"
    error = "Database constraint violation"


class StoreBusy(IntakeError):
    """The backing store is temporarily unavailable; the caller may retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "DATABASE_BUSY"
    error = "Database temporarily unavailable"


def redact_payload(data: Any) -> Any:
    """Return ``data`` with sensitive values replaced by ``[REDACTED]``."""
    if isinstance(data, Mapping):
        cleaned: dict[str, Any] = {}
        for key, value in data.items():
            if str(key).lower() in SENSITIVE_FIELDS and value:
                cleaned[key] = REDACTED
            else:
                cleaned[key] = redact_payload(value)
        return cleaned
    if isinstance(data, list):
        return [redact_payload(item) for item in data]
    return data


async def capture_request_body(request: Request) -> None:
    """Keep the parsed JSON body on the request state for error logging.

    The catch-all handler runs outside the route and cannot read the stream
    again, so the body is parsed here while it is still available.
    """
    request.state.log_body = None
    if request.method != "POST":
        return
    if "application/json" not in request.headers.get("content-type", ""):
        return
    body = await request.body()
    try:
        request.state.log_body = json.loads(body or b"{}")
    except ValueError:
        logger.debug("Request body on %s is not valid JSON", request.url.path)


def _request_body_for_log(request: Request) -> Any:
    return redact_payload(getattr(request.state, "log_body", None))


async def _intake_error_handler(request: Request, exc: IntakeError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s (%s)", request.method, request.url.path, exc.status_code, exc.code)
    return JSONResponse(exc.to_payload(), status_code=exc.status_code)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    if any(err.get("type") == "json_invalid" for err in exc.errors()):
        return JSONResponse(
            {
                "error": "Invalid JSON format",
                "message": "Please check your request body format",
                "code": "INVALID_JSON",
            },
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())[1:]) or "body",
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(ValidationFailed(details).to_payload(), status_code=status.HTTP_400_BAD_REQUEST)


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        logger.warning("404 - %s %s", request.method, request.url.path)
        return JSONResponse(
            {
                "error": "Route not found",
                "message": f"Cannot {request.method} {request.url.path}",
                "path": request.url.path,
                "method": request.method,
                "code": "ROUTE_NOT_FOUND",
            },
            status_code=exc.status_code,
        )
    return JSONResponse(
        {"error": str(exc.detail), "message": str(exc.detail), "code": "HTTP_ERROR"},
        status_code=exc.status_code,
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    body = _request_body_for_log(request)
    logger.error(
        "Unhandled error on %s %s: %s (body=%s)",
        request.method,
        request.url.path,
        exc,
        body,
        exc_info=exc,
    )
    payload: dict[str, Any] = {
        "error": "Internal server error",
        "message": "An unexpected error occurred",
        "code": "INTERNAL_ERROR",
    }
    if config.DEBUG:
        payload["stack"] = "".join(traceback.format_exception(exc))
    return JSONResponse(payload, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(IntakeError, _intake_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
