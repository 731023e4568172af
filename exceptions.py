"""
Domain error taxonomy.

Services raise these, never HTTPException. The handlers registered in
main.py turn them into JSON error bodies with the matching status code.
"""
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from logging_config import get_logger

log = get_logger(__name__)


class DomainError(Exception):
    """Base class for business-rule failures."""
    code: str = "domain_error"
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if code is not None:
            self.code = code
        self.details = details


class NotFoundError(DomainError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ValidationError(DomainError):
    code = "validation_error"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class ConflictError(DomainError):
    code = "conflict"
    status_code = status.HTTP_409_CONFLICT


class ExternalServiceError(DomainError):
    """Payment gateway, identity provider or email provider failure."""
    code = "external_service_error"
    status_code = status.HTTP_502_BAD_GATEWAY


class PaymentDeclinedError(ExternalServiceError):
    code = "payment_declined"
    status_code = status.HTTP_402_PAYMENT_REQUIRED


def _error_body(exc: DomainError) -> Dict[str, Any]:
    return {"error": {"code": exc.code, "message": exc.message, "details": exc.details}}


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    log.warning(
        "domain_error",
        code=exc.code,
        message=exc.message,
        path=request.url.path,
        method=request.method,
    )
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
