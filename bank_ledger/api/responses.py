"""
JSON envelopes and error mapping

Success: {"success": true, "message"?, "data"}
Failure: {"success": false, "message", "error_kind"} plus "error" with the
diagnostic string on 500 responses only.
"""

from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import ErrorKind, LedgerError, StoreFailure
from ..logging_config import get_logger


logger = get_logger("bank_ledger.api")

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INSUFFICIENT_FUNDS: status.HTTP_400_BAD_REQUEST,
    ErrorKind.SELF_TRANSFER: status.HTTP_400_BAD_REQUEST,
    ErrorKind.AUTHENTICATION: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.DUPLICATE_ACCOUNT: status.HTTP_409_CONFLICT,
    ErrorKind.STORE_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def success_response(data: Any, message: Optional[str] = None,
                     status_code: int = status.HTTP_200_OK) -> JSONResponse:
    content = {"success": True}
    if message:
        content["message"] = message
    content["data"] = data
    return JSONResponse(status_code=status_code, content=content)


def error_response(error: LedgerError) -> JSONResponse:
    content = {
        "success": False,
        "message": error.message,
        "error_kind": error.kind.value,
    }
    if isinstance(error, StoreFailure):
        content["error"] = error.detail
    return JSONResponse(
        status_code=STATUS_BY_KIND.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content=content,
    )


def install_exception_handlers(app: FastAPI) -> None:
    """Render every failure with the failure envelope"""

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "message": "Invalid request",
                "error_kind": ErrorKind.VALIDATION.value,
                "errors": errors,
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        message = "Endpoint not found" if exc.status_code == 404 else str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": message},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": "Internal server error", "error": str(exc)},
        )
