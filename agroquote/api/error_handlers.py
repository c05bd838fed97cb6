"""
Centralized API error handling.

Goals:
- consistent error response shape
- include request_id for correlation
- avoid leaking internal exception details on 500
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from agroquote.shared.exceptions import AgroQuoteError
from agroquote.utility.logging_client import get_request_id, logger, set_request_id


def _ensure_request_id() -> str:
    rid = get_request_id()
    if rid:
        return rid
    return set_request_id()


def _error_payload(
    *,
    code: str,
    message: str,
    request_id: str,
    details: Optional[Any] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "status": "error",
        "error": {
            "code": code,
            "message": message,
            "request_id": request_id,
        },
    }
    if details is not None:
        payload["error"]["details"] = details
    return payload


def install_error_handlers(app: FastAPI) -> None:
    """
    Attach consistent error handlers to a FastAPI app.
    """

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        rid = _ensure_request_id()
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(
                code="http_error",
                message=message,
                request_id=rid,
                details=None if isinstance(exc.detail, str) else {"detail": exc.detail},
            ),
            headers={"X-Request-ID": rid},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        rid = _ensure_request_id()
        return JSONResponse(
            status_code=422,
            content=_error_payload(
                code="validation_error",
                message="Validation error",
                request_id=rid,
                details=jsonable_errors(exc),
            ),
            headers={"X-Request-ID": rid},
        )

    @app.exception_handler(AgroQuoteError)
    async def app_error_handler(request: Request, exc: AgroQuoteError) -> JSONResponse:
        rid = _ensure_request_id()
        logger.log_exception(exc, component="http", context={"path": str(request.url.path)})
        return JSONResponse(
            status_code=500,
            content=_error_payload(code="app_error", message=exc.message, request_id=rid),
            headers={"X-Request-ID": rid},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        rid = _ensure_request_id()
        logger.log_exception(
            exc,
            component="http",
            context={
                "path": str(request.url.path),
                "method": request.method,
            },
        )
        return JSONResponse(
            status_code=500,
            content=_error_payload(
                code="internal_error",
                message="Internal server error",
                request_id=rid,
            ),
            headers={"X-Request-ID": rid},
        )


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold exception instances which are not JSON serializable
    errors = []
    for err in exc.errors():
        err = dict(err)
        if "ctx" in err:
            err["ctx"] = {k: str(v) for k, v in err["ctx"].items()}
        errors.append(err)
    return errors
