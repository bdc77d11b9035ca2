from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from geodir.kernel.errors import GeodirError

logger = structlog.get_logger()


def _get_request_id(request: Request) -> str | None:
    return getattr(getattr(request, "state", None), "request_id", None)


def _with_request_id(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    request_id = _get_request_id(request)
    if request_id:
        payload["request_id"] = request_id
    return payload


def register_exception_handlers(app: FastAPI) -> None:
    """Register geodir-wide exception handlers on a FastAPI app.

    Every error body has the shape `{detail, code, request_id?}` so clients can
    branch on `code` (e.g. `entry.version_conflict`) instead of status codes.
    """

    @app.exception_handler(GeodirError)
    async def _geodir_error_handler(request: Request, exc: GeodirError) -> Response:
        if exc.status_code >= 500:
            logger.error(
                "Request failed",
                path=request.url.path,
                code=exc.code,
                error=exc.message,
            )
        else:
            logger.info(
                "Request rejected",
                path=request.url.path,
                code=exc.code,
                status_code=exc.status_code,
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_public_dict(request_id=_get_request_id(request)),
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
        # `detail` may be a str or a list/dict; pass it through untouched.
        payload = _with_request_id({"detail": exc.detail, "code": f"http.{exc.status_code}"}, request)
        headers = dict(getattr(exc, "headers", None) or {})
        return JSONResponse(status_code=int(exc.status_code), content=payload, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
        payload = _with_request_id(
            {"detail": jsonable_errors(exc), "code": "http.validation_error"},
            request,
        )
        return JSONResponse(status_code=422, content=payload)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
        request_id = _get_request_id(request)
        logger.exception("Unhandled exception", request_id=request_id, error=str(exc))
        payload = _with_request_id({"detail": "Internal Server Error", "code": "internal.unhandled"}, request)
        return JSONResponse(status_code=500, content=payload)


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Pydantic error dicts can carry exception objects in `ctx`; stringify them."""
    out: list[dict[str, Any]] = []
    for err in exc.errors():
        item = dict(err)
        ctx = item.get("ctx")
        if isinstance(ctx, dict):
            item["ctx"] = {key: str(value) for key, value in ctx.items()}
        out.append(item)
    return out
