from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cardshop.core.logging import get_logger

logger = get_logger("http")

ADMIN_PREFIX = "/admin"


def _is_admin_surface(request: Request) -> bool:
    return request.url.path.startswith(ADMIN_PREFIX)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else "Error"
    return JSONResponse({"error": detail}, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    body: dict = {"error": "Validation failed"}
    # public endpoints never say which field failed
    if _is_admin_surface(request):
        body["details"] = jsonable_encoder(exc.errors())
    return JSONResponse(body, status_code=400)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled error",
        extra={"path": request.url.path, "method": request.method, "error": repr(exc)},
        exc_info=exc,
    )
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
