"""Map domain errors to JSON responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from lumina.errors import LuminaError, ValidationFailed

logger = logging.getLogger(__name__)


def _field_path(loc: tuple) -> str:
    # Drop the leading "body"/"query" marker FastAPI adds
    parts = [str(p) for p in loc[1:]] or [str(p) for p in loc]
    return ".".join(parts)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(LuminaError)
    async def lumina_error_handler(request: Request, exc: LuminaError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors: dict[str, list[str]] = {}
        for error in exc.errors():
            errors.setdefault(_field_path(tuple(error.get("loc", ()))), []).append(error.get("msg", "Invalid value"))
        failure = ValidationFailed(errors)
        return JSONResponse(status_code=failure.status_code, content=failure.to_dict())
