"""Translate InscribeError into JSON error responses."""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from ordinscribe.models.errors import (
    ErrorResponse,
    ExecutionError,
    InscribeError,
    ResourceError,
    TransportError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# (status code, guidance) per error class; the first isinstance match wins
ERROR_MAP: list[tuple[type[InscribeError], int, str]] = [
    (ValidationError, 400, "Check the uploaded file and inscription options."),
    (ExecutionError, 409, "Wait for the running step to finish, or reset the pipeline."),
    (TransportError, 502, "Check that the Ordinals node API is reachable and try again."),
    (ResourceError, 503, "The server is short on upload storage; try again shortly."),
]
FALLBACK = (500, "Please try again or contact support.")


def describe(exc: InscribeError) -> tuple[int, str]:
    for error_cls, status_code, guidance in ERROR_MAP:
        if isinstance(exc, error_cls):
            return status_code, guidance
    return FALLBACK


async def inscribe_error_handler(request: Request, exc: InscribeError) -> JSONResponse:
    status_code, guidance = describe(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({status_code}): {exc.message}")
    body = ErrorResponse.from_exception(exc, guidance)
    return JSONResponse(status_code=status_code, content=body.model_dump())
