"""JSON error bodies shaped as ``{"error": ...}`` for every failure the API returns."""

import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.core import config

logger = logging.getLogger(__name__)


async def exception_handler(request: Request, exc: Exception):
    logger.error('Unhandled error on %s %s', request.method, request.url.path, exc_info=exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            'error': 'Internal server error',
            'detail': str(exc) if config.APP_ENV.lower() == 'development' else None,
        },
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info('Request validation failed on %s %s', request.method, request.url.path)

    return JSONResponse(
        status_code=422,
        content={
            'error': 'Invalid request.',
            'errors': [
                {'field': '.'.join(str(part) for part in error.get('loc', ())[1:]) or None, 'message': error.get('msg')}
                for error in exc.errors()
            ],
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        content = {'error': exc.detail.get('message'), **{k: v for k, v in exc.detail.items() if k != 'message'}}
    else:
        content = {'error': exc.detail}

    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, 'headers', None))
