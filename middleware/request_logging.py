# MIDDLEWARE DE LOGGING DE PETICIONES DEL REPRODUCTOR
# Asigna un request id a cada peticion y registra metodo, ruta, status y latencia

import json
import logging
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger('courseplayer.requests')


def generate_request_id() -> str:
    return f'req_{uuid.uuid4().hex[:12]}'


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = generate_request_id()
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                f'Unhandled error: {request.method} {request.url.path}',
                extra={'method': request.method, 'endpoint': request.url.path, 'status_code': 500},
            )
            response = Response(
                content=json.dumps({'error': 'Internal server error', 'request_id': request_id}),
                status_code=500,
                media_type='application/json'
            )
            response.headers['X-Request-ID'] = request_id
            return response

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        response.headers['X-Request-ID'] = request_id
        response.headers['X-Response-Time-Ms'] = str(elapsed_ms)
        logger.info(
            f'{request.method} {request.url.path} {response.status_code} {elapsed_ms}ms',
            extra={
                'method': request.method,
                'endpoint': request.url.path,
                'status_code': response.status_code,
                'response_time_ms': elapsed_ms,
            },
        )
        return response
