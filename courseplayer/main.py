# courseplayer/main.py
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from courseplayer.api.v1.endpoints import health, player, dashboard
from courseplayer.core.config import settings
from courseplayer.core.logging_config import setup_logging
from courseplayer.crud.crud_snapshot import SnapshotStore
from courseplayer.db.session import create_session_factory
from courseplayer.services.backend_client import BackendClient
from courseplayer.services.course_player import PlayerRegistry
from middleware.request_logging import RequestLoggingMiddleware
import logging

logger = logging.getLogger('courseplayer')


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Flush final de todos los reproductores abiertos
    await app.state.registry.close_all()
    await app.state.backend_client.aclose()
    logger.info('Course player host stopped')


def create_app(
    backend_client: Optional[BackendClient] = None,
    snapshot_store: Optional[SnapshotStore] = None,
) -> FastAPI:
    app = FastAPI(
        title='Course Player API',
        description='''
        ## Reproductor de cursos en video

        - **Acceso**: decisión por video según sesión y compra del curso
        - **Reproducción**: sesión única por curso con reanudación desde la última posición
        - **Progreso**: escritura con cadencia acotada y flush en pausa, cambio de video y cierre
        - **Compra**: creación de la sesión de checkout y refresco al regresar
        - **Dashboard**: estadísticas y filtros del progreso por curso
        ''',
        version='1.0.0',
        openapi_url='/openapi.json',
        docs_url='/docs',
        redoc_url='/redoc',
        lifespan=lifespan,
    )

    app.state.backend_client = backend_client or BackendClient()
    app.state.snapshot_store = snapshot_store or SnapshotStore(create_session_factory())
    app.state.registry = PlayerRegistry(app.state.backend_client, app.state.snapshot_store)

    # Configurar CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )

    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health.router, prefix='/api/v1', tags=['Health Check'])
    app.include_router(player.router, prefix='/api/v1/player', tags=['Player'])
    app.include_router(dashboard.router, prefix='/api/v1', tags=['Dashboard'])

    @app.get('/metrics', include_in_schema=False)
    async def prometheus_metrics():
        """Endpoint de metricas para Prometheus"""
        return Response(
            generate_latest(),
            media_type=CONTENT_TYPE_LATEST
        )

    return app


# Configurar logging al inicio de la aplicacion
setup_logging()
app = create_app()
logger.info('Course player host starting up')

if __name__ == '__main__':
    import uvicorn
    uvicorn.run(app, host='0.0.0.0', port=8000)
