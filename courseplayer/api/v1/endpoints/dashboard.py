# courseplayer/api/v1/endpoints/dashboard.py
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from courseplayer.api.deps import get_backend_client, get_token, to_http_exception
from courseplayer.core.exceptions import AuthRequired, CoursePlayerException
from courseplayer.schemas.progress import DashboardResponse
from courseplayer.services import dashboard
from courseplayer.services.backend_client import BackendClient

router = APIRouter()


@router.get("/dashboard", response_model=DashboardResponse, summary="Progreso de los cursos comprados")
async def get_dashboard(
    filter: str = Query("all", description="all | in-progress | completed"),
    search: Optional[str] = Query(None, description="Búsqueda por título"),
    token: Optional[str] = Depends(get_token),
    client: BackendClient = Depends(get_backend_client),
):
    """
    Las estadísticas se calculan sobre todos los cursos; el filtro y la
    búsqueda solo afectan la lista devuelta.
    """
    if filter not in dashboard.COURSE_FILTERS:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Filtro inválido. Opciones: {', '.join(dashboard.COURSE_FILTERS)}",
        )
    try:
        if not token:
            raise AuthRequired("Inicia sesión para ver tu progreso")
        return await dashboard.load_dashboard(client, token, status=filter, search=search)
    except CoursePlayerException as e:
        raise to_http_exception(e)
