# courseplayer/api/v1/endpoints/player.py
"""
Endpoints del reproductor de cursos. Cada vista abierta tiene su propio
reproductor, identificado por usuario, curso y X-Player-ID; el token del
header Authorization se reenvía al backend.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, status

from courseplayer.api.deps import get_player_id, get_registry, get_token, to_http_exception
from courseplayer.core.exceptions import CoursePlayerException
from courseplayer.schemas.player import (
    MediaResponse,
    OpenPlayerRequest,
    PlaybackEventRequest,
    PlayerState,
    PurchaseResponse,
    SelectVideoRequest,
)
from courseplayer.services.course_player import CoursePlayer, PlayerRegistry

router = APIRouter()
logger = logging.getLogger(__name__)


def _get_player(
    registry: PlayerRegistry,
    token: Optional[str],
    course_id: str,
    player_id: Optional[str] = None,
) -> CoursePlayer:
    player = registry.get(token, course_id, player_id)
    if player is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error_code": "player_not_open", "message": f"El curso {course_id} no está abierto"},
        )
    return player


@router.post("/courses/{course_id}/open", response_model=PlayerState, summary="Abrir el reproductor de un curso")
async def open_course(
    course_id: str,
    request: Optional[OpenPlayerRequest] = Body(None),
    referer: Optional[str] = Header(None),
    token: Optional[str] = Depends(get_token),
    player_id: Optional[str] = Depends(get_player_id),
    registry: PlayerRegistry = Depends(get_registry),
):
    """
    Carga los videos con su decisión de acceso, el estado de compra y el
    progreso, y selecciona el primer video accesible. Sin X-Player-ID una
    vista anónima recibe un id nuevo en `player_id`. La dirección de la
    página se toma de `pageUrl` o, en su defecto, del header Referer.
    """
    page_url = request.page_url if request is not None and request.page_url else referer
    try:
        player = await registry.open(token, course_id, player_id=player_id, page_url=page_url)
    except CoursePlayerException as e:
        raise to_http_exception(e)
    return player.state()


@router.get("/courses/{course_id}", response_model=PlayerState, summary="Estado del reproductor")
async def get_player_state(
    course_id: str,
    token: Optional[str] = Depends(get_token),
    player_id: Optional[str] = Depends(get_player_id),
    registry: PlayerRegistry = Depends(get_registry),
):
    return _get_player(registry, token, course_id, player_id).state()


@router.post("/courses/{course_id}/select", response_model=PlayerState, summary="Seleccionar un video")
async def select_video(
    course_id: str,
    request: SelectVideoRequest,
    token: Optional[str] = Depends(get_token),
    player_id: Optional[str] = Depends(get_player_id),
    registry: PlayerRegistry = Depends(get_registry),
):
    """
    Un video bloqueado no interrumpe el video actual: el estado queda en
    `locked` con la remediación correspondiente.
    """
    player = _get_player(registry, token, course_id, player_id)
    try:
        return await player.select(request.video_id)
    except CoursePlayerException as e:
        raise to_http_exception(e)


@router.post("/courses/{course_id}/events", response_model=PlayerState, summary="Evento del elemento de video")
async def playback_event(
    course_id: str,
    event: PlaybackEventRequest,
    token: Optional[str] = Depends(get_token),
    player_id: Optional[str] = Depends(get_player_id),
    registry: PlayerRegistry = Depends(get_registry),
):
    player = _get_player(registry, token, course_id, player_id)
    try:
        return await player.handle_event(event)
    except CoursePlayerException as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@router.get(
    "/courses/{course_id}/videos/{video_id}/media",
    response_model=MediaResponse,
    summary="Enlace reproducible de un video",
)
async def get_media(
    course_id: str,
    video_id: str,
    token: Optional[str] = Depends(get_token),
    player_id: Optional[str] = Depends(get_player_id),
    registry: PlayerRegistry = Depends(get_registry),
):
    player = _get_player(registry, token, course_id, player_id)
    try:
        return player.media(video_id)
    except CoursePlayerException as e:
        raise to_http_exception(e)


@router.post("/courses/{course_id}/retry", response_model=PlayerState, summary="Reintentar la carga del video")
async def retry_media(
    course_id: str,
    token: Optional[str] = Depends(get_token),
    player_id: Optional[str] = Depends(get_player_id),
    registry: PlayerRegistry = Depends(get_registry),
):
    player = _get_player(registry, token, course_id, player_id)
    try:
        return player.retry()
    except CoursePlayerException as e:
        raise to_http_exception(e)


@router.post("/courses/{course_id}/dismiss-lock", response_model=PlayerState, summary="Cerrar el aviso de bloqueo")
async def dismiss_lock(
    course_id: str,
    token: Optional[str] = Depends(get_token),
    player_id: Optional[str] = Depends(get_player_id),
    registry: PlayerRegistry = Depends(get_registry),
):
    player = _get_player(registry, token, course_id, player_id)
    try:
        return player.dismiss_lock()
    except CoursePlayerException as e:
        raise to_http_exception(e)


@router.post("/courses/{course_id}/purchase", response_model=PurchaseResponse, summary="Iniciar la compra del curso")
async def purchase_course(
    course_id: str,
    token: Optional[str] = Depends(get_token),
    player_id: Optional[str] = Depends(get_player_id),
    registry: PlayerRegistry = Depends(get_registry),
):
    """
    Devuelve la URL del proveedor de pago a la que debe redirigirse la página.
    Sin sesión responde 401; la navegación a inicio de sesión es del cliente.
    """
    player = _get_player(registry, token, course_id, player_id)
    try:
        session = await player.start_purchase()
    except CoursePlayerException as e:
        raise to_http_exception(e)

    if session is None:
        return PurchaseResponse(already_purchased=True)
    return PurchaseResponse(redirect_url=session.url, session_id=session.session_id)


@router.post("/courses/{course_id}/checkout-return", response_model=PlayerState, summary="Regreso del checkout")
async def checkout_return(
    course_id: str,
    token: Optional[str] = Depends(get_token),
    player_id: Optional[str] = Depends(get_player_id),
    registry: PlayerRegistry = Depends(get_registry),
):
    player = _get_player(registry, token, course_id, player_id)
    try:
        return await player.on_checkout_return()
    except CoursePlayerException as e:
        raise to_http_exception(e)


@router.post("/courses/{course_id}/close", summary="Cerrar el reproductor")
async def close_course(
    course_id: str,
    token: Optional[str] = Depends(get_token),
    player_id: Optional[str] = Depends(get_player_id),
    registry: PlayerRegistry = Depends(get_registry),
):
    """
    Escribe el progreso pendiente y libera el reproductor.
    """
    closed = await registry.close(token, course_id, player_id)
    logger.info(f"Reproductor cerrado: course={course_id}, closed={closed}")
    return {"closed": closed, "course_id": course_id}
