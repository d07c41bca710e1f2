# courseplayer/api/deps.py
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from courseplayer.core.exceptions import (
    AccessDenied,
    AuthRequired,
    BackendError,
    CheckoutCreationFailed,
    CoursePlayerException,
    InvalidTransition,
    NotFound,
    RetryLimitExceeded,
)
from courseplayer.core.security import parse_bearer
from courseplayer.crud.crud_snapshot import SnapshotStore
from courseplayer.services import access_resolver
from courseplayer.services.backend_client import BackendClient
from courseplayer.services.course_player import PlayerRegistry


def get_registry(request: Request) -> PlayerRegistry:
    return request.app.state.registry


def get_snapshot_store(request: Request) -> SnapshotStore:
    return request.app.state.snapshot_store


def get_backend_client(request: Request) -> BackendClient:
    return request.app.state.backend_client


def get_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """
    Token del usuario tomado del header Authorization. Se reenvía tal cual
    al backend, que es quien lo verifica.
    """
    return parse_bearer(authorization)


def get_player_id(x_player_id: Optional[str] = Header(None)) -> Optional[str]:
    """
    Id de la vista del reproductor. Lo entrega `/open` y el cliente lo
    reenvía en X-Player-ID; es obligatorio para las vistas anónimas.
    """
    return x_player_id.strip() if x_player_id and x_player_id.strip() else None


def to_http_exception(error: CoursePlayerException) -> HTTPException:
    """
    Traduce un error del reproductor a la respuesta HTTP del player host.
    """
    detail = {"error_code": error.error_code, "message": error.message}

    if isinstance(error, AccessDenied):
        detail["remediation"] = access_resolver.remediation_for(error.decision)
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
    if isinstance(error, AuthRequired):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)
    if isinstance(error, (InvalidTransition, RetryLimitExceeded)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)
    if isinstance(error, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    if isinstance(error, (CheckoutCreationFailed, BackendError)):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)
