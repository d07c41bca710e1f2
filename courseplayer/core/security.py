from typing import Optional

from jose import JWTError, jwt


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    """
    Extrae el token de un header 'Authorization: Bearer <token>'.
    """
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_viewer_id(token: Optional[str]) -> Optional[str]:
    """
    Obtiene el id del usuario a partir del token, sin verificar la firma.
    El cliente no posee el secreto; el backend verifica el token en cada llamada.
    El id solo se usa para acotar notificaciones y snapshots locales.
    """
    if not token:
        return None
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    viewer_id = claims.get("userId") or claims.get("_id") or claims.get("sub")
    return str(viewer_id) if viewer_id else None
