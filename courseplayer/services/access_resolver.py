# courseplayer/services/access_resolver.py
"""
Fuente única de la decisión de acceso a un video.

Reglas:
- AUTHENTICATED_PURCHASED => ACCESSIBLE para todos los videos del curso.
- ANONYMOUS / AUTHENTICATED_NOT_PURCHASED => ACCESSIBLE solo si el video es
  vista previa gratuita; si no, LOCKED_REQUIRES_SIGN_IN (anónimo) o
  LOCKED_REQUIRES_PURCHASE (autenticado).

La decisión es una función pura de sus entradas y nunca se guarda en caché:
se recalcula cada vez que cambia el estado de compra o la lista de videos.
"""
from typing import Optional

from courseplayer.schemas.course import AccessDecision, MediaAvailability, Video, ViewerState


def resolve(video: Video, viewer_state: ViewerState) -> AccessDecision:
    if viewer_state == ViewerState.AUTHENTICATED_PURCHASED:
        return AccessDecision.ACCESSIBLE

    if video.is_free_preview:
        return AccessDecision.ACCESSIBLE

    if viewer_state == ViewerState.ANONYMOUS:
        return AccessDecision.LOCKED_REQUIRES_SIGN_IN

    return AccessDecision.LOCKED_REQUIRES_PURCHASE


def media_availability(
    video: Video,
    decision: AccessDecision,
    page_url: Optional[str] = None,
) -> MediaAvailability:
    """
    Estado del enlace reproducible de un video.

    Un video accesible sin URL utilizable (vacía, marcador de posición o la
    misma dirección de la página) todavía no está disponible: es una condición
    transitoria mientras se refresca el enlace, no un bloqueo.
    """
    if decision != AccessDecision.ACCESSIBLE:
        return MediaAvailability.DENIED

    url = video.media_url
    if not url:
        return MediaAvailability.NOT_YET_AVAILABLE
    if page_url and url == page_url.strip():
        return MediaAvailability.NOT_YET_AVAILABLE

    return MediaAvailability.ACCESSIBLE


def viewer_state_for(token: Optional[str], has_purchased: bool) -> ViewerState:
    if not token:
        return ViewerState.ANONYMOUS
    if has_purchased:
        return ViewerState.AUTHENTICATED_PURCHASED
    return ViewerState.AUTHENTICATED_NOT_PURCHASED


def remediation_for(decision: AccessDecision) -> Optional[str]:
    """
    Acción que se ofrece al usuario para desbloquear el video.
    """
    if decision == AccessDecision.LOCKED_REQUIRES_SIGN_IN:
        return "sign_in"
    if decision == AccessDecision.LOCKED_REQUIRES_PURCHASE:
        return "purchase"
    return None
