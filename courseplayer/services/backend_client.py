# courseplayer/services/backend_client.py
"""
Cliente HTTP del backend REST de cursos.

Cubre la consulta de acceso a videos, el estado de compra, la lectura y
escritura de progreso, el dashboard y la creación de sesiones de pago.
Las fallas se traducen a la taxonomía de courseplayer.core.exceptions.
"""
import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from courseplayer.core.config import settings
from courseplayer.core.exceptions import (
    AuthRequired,
    BackendError,
    NetworkError,
    NotFound,
    ServerError,
)
from courseplayer.core.logging_config import log_backend_call
from courseplayer.schemas.course import CheckoutSession, CourseVideos, PurchaseStatus
from courseplayer.schemas.progress import (
    CourseProgress,
    DashboardCourse,
    Progress,
    ProgressUpdateRequest,
    ProgressUpdateResult,
)

logger = logging.getLogger(__name__)


def _data(payload: Any) -> Any:
    """El backend envuelve casi todas las respuestas en {"success", "data"}."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


class BackendClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        json: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        started = time.perf_counter()
        try:
            response = await self._client.request(
                method,
                path,
                headers=headers,
                json=json,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.TimeoutException as e:
            log_backend_call(logger, method, path, error_code="timeout")
            raise NetworkError(f"Timeout al llamar {method} {path}") from e
        except httpx.TransportError as e:
            log_backend_call(logger, method, path, error_code="transport")
            raise NetworkError(f"Error de red al llamar {method} {path}: {e}") from e

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        log_backend_call(logger, method, path, status_code=response.status_code, response_time_ms=elapsed_ms)

        try:
            payload = response.json()
        except ValueError:
            # Un proxy o el servidor devolvió HTML en lugar de JSON
            payload = None

        if response.is_success:
            if payload is None:
                raise ServerError(
                    f"Respuesta no JSON en {method} {path}", status_code=response.status_code
                )
            return payload

        message = None
        if isinstance(payload, dict):
            message = payload.get("message") or payload.get("error")
        message = message or f"{method} {path} respondió {response.status_code}"

        if response.status_code in (401, 403):
            raise AuthRequired(message, status_code=response.status_code)
        if response.status_code == 404:
            raise NotFound(message, status_code=response.status_code)
        if response.status_code >= 500:
            raise ServerError(message, status_code=response.status_code)
        raise BackendError(message, status_code=response.status_code)

    def _parse(self, model, payload: Any, path: str):
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise ServerError(f"Respuesta inválida de {path}: {e.error_count()} errores") from e

    # --- Consulta de acceso a videos ---

    async def get_course_videos(self, course_id: str, token: Optional[str] = None) -> CourseVideos:
        """
        Videos del curso con la decisión de acceso del servidor. Sin token
        devuelve igualmente las vistas previas gratuitas.
        """
        path = settings.videos_path_template.format(course_id=course_id)
        payload = await self._request("GET", path, token=token)
        return self._parse(CourseVideos, _data(payload), path)

    # --- Estado de compra ---

    async def get_purchase_status(self, course_id: str, token: Optional[str]) -> PurchaseStatus:
        if not token:
            raise AuthRequired("Se requiere sesión para consultar la compra")
        path = f"/api/payment/check-purchase/{course_id}"
        payload = await self._request("GET", path, token=token)
        return self._parse(PurchaseStatus, _data(payload), path)

    # --- Progreso ---

    async def get_video_progress(self, course_id: str, video_id: str, token: str) -> Optional[Progress]:
        path = f"/api/progress/video/{course_id}/{video_id}"
        data = _data(await self._request("GET", path, token=token))
        if isinstance(data, dict) and "progress" in data:
            data = data["progress"]
        if not data:
            return None
        return self._parse(Progress, data, path)

    async def update_progress(
        self,
        update: ProgressUpdateRequest,
        token: str,
        timeout: Optional[float] = None,
    ) -> ProgressUpdateResult:
        path = "/api/progress/update"
        payload = await self._request(
            "POST",
            path,
            token=token,
            json=update.model_dump(by_alias=True),
            timeout=timeout if timeout is not None else settings.PROGRESS_FLUSH_TIMEOUT_SECONDS,
        )
        data = _data(payload) or {}
        result = ProgressUpdateResult()
        if isinstance(data, dict):
            if data.get("progress"):
                result.progress = self._parse(Progress, data["progress"], path)
            overall = data.get("overallProgress") or data.get("courseProgress")
            if overall:
                result.course_progress = self._parse(CourseProgress, overall, path)
                result.course_progress.is_authoritative = True
        return result

    async def get_course_progress(self, course_id: str, token: str) -> Optional[CourseProgress]:
        path = f"/api/progress/course/{course_id}"
        data = _data(await self._request("GET", path, token=token))
        overall = data.get("overallProgress") if isinstance(data, dict) else None
        if not overall:
            return None
        course_progress = self._parse(CourseProgress, overall, path)
        course_progress.is_authoritative = True
        return course_progress

    async def get_dashboard(self, token: str) -> List[DashboardCourse]:
        path = "/api/progress/dashboard"
        data = _data(await self._request("GET", path, token=token))
        courses = data.get("courses") if isinstance(data, dict) else None
        if not isinstance(courses, list):
            return []
        return [self._parse(DashboardCourse, course, path) for course in courses]

    # --- Pago ---

    async def create_checkout_session(
        self,
        course_id: str,
        token: str,
        timeout: Optional[float] = None,
    ) -> CheckoutSession:
        path = "/api/payment/create-checkout-session"
        payload = await self._request(
            "POST",
            path,
            token=token,
            json={"courseId": course_id},
            timeout=timeout if timeout is not None else settings.CHECKOUT_TIMEOUT_SECONDS,
        )
        return self._parse(CheckoutSession, _data(payload), path)
