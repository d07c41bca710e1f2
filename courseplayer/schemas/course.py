# courseplayer/schemas/course.py
import enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from courseplayer.schemas.progress import Progress
from courseplayer.utils.durations import format_duration, parse_duration

# Valores que el backend o el navegador dejan en el campo de URL cuando todavía
# no existe un enlace reproducible.
PLACEHOLDER_MEDIA_URLS = {"undefined", "null", "none"}


class ViewerState(str, enum.Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED_NOT_PURCHASED = "authenticated_not_purchased"
    AUTHENTICATED_PURCHASED = "authenticated_purchased"


class AccessDecision(str, enum.Enum):
    ACCESSIBLE = "accessible"
    LOCKED_REQUIRES_SIGN_IN = "locked_requires_sign_in"
    LOCKED_REQUIRES_PURCHASE = "locked_requires_purchase"


class MediaAvailability(str, enum.Enum):
    ACCESSIBLE = "accessible"
    NOT_YET_AVAILABLE = "not_yet_available"
    DENIED = "denied"


class Video(BaseModel):
    """
    Video de un curso tal como lo devuelve la consulta de acceso.
    La duración se normaliza a segundos al ingresar.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., validation_alias=AliasChoices("_id", "id", "videoId"))
    title: str = ""
    duration_seconds: float = Field(0.0, validation_alias=AliasChoices("duration", "duration_seconds"))
    has_access: bool = Field(False, validation_alias=AliasChoices("hasAccess", "has_access"))
    is_free_preview: bool = Field(False, validation_alias=AliasChoices("isFreePreview", "is_free_preview"))
    media_url: Optional[str] = Field(None, validation_alias=AliasChoices("videoUrl", "media_url"))
    progress: Progress = Field(default_factory=Progress)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        return str(value)

    @field_validator("title", mode="before")
    @classmethod
    def _title(cls, value):
        # Títulos bilingües: {"en": ..., "es": ...}
        if isinstance(value, dict):
            return value.get("en") or next(iter(value.values()), "")
        return value or ""

    @field_validator("duration_seconds", mode="before")
    @classmethod
    def _normalize_duration(cls, value):
        return parse_duration(value)

    @field_validator("media_url", mode="before")
    @classmethod
    def _normalize_media_url(cls, value):
        if not isinstance(value, str):
            return None
        value = value.strip()
        if not value or value.lower() in PLACEHOLDER_MEDIA_URLS:
            return None
        return value

    @field_validator("progress", mode="before")
    @classmethod
    def _default_progress(cls, value):
        return value or {}

    @property
    def formatted_duration(self) -> str:
        return format_duration(self.duration_seconds)


class CourseVideos(BaseModel):
    """
    Respuesta de GET /api/videos/course/{courseId}/version/{n}.
    """
    model_config = ConfigDict(populate_by_name=True)

    videos: List[Video] = []
    user_has_purchased: bool = Field(False, alias="userHasPurchased")


class PurchaseStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    has_purchased: bool = Field(False, alias="hasPurchased")
    course_id: Optional[str] = Field(None, alias="courseId")


class CheckoutSession(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(None, alias="sessionId")
    url: str

    @field_validator("url")
    @classmethod
    def _require_url(cls, value):
        if not value or not value.strip():
            raise ValueError("La sesión de pago no incluye URL de redirección")
        return value.strip()
