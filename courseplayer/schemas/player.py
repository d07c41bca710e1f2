# courseplayer/schemas/player.py
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from courseplayer.schemas.course import AccessDecision, MediaAvailability, ViewerState
from courseplayer.schemas.progress import CourseProgress, Progress


class PlaylistEntry(BaseModel):
    """Video del playlist con su decisión de acceso vigente."""
    id: str
    title: str
    duration: str
    duration_seconds: float
    is_free_preview: bool
    decision: AccessDecision
    requires_purchase: bool
    availability: MediaAvailability
    remediation: Optional[str] = None
    progress: Progress


class SessionSnapshot(BaseModel):
    video_id: str
    is_playing: bool
    playback_rate: float
    current_time: float
    duration: float
    current_percentage: int
    start_position: float
    refreshing: bool
    error: Optional[str] = None
    retry_count: int
    max_retries: int
    can_retry: bool
    fallback_actions: List[str] = []


class LockedSnapshot(BaseModel):
    video_id: str
    decision: AccessDecision
    remediation: Optional[str] = None
    message: str


class PurchaseSnapshot(BaseModel):
    state: str
    error_message: Optional[str] = None
    pending_course_id: Optional[str] = None


class PlayerState(BaseModel):
    course_id: str
    player_id: Optional[str] = None
    viewer_state: ViewerState
    state: str
    session: Optional[SessionSnapshot] = None
    locked: Optional[LockedSnapshot] = None
    playlist: List[PlaylistEntry] = []
    total_duration: str = "0:00"
    no_free_preview: bool = False
    course_progress: Optional[CourseProgress] = None
    purchase: Optional[PurchaseSnapshot] = None


class OpenPlayerRequest(BaseModel):
    """Datos de la página que aloja al reproductor."""
    model_config = ConfigDict(populate_by_name=True)

    page_url: Optional[str] = Field(None, alias="pageUrl")


class SelectVideoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_id: str = Field(..., alias="videoId")


class PlaybackEventRequest(BaseModel):
    """
    Evento del elemento de video: play, pause, ended, error, time_update o rate.
    """
    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(..., pattern="^(play|pause|ended|error|time_update|rate)$")
    current_time: float = Field(0.0, ge=0, alias="currentTime")
    duration: float = Field(0.0, ge=0)
    playback_rate: Optional[float] = Field(None, gt=0, alias="playbackRate")
    message: Optional[str] = None


class PurchaseResponse(BaseModel):
    redirect_url: Optional[str] = None
    session_id: Optional[str] = None
    already_purchased: bool = False


class MediaResponse(BaseModel):
    """Enlace reproducible de un video accesible."""
    video_id: str
    availability: MediaAvailability
    media_url: Optional[str] = None
