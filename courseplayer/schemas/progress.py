# courseplayer/schemas/progress.py
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


def _clamp_percentage(value: Any) -> float:
    try:
        number = float(value or 0)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(100.0, number))


def _non_negative(value: Any) -> float:
    try:
        number = float(value or 0)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, number)


class Progress(BaseModel):
    """
    Progreso de un usuario sobre un video.
    `is_completed` es pegajoso: una vez verdadero no vuelve a falso.
    """
    model_config = ConfigDict(populate_by_name=True)

    watched_duration: float = Field(0.0, alias="watchedDuration")
    total_duration: float = Field(0.0, alias="totalDuration")
    watched_percentage: float = Field(0.0, alias="watchedPercentage")
    completion_percentage: float = Field(0.0, alias="completionPercentage")
    is_completed: bool = Field(False, alias="isCompleted")
    last_position: float = Field(0.0, alias="lastPosition")

    @field_validator("watched_duration", "total_duration", "last_position", mode="before")
    @classmethod
    def _seconds(cls, value):
        return _non_negative(value)

    @field_validator("watched_percentage", "completion_percentage", mode="before")
    @classmethod
    def _percentage(cls, value):
        return _clamp_percentage(value)

    @model_validator(mode="after")
    def _pin_completed(self):
        if self.is_completed:
            self.watched_percentage = 100.0
            self.completion_percentage = 100.0
        return self

    @property
    def is_blank(self) -> bool:
        """Sin avance registrado."""
        return self.watched_duration == 0 and self.last_position == 0 and not self.is_completed

    def absorb(self, incoming: "Progress") -> "Progress":
        """
        Aplica un registro más reciente conservando la completitud y el
        máximo de duración vista.
        """
        merged = incoming.model_copy()
        merged.watched_duration = max(self.watched_duration, incoming.watched_duration)
        if self.is_completed or incoming.is_completed:
            merged.is_completed = True
            merged.watched_percentage = 100.0
            merged.completion_percentage = 100.0
        return merged

    def absorb_completion(self, incoming: "Progress") -> "Progress":
        """
        Toma de un registro desactualizado únicamente la completitud.
        """
        if self.is_completed or not incoming.is_completed:
            return self
        merged = self.model_copy()
        merged.is_completed = True
        merged.watched_percentage = 100.0
        merged.completion_percentage = 100.0
        return merged


class CourseProgress(BaseModel):
    """
    Agregado del progreso de un curso. Si `is_authoritative` es verdadero
    proviene del backend y no se recalcula con datos locales.
    """
    model_config = ConfigDict(populate_by_name=True)

    total_videos: int = Field(0, alias="totalVideos")
    completed_videos: int = Field(0, alias="completedVideos")
    course_progress_percentage: float = Field(
        0.0, validation_alias=AliasChoices("courseProgressPercentage", "totalProgress", "course_progress_percentage"),
        serialization_alias="courseProgressPercentage",
    )
    last_watched_video: Optional[str] = Field(None, alias="lastWatchedVideo")
    last_watched_position: float = Field(0.0, alias="lastWatchedPosition")
    total_watched_duration: float = Field(0.0, alias="totalWatchedDuration")
    course_total_duration: float = Field(0.0, alias="courseTotalDuration")
    is_completed: bool = Field(False, alias="isCompleted")
    is_authoritative: bool = Field(False, exclude=True)

    @field_validator("course_progress_percentage", mode="before")
    @classmethod
    def _percentage(cls, value):
        return _clamp_percentage(value)

    @field_validator("total_videos", "completed_videos", mode="before")
    @classmethod
    def _count(cls, value):
        return int(_non_negative(value))

    @field_validator("last_watched_position", "total_watched_duration", "course_total_duration", mode="before")
    @classmethod
    def _seconds(cls, value):
        return _non_negative(value)

    @field_validator("last_watched_video", mode="before")
    @classmethod
    def _video_reference(cls, value):
        # El backend puede enviar el video poblado en lugar del id
        if isinstance(value, dict):
            value = value.get("_id") or value.get("id")
        return str(value) if value else None

    @model_validator(mode="after")
    def _derive_completion(self):
        if not self.is_completed:
            self.is_completed = (
                self.total_videos > 0
                and self.course_progress_percentage >= 100
                and self.completed_videos >= self.total_videos
            )
        return self

    @property
    def rounded_percentage(self) -> int:
        return int(round(self.course_progress_percentage))


class ProgressUpdateRequest(BaseModel):
    """Cuerpo de POST /api/progress/update."""
    model_config = ConfigDict(populate_by_name=True)

    course_id: str = Field(..., alias="courseId")
    video_id: str = Field(..., alias="videoId")
    watched_duration: float = Field(..., ge=0, alias="watchedDuration")
    total_duration: float = Field(..., ge=0, alias="totalDuration")
    timestamp: float = Field(..., ge=0, description="Última posición en segundos")


class ProgressUpdateResult(BaseModel):
    progress: Optional[Progress] = None
    course_progress: Optional[CourseProgress] = None


class ProgressEvent(BaseModel):
    """
    Notificación de cambio de progreso entre vistas del mismo curso.
    """
    user_id: str
    course_id: str
    video_id: Optional[str] = None
    progress: Optional[Progress] = None
    course_progress: Optional[CourseProgress] = None
    source: str = "local"
    origin: Optional[str] = None
    sequence: int = 0


class DashboardCourse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., validation_alias=AliasChoices("_id", "id", "courseId"), serialization_alias="id")
    title: str = ""
    progress: float = 0.0
    is_completed: bool = Field(False, alias="isCompleted")

    @field_validator("progress", mode="before")
    @classmethod
    def _percentage(cls, value):
        return _clamp_percentage(value)


class DashboardStats(BaseModel):
    total_courses: int = 0
    completed_courses: int = 0
    in_progress_courses: int = 0
    not_started_courses: int = 0
    average_progress: int = 0


class DashboardResponse(BaseModel):
    stats: DashboardStats
    courses: List[DashboardCourse] = []
