# courseplayer/core/config.py
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Gestiona la configuración del reproductor cargando variables de entorno.
    Utiliza Pydantic para la validación de tipos.
    """
    model_config = SettingsConfigDict(
        env_file=".env", env_ignore_case=True, extra="ignore"
    )

    # --- Backend REST API ---
    API_BASE_URL: str = "http://localhost:5000"
    VIDEOS_API_VERSION: int = 1
    HTTP_TIMEOUT_SECONDS: float = 10.0
    PROGRESS_FLUSH_TIMEOUT_SECONDS: float = 10.0
    CHECKOUT_TIMEOUT_SECONDS: float = 15.0

    # --- Reproducción y progreso ---
    PROGRESS_FLUSH_INTERVAL_SECONDS: float = 10.0
    MAX_MEDIA_RETRIES: int = 3
    VIDEO_COMPLETION_THRESHOLD: int = 90
    DASHBOARD_COMPLETED_THRESHOLD: int = 90

    # --- Compra ---
    CHECKOUT_ERROR_DISPLAY_SECONDS: float = 5.0

    # --- Snapshot local de progreso (fallback ante fallas de red) ---
    SNAPSHOT_DATABASE_URI: str = "sqlite:///./progress_snapshots.db"

    # --- Logging ---
    LOG_DIR: str = "logs"
    LOG_LEVEL: str = "INFO"

    # --- Player host ---
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    @property
    def videos_path_template(self) -> str:
        """Ruta de la consulta de acceso a videos, con la versión configurada."""
        return "/api/videos/course/{course_id}/version/" + str(self.VIDEOS_API_VERSION)


# Instancia única de la configuración que será usada en todo el paquete.
settings = Settings()
