# courseplayer/api/v1/endpoints/health.py
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from courseplayer.api.deps import get_registry, get_snapshot_store
from courseplayer.core.config import settings
from courseplayer.crud.crud_snapshot import SnapshotStore
from courseplayer.services.course_player import PlayerRegistry

router = APIRouter()


@router.get("/health", summary="Verifica el estado del reproductor")
def check_health(
    snapshot_store: SnapshotStore = Depends(get_snapshot_store),
    registry: PlayerRegistry = Depends(get_registry),
):
    """
    Health check del player host. El snapshot local es un fallback: si no
    responde el servicio queda degradado, no caído.
    """
    health_status = {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "backend": settings.API_BASE_URL,
        "open_players": len(registry),
        "services": {
            "snapshot_store": {"status": "unknown"},
        },
    }

    db = snapshot_store.session_factory()
    try:
        db.execute(text("SELECT 1"))
        health_status["services"]["snapshot_store"] = {"status": "healthy"}
    except SQLAlchemyError as e:
        health_status["services"]["snapshot_store"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "degraded"
    finally:
        db.close()

    return health_status
