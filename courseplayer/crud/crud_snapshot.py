# courseplayer/crud/crud_snapshot.py
import logging
from typing import Dict, Optional

from sqlalchemy import and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from courseplayer.models.progress_snapshot import ProgressSnapshot
from courseplayer.schemas.progress import Progress

logger = logging.getLogger(__name__)

PROGRESS_COLUMNS = (
    "watched_duration",
    "total_duration",
    "watched_percentage",
    "completion_percentage",
    "is_completed",
    "last_position",
)


class CRUDSnapshot:
    def get(self, db: Session, user_id: str, course_id: str, video_id: str) -> Optional[ProgressSnapshot]:
        return db.query(ProgressSnapshot).filter(
            and_(
                ProgressSnapshot.user_id == user_id,
                ProgressSnapshot.course_id == course_id,
                ProgressSnapshot.video_id == video_id,
            )
        ).first()

    def upsert(self, db: Session, user_id: str, course_id: str, video_id: str, progress: Progress) -> ProgressSnapshot:
        snapshot = self.get(db, user_id, course_id, video_id)
        values = progress.model_dump(include=set(PROGRESS_COLUMNS))

        if snapshot:
            # La completitud guardada no se pierde
            values["is_completed"] = values["is_completed"] or snapshot.is_completed
            for key, value in values.items():
                setattr(snapshot, key, value)
        else:
            snapshot = ProgressSnapshot(user_id=user_id, course_id=course_id, video_id=video_id, **values)
            db.add(snapshot)

        db.commit()
        db.refresh(snapshot)
        return snapshot

    def list_course(self, db: Session, user_id: str, course_id: str) -> Dict[str, ProgressSnapshot]:
        rows = db.query(ProgressSnapshot).filter(
            and_(
                ProgressSnapshot.user_id == user_id,
                ProgressSnapshot.course_id == course_id,
            )
        ).all()
        return {row.video_id: row for row in rows}

    def delete_user(self, db: Session, user_id: str) -> int:
        deleted = db.query(ProgressSnapshot).filter(ProgressSnapshot.user_id == user_id).delete()
        db.commit()
        return deleted


crud_snapshot = CRUDSnapshot()


def to_progress(snapshot: ProgressSnapshot) -> Progress:
    return Progress(**{key: getattr(snapshot, key) for key in PROGRESS_COLUMNS})


class SnapshotStore:
    """
    Acceso al snapshot local con una sesión por operación. Las fallas de
    almacenamiento se registran y no interrumpen la reproducción.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def save(self, user_id: str, course_id: str, video_id: str, progress: Progress) -> bool:
        db = self.session_factory()
        try:
            crud_snapshot.upsert(db, user_id, course_id, video_id, progress)
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"No se pudo guardar snapshot de progreso: video={video_id}, error={e}")
            return False
        finally:
            db.close()

    def load(self, user_id: str, course_id: str, video_id: str) -> Optional[Progress]:
        db = self.session_factory()
        try:
            snapshot = crud_snapshot.get(db, user_id, course_id, video_id)
            return to_progress(snapshot) if snapshot else None
        except SQLAlchemyError as e:
            logger.warning(f"No se pudo leer snapshot de progreso: video={video_id}, error={e}")
            return None
        finally:
            db.close()

    def load_course(self, user_id: str, course_id: str) -> Dict[str, Progress]:
        db = self.session_factory()
        try:
            rows = crud_snapshot.list_course(db, user_id, course_id)
            return {video_id: to_progress(row) for video_id, row in rows.items()}
        except SQLAlchemyError as e:
            logger.warning(f"No se pudo leer snapshots del curso {course_id}: {e}")
            return {}
        finally:
            db.close()

    def clear_user(self, user_id: str) -> int:
        db = self.session_factory()
        try:
            return crud_snapshot.delete_user(db, user_id)
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"No se pudieron borrar snapshots del usuario {user_id}: {e}")
            return 0
        finally:
            db.close()
