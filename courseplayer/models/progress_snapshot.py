# courseplayer/models/progress_snapshot.py
from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from courseplayer.db.base import Base


class ProgressSnapshot(Base):
    """
    Último progreso conocido de un video, guardado localmente.
    Solo se usa como respaldo cuando falla la consulta al backend.
    """
    __tablename__ = "progress_snapshots"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    course_id = Column(String(64), nullable=False, index=True)
    video_id = Column(String(64), nullable=False)
    watched_duration = Column(Float, default=0.0, nullable=False)
    total_duration = Column(Float, default=0.0, nullable=False)
    watched_percentage = Column(Float, default=0.0, nullable=False)
    completion_percentage = Column(Float, default=0.0, nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False)
    last_position = Column(Float, default=0.0, nullable=False)
    last_updated = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('user_id', 'course_id', 'video_id', name='uq_user_course_video'),
    )

    def __repr__(self):
        return (
            f"<ProgressSnapshot(user_id='{self.user_id}', video_id='{self.video_id}', "
            f"position={self.last_position}, completed={self.is_completed})>"
        )
