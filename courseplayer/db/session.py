# courseplayer/db/session.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from courseplayer.core.config import settings
from courseplayer.db.base import Base


def create_session_factory(database_uri: str = None) -> sessionmaker:
    """
    Crea el motor y la fábrica de sesiones del snapshot local, y asegura
    que las tablas existan.
    """
    uri = database_uri or settings.SNAPSHOT_DATABASE_URI
    engine_kwargs = {}
    if uri.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if uri in ("sqlite://", "sqlite:///:memory:"):
            # Una sola conexión para que la base en memoria sea compartida
            engine_kwargs["poolclass"] = StaticPool

    engine = create_engine(uri, **engine_kwargs)

    # Registrar los modelos antes de crear las tablas
    from courseplayer.models import progress_snapshot  # noqa: F401
    Base.metadata.create_all(bind=engine)

    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
