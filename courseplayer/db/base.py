# courseplayer/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Clase base declarativa de la cual heredan los modelos del snapshot local.
    """
    pass
