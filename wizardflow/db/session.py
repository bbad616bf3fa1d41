from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from wizardflow.core.config import settings


class Base(DeclarativeBase):
    pass


def make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = make_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(bind=None) -> None:
    from wizardflow.db import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
