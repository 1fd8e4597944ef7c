from __future__ import annotations

from collections.abc import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from theme_deployer.config import settings
from theme_deployer.models import Base

READ_ONLY_KEY = "read_only"


class ReadOnlySessionError(RuntimeError):
    pass


def _engine_connect_args() -> dict:
    if settings.THEME_DEPLOYER_DB_URL.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine: Engine = create_engine(
    settings.THEME_DEPLOYER_DB_URL,
    future=True,
    connect_args=_engine_connect_args(),
)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
# Sessions are written by the installation flow; request handlers only read them.
CredentialSessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
    info={READ_ONLY_KEY: True},
)


@event.listens_for(Session, "before_flush")
def _reject_read_only_flush(session: Session, flush_context, instances) -> None:
    if session.info.get(READ_ONLY_KEY) and (session.new or session.dirty or session.deleted):
        raise ReadOnlySessionError("Credential store sessions are read-only")


def init_db() -> None:
    Base.metadata.create_all(bind=engine)


def get_session() -> Iterator[Session]:
    session: Session = CredentialSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
