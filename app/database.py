import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from app.core.config import DATABASE_URL, DB_ECHO, SQLITE_BUSY_TIMEOUT

logger = logging.getLogger(__name__)


def build_engine(url: str = DATABASE_URL, echo: bool = DB_ECHO) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        # threads do uvicorn compartilham o pool; escritores esperam o lock
        connect_args = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}
    return create_engine(url, echo=echo, connect_args=connect_args)


engine = build_engine()


def create_db_and_tables(bind: Optional[Engine] = None) -> None:
    # registra todas as tabelas no metadata
    from app.models import (  # noqa: F401
        appointment,
        business_hours,
        client,
        notification,
        payment,
        service,
        slot_lock,
        sync_failure,
        time_block,
        user,
    )

    SQLModel.metadata.create_all(bind or engine)
    logger.info("Tabelas criadas/verificadas")


def get_session():
    with Session(engine) as session:
        yield session


@contextmanager
def session_scope(bind: Engine) -> Iterator[Session]:
    """Sessão própria, fora da requisição do usuário (ex.: reconciliação)."""
    session = Session(bind)
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
