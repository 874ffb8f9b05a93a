from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from sureodds.core.config import settings
from sureodds.db.base import Base

_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

# Engine = the DB connection factory
engine = create_engine(
    settings.database_url,
    echo=settings.db_echo,
    connect_args=_connect_args,
)

# SessionLocal = the session factory
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)

def get_db() -> Generator[Session, None, None]:
    """Dependency that provides a database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db() -> None:
    # import models so they register on Base.metadata
    from sureodds.models import entitlement, payment, user, voucher  # noqa: F401

    Base.metadata.create_all(bind=engine)
