"""Database base configuration."""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from contextlib import contextmanager

from ..config import config

Base = declarative_base()

engine = create_engine(config.DATABASE_URL, echo=config.DEBUG)
# Rows handed out by the store outlive their session.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

@contextmanager
def session_scope(factory: sessionmaker = SessionLocal) -> Session:
    """Get a database session from ``factory``, committing on success."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

def init_db(bind=None):
    """Initialize the database."""
    if bind is None:
        config.ensure_directories()
        bind = engine
    Base.metadata.create_all(bind=bind)
