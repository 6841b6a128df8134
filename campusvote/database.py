import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import get_settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def make_engine(url: str):
    connect_args = {}
    if url.startswith("sqlite"):
        # Requests are served from a thread pool
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(url, connect_args=connect_args)


engine = make_engine(get_settings().database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def configure(url: str):
    """Point the session factory at another database"""
    global engine
    engine.dispose()
    engine = make_engine(url)
    SessionLocal.configure(bind=engine)
    logger.info("Database configured: %s", engine.url.render_as_string(hide_password=True))
    return engine


def init_db():
    """Create all tables that do not exist yet"""
    from . import models  # noqa: F401  registers the tables on Base

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")


# Dependency
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
