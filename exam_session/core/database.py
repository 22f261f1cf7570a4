import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from exam_session.core.config import settings

logger = logging.getLogger(__name__)

engine = create_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO, future=True, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create tables if they don't exist. Production deployments run migrations instead."""
    from exam_session.models.orm import Base

    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ensured")


def close_db():
    engine.dispose()
