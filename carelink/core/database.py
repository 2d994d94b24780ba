from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator
from fastapi import Request
import logging
import redis

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """Store handle with an explicit open/close lifecycle.

    One instance is built by the application factory and shared through
    ``app.state``; request handlers receive short-lived sessions from it.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.engine: Engine = self._create_engine(url, echo)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    @staticmethod
    def _create_engine(url: str, echo: bool) -> Engine:
        if url.startswith("sqlite"):
            # Writers wait on the database lock instead of failing immediately
            return create_engine(
                url,
                echo=echo,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
        # PostgreSQL setup with appropriate connection pool settings
        return create_engine(
            url,
            echo=echo,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=1800,  # Recycle connections after 30 minutes
            pool_pre_ping=True,
        )

    @property
    def backend(self) -> str:
        if "postgresql" in self.url:
            return "PostgreSQL"
        if "sqlite" in self.url:
            return "SQLite"
        return "Unknown"

    def create_all(self):
        """Create tables and indexes for every registered model."""
        # Register models on Base.metadata
        from ..models import user, doctor, appointment  # noqa: F401
        Base.metadata.create_all(bind=self.engine)

    def drop_all(self):
        Base.metadata.drop_all(bind=self.engine)

    def session(self) -> Session:
        return self.SessionLocal()

    def dispose(self):
        """Release pooled connections."""
        self.engine.dispose()
        logger.info("Database connections released")


# Database dependency
def get_db(request: Request) -> Generator[Session, None, None]:
    """Get database session."""
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()


# Redis dependency
def get_redis(request: Request) -> redis.Redis:
    """Get Redis client."""
    return request.app.state.redis
