"""Database connection and session management."""
from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.config import Settings, get_settings

settings = get_settings()


def build_engine(config: Settings) -> Engine:
    """Create an engine whose connection waits are bounded by the configured timeout."""
    if config.database_url.startswith("sqlite"):
        # SQLite requires check_same_thread=False for FastAPI
        return create_engine(
            config.database_url,
            connect_args={"check_same_thread": False, "timeout": config.database_timeout_seconds},
            echo=config.debug,
        )
    return create_engine(
        config.database_url,
        pool_timeout=config.database_timeout_seconds,
        pool_pre_ping=True,
        echo=config.debug,
    )


engine = build_engine(settings)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency that provides a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

