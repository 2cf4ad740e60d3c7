"""Database session. SQLite compatible with connection pooling."""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from optistore.core.config import settings


def make_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        # SQLite: Use NullPool for thread-safety
        from sqlalchemy.pool import NullPool
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=NullPool,
        )
    # PostgreSQL/MySQL: Use QueuePool with sensible defaults
    return create_engine(
        database_url,
        pool_size=5,  # Number of persistent connections
        max_overflow=10,  # Max temporary connections
        pool_timeout=30,  # Seconds to wait for connection
        pool_recycle=3600,  # Recycle connections after 1 hour
        pool_pre_ping=True,  # Verify connection health
    )


engine = make_engine(settings.DATABASE_URL)

# expire_on_commit=False: every saga step commits, and the rows it wrote are
# still read afterwards (ids for compensation, generated columns for checks)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
