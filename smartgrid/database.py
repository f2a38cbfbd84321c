# =======================================================================================
# smartgrid/database.py - Database Management
# =======================================================================================
from contextlib import contextmanager
from typing import Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool
from .config import config


class DatabaseManager:
    """Manages database connections and transactions."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or config.DB_URL
        if self.url.startswith("sqlite"):
            # Single shared connection so an in-memory database survives across threads
            self.engine: Engine = create_engine(
                self.url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
                future=True,
            )
        else:
            self.engine = create_engine(
                self.url,
                poolclass=QueuePool,
                pool_size=config.DB_POOL_SIZE,
                max_overflow=config.DB_MAX_OVERFLOW,
                pool_pre_ping=True,
                isolation_level="READ COMMITTED",
                future=True,
            )

    @contextmanager
    def get_connection(self):
        """Get a transactional connection; commits on success, rolls back on error."""
        with self.engine.begin() as conn:
            yield conn

    def dispose(self) -> None:
        self.engine.dispose()
