"""
Database handle and session dependency.

The engine is owned by an explicitly constructed ``Database`` object that the
application creates on startup and disposes on shutdown. Route handlers get a
per-request session through the ``get_db`` dependency.
"""

import logging
from typing import Any, Dict, Generator, Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """Lifecycle wrapper around a SQLAlchemy engine and its session factory."""

    def __init__(self, url: str, engine_options: Optional[Dict[str, Any]] = None):
        self.url = url
        self.engine_options = engine_options or {}
        self.engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    def init(self, create_tables: bool = True) -> None:
        if self.engine is not None:
            return

        options = dict(self.engine_options)
        if self.url.startswith("sqlite"):
            options.setdefault("connect_args", {"check_same_thread": False})
        else:
            options.setdefault("pool_pre_ping", True)

        logger.info(f"Connecting to database: {self.engine_url_for_log()}")
        self.engine = create_engine(self.url, **options)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

        if create_tables:
            # Import models so their tables are registered on Base.metadata
            import models  # noqa: F401

            Base.metadata.create_all(bind=self.engine)
            logger.debug("Database tables ensured")

    def session(self) -> Session:
        if self._session_factory is None:
            raise RuntimeError("Database.init() must be called before opening sessions")
        return self._session_factory()

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            logger.info("Database connections closed")
        self.engine = None
        self._session_factory = None

    def engine_url_for_log(self) -> str:
        """Database URL with the password masked."""
        if "@" not in self.url or "://" not in self.url:
            return self.url
        scheme, rest = self.url.split("://", 1)
        credentials, host = rest.rsplit("@", 1)
        user = credentials.split(":", 1)[0]
        return f"{scheme}://{user}:***@{host}"


def get_db(request: Request) -> Generator[Session, None, None]:
    """Yield a session bound to the application's database handle."""
    db = request.app.state.db.session()
    try:
        yield db
    finally:
        db.close()
