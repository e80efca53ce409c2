"""Engine, session scope and the FastAPI session dependency."""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from homebase.logging_config import get_logger
from homebase.settings import settings
from homebase.storage.models import Base

logger = get_logger(__name__)

# Importing these registers every referral table on Base.metadata
_MODEL_MODULES = (
    "homebase.accounts.models",
    "homebase.billing.models",
    "homebase.referral.models",
)


class Database:
    """Owns one engine and hands out transactional sessions.

    One unit of work per ``session()`` block: a billing event, a payout
    transfer, or an API request.
    """

    def __init__(self, database_url: str | None = None):
        self.database_url = database_url or settings.database_url

        # SQLite connections are shared with FastAPI's threadpool
        connect_args = {"check_same_thread": False} if self.database_url.startswith("sqlite") else {}

        self.engine = create_engine(
            self.database_url,
            echo=settings.database_echo,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )
        logger.info("database_ready", url=self.engine.url.render_as_string(hide_password=True))

    def create_tables(self) -> None:
        """Create missing referral tables (development and tests; production uses Alembic)."""
        import importlib

        for module in _MODEL_MODULES:
            importlib.import_module(module)
        Base.metadata.create_all(bind=self.engine)
        logger.info("tables_created", tables=sorted(Base.metadata.tables))

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Yield a session that commits on exit and rolls back on any error."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# Process-wide instance, replaced in tests
db = Database()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one transaction per request."""
    with db.session() as session:
        yield session
