import logging
import time

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .errors import StoreUnavailable

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class Database:
    """Owns the engine and session factory of the metadata store.

    Constructed explicitly and handed to the app; ``connect`` is called once at
    startup and ``dispose`` at shutdown.
    """

    def __init__(self, url: str):
        self.url = url
        self._engine: Engine | None = None
        self._sessionmaker: sessionmaker[Session] | None = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise StoreUnavailable("Database is not connected")
        return self._engine

    def connect(self, retries: int = 5, backoff: float = 0.5) -> None:
        connect_args = {"check_same_thread": False} if self.url.startswith("sqlite") else {}
        engine = create_engine(self.url, pool_pre_ping=True, connect_args=connect_args)

        attempt = 0
        while True:
            try:
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                break
            except OperationalError as e:
                attempt += 1
                if attempt > retries:
                    engine.dispose()
                    logger.error("Metadata store unreachable after %d attempts: %s", attempt, e)
                    raise StoreUnavailable(f"Metadata store unreachable: {e}") from e
                delay = backoff * 2 ** (attempt - 1)
                logger.warning("Metadata store connection failed (attempt %d), retrying in %.2fs", attempt, delay)
                time.sleep(delay)

        self._engine = engine
        self._sessionmaker = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        self.init_schema()
        logger.info("Metadata store connected: %s", engine.url.render_as_string(hide_password=True))

    def init_schema(self) -> None:
        # регистрируем модели в Base.metadata
        from . import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def session(self) -> Session:
        if self._sessionmaker is None:
            raise StoreUnavailable("Database is not connected")
        return self._sessionmaker()

    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Metadata store unreachable: {e}") from e

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._sessionmaker = None
            logger.info("Metadata store connection closed")
