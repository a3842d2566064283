# deployment_engine/infrastructure/postgres/probe.py
import logging
from typing import Callable

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class PostgresConnectionProbe:
    """
    Host-side readiness probe: open a connection and run SELECT 1.

    The URL is resolved on every call because the password may be
    generated after the probe is wired.
    """

    def __init__(self, url_factory: Callable[[], URL], connect_timeout: int = 5):
        self.url_factory = url_factory
        self.connect_timeout = connect_timeout

    def __call__(self) -> bool:
        engine = create_engine(
            self.url_factory(),
            pool_pre_ping=True,
            connect_args={"connect_timeout": self.connect_timeout},
        )
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.debug(f"Database not ready: {e}")
            return False
        finally:
            engine.dispose()


def database_url(user: str, password: str, host: str, port: int, db: str) -> URL:
    return URL.create(
        "postgresql",
        username=user,
        password=password,
        host=host,
        port=port,
        database=db,
    )
