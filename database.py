import asyncio
import functools

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from constants import DATABASE_URL
from logging_config import get_logger

logger = get_logger(__name__)

Base = declarative_base()


def make_engine(url: str = DATABASE_URL):
    connect_args = {}
    if url.startswith("sqlite"):
        # sessions are used from executor threads
        connect_args["check_same_thread"] = False
    engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    logger.info(f"Database engine created for dialect {engine.dialect.name}")
    return engine


def make_session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def init_db(engine):
    # models must be imported so their tables are registered on Base
    import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Tables created successfully.")


async def run_blocking(func, *args, **kwargs):
    """Run a blocking store call in the default executor so the event loop keeps serving other connections."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
