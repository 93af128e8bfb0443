from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from .config import DATABASE_URL, SQL_ECHO

if not DATABASE_URL:
    raise RuntimeError("RENTAL_DB environment variable is not set")


def get_engine(database_url: str, **kwargs):
    return create_async_engine(database_url, echo=SQL_ECHO, future=True, **kwargs)


def get_session(engine):
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
    )


engine = get_engine(DATABASE_URL)
SessionLocal = get_session(engine)

Base = declarative_base()
