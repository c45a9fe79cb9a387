from contextlib import contextmanager
from typing import Generator, Iterator
import os

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session


# Load environment variables from .env
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./todo.db")


def build_engine(url: str) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        # FastAPI runs sync endpoints in a threadpool
        connect_args["check_same_thread"] = False
    engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args)

    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Unit of work over the given session.

    Commits when the block exits normally, rolls back and re-raises on any
    exception. Blob storage calls made inside the block are not covered.
    """
    try:
        yield db
        db.commit()
    except BaseException:
        db.rollback()
        raise


def init_db() -> None:
    # Models must be imported so their tables are registered on Base.metadata
    from app.models import access_token, otp, todo, user  # noqa: F401

    Base.metadata.create_all(bind=engine)
