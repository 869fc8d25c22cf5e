# newsagg/database.py
import os

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Load .env file (DATABASE_URL lives there)
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./newsagg.db")

# Hosted Postgres provides postgresql:// but SQLAlchemy needs postgresql+psycopg2://
if DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+psycopg2://", 1)


def make_engine(url: str) -> Engine:
    """
    Build an engine for the given URL.

    In-memory SQLite gets a single shared connection so every session (and
    the threadpool FastAPI runs sync routes on) sees the same database.
    """
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url:
            kwargs["poolclass"] = StaticPool
        return create_engine(url, future=True, echo=False, **kwargs)
    return create_engine(url, future=True, echo=False, pool_pre_ping=True)


engine = make_engine(DATABASE_URL)

# Stores take this factory rather than a request-scoped session
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
)

Base = declarative_base()


def init_db(bind: Engine | None = None) -> None:
    """
    Create tables if they don't exist.

    Alembic (migrations/) owns the schema in deployed environments; this is
    for local runs and tests.
    """
    from newsagg import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
