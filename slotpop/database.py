from typing import Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from .config import settings

def normalize_db_url(url: str) -> str:
    # Use psycopg v3 driver with SQLAlchemy
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://"):]
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://"):]
    return url

_DB_URL = normalize_db_url(settings.DATABASE_URL)

_engine: Optional[Engine] = None  # lazy-init to avoid driver import at module import time
_SessionLocal: Optional[sessionmaker] = None

def make_engine(url: str, **kwargs) -> Engine:
    if url.startswith("sqlite"):
        # sessions are handed across threads by FastAPI and Celery
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
    return create_engine(url, **kwargs)

def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = make_engine(_DB_URL)
    return _engine

def make_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )

def get_sessionmaker() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = make_sessionmaker(get_engine())
    return _SessionLocal

class Base(DeclarativeBase):
    pass
