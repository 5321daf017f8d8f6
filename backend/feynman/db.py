from __future__ import annotations
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./feynman.db"

# SQLite connections are shared with the worker threads TopicStore runs in
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
Base = declarative_base()


def init_db() -> None:
	"""Create any missing tables for the auth and topic models."""
	from . import models  # noqa: F401

	Base.metadata.create_all(bind=engine)


def get_db():
	with SessionLocal() as db:
		yield db
