"""
Database connection via SQLAlchemy.

SQLite by default (file created on first use); any SQLAlchemy URL works.
JSON columns are serialized without ASCII escaping so Chinese text stays
searchable with LIKE.
"""

import json
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def _json_serializer(value) -> str:
    return json.dumps(value, ensure_ascii=False)


def create_engine_from_url(database_url: str, **kwargs) -> Engine:
    """Create an engine, preparing the SQLite file directory when needed."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(database_url, json_serializer=_json_serializer, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables if they don't exist."""
    from sop_reconciler.storage import orm  # noqa: F401 registers models with Base

    Base.metadata.create_all(bind=engine)
