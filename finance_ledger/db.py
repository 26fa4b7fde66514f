# db.py
# Role: Database bootstrap for the finance ledger API.
#       Builds the SQLAlchemy engine from settings, the session factory, and the declarative Base.
#       Also ensures the on-disk SQLite directory exists when the default database is used.

"""
Database setup for the finance ledger.

- Connection URL comes from LEDGER_DATABASE_URL (see config.py).
- The default is a SQLite file at <project_root>/database/finance.db.
"""

import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from finance_ledger.config import get_settings


def build_engine(database_url: str) -> Engine:
    """
    Create an engine for the given URL.

    For SQLite we need check_same_thread=False: FastAPI runs sync routes
    in a threadpool and the scheduler posts from a worker thread.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

        # Ensure the folder of a file-backed database exists
        path = database_url.split("sqlite:///", 1)[1] if "sqlite:///" in database_url else ""
        if path and path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)

    return create_engine(database_url, connect_args=connect_args)


engine = build_engine(get_settings().database_url)

# Standard session factory used via dependency injection (see deps.py:get_db)
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

# Declarative base class for ORM models
Base = declarative_base()
