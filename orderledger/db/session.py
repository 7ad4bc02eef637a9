"""Database connection and session configuration.

This module sets up the SQLAlchemy engine and the SessionLocal factory based on DATABASE_URL.
Each order, ledger or reporting operation runs inside one ``get_db_session()`` block,
so an order write and the balance recalculation it triggers commit together.
"""

import os
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

database_url = os.getenv("DATABASE_URL", "sqlite:///./data.db")

connect_args = {}
if database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(database_url, connect_args=connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db_session():
    """Context manager for a request-scoped database session.

    Commits when the block finishes, rolls back and re-raises on any exception,
    and always closes the session.

    Yields:
        Session: SQLAlchemy Session object.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
