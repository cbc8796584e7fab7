# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Database - SQLAlchemy engine, session factory and transaction scope
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

import config

logger = logging.getLogger(__name__)

Base = declarative_base()


def make_engine(url: Optional[str] = None) -> Engine:
    """Create an engine; SQLite connections get foreign keys switched on"""
    url = url or config.DATABASE_URL
    connect_args = {}
    if url.startswith('sqlite'):
        connect_args['check_same_thread'] = False

    try:
        engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
    except Exception as e:
        logger.error(f"❌ Failed to create database engine: {e}")
        raise

    if engine.dialect.name == 'sqlite':
        @event.listens_for(engine, 'connect')
        def _enable_foreign_keys(dbapi_connection, _connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute('PRAGMA foreign_keys=ON')
            cursor.close()

    logger.info(f"✅ Database engine created ({engine.dialect.name})")
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine):
    """Create any missing tables"""
    import db.tables  # noqa: F401  registers the models on Base

    Base.metadata.create_all(bind=engine)
    logger.info("✅ Database tables ready")


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """One unit of work: commit on success, roll back and re-raise on error"""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
