import logging
from typing import Dict, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from .models import Account
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)


def create_store_engine(settings: Settings) -> Engine:
    """Build the engine and pool for the account store.

    PostgreSQL is the production store: writers lock only their account row
    and ``lock_timeout`` bounds how long they wait for it.

    SQLite is a development and test store. It has no row locks, so every
    unit of work starts with ``BEGIN IMMEDIATE`` and holds the database write
    lock until commit; writes on unrelated accounts are serialized.
    """
    timeout_ms = int(settings.store_timeout_seconds * 1000)
    if settings.is_sqlite:
        logger.warning("sqlite store in use: writes on all accounts share one lock (development only)")
        engine = create_engine(
            settings.database_url,
            echo=False,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
            connect_args={
                "check_same_thread": False,
                "timeout": settings.store_timeout_seconds,
            },
        )

        @event.listens_for(engine, "connect")
        def _disable_driver_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_engine(
        settings.database_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        connect_args={
            "options": f"-c lock_timeout={timeout_ms} -c statement_timeout={timeout_ms}",
        },
    )


engine = create_store_engine(get_settings())


def init_db(bind: Optional[Engine] = None, accounts: Optional[Dict[int, int]] = None):
    """Create the tables and provision any missing account."""
    bind = bind or engine
    accounts = accounts or get_settings().accounts
    SQLModel.metadata.create_all(bind)
    with Session(bind) as session:
        for cliente_id, limite in sorted(accounts.items()):
            if session.get(Account, cliente_id) is None:
                session.add(Account(id=cliente_id, limite=limite, saldo=0))
                logger.info("provisioned account %s with limit %s", cliente_id, limite)
        session.commit()


def get_session():
    with Session(engine) as s:
        yield s
