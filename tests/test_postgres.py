"""Row-level behaviour that only a PostgreSQL store provides.

Set TEST_DATABASE_URL to an existing database, or have Docker available for
a throwaway container; otherwise these tests are skipped.
"""

import os
import threading

import pytest
from sqlmodel import Session, SQLModel, func, select

from ledger_service.db import create_store_engine, init_db
from ledger_service.ledger import (
    OverdraftRejected,
    StoreUnavailable,
    apply_transaction,
    get_statement,
)
from ledger_service.models import Account, LedgerEntry
from ledger_service.settings import DEFAULT_ACCOUNTS, Settings


@pytest.fixture(scope="module")
def postgres_url():
    url = os.getenv("TEST_DATABASE_URL")
    if url:
        yield url
        return
    postgres = pytest.importorskip("testcontainers.postgres")
    container = postgres.PostgresContainer("postgres:16-alpine", driver="psycopg2")
    try:
        container.start()
    except Exception as exc:
        pytest.skip(f"no PostgreSQL available: {exc}")
    try:
        yield container.get_connection_url()
    finally:
        container.stop()


@pytest.fixture
def pg_settings(postgres_url, strategy_name):
    return Settings(
        database_url=postgres_url,
        pool_size=10,
        store_timeout_seconds=1,
        ledger_strategy=strategy_name,
        accounts=dict(DEFAULT_ACCOUNTS),
    )


@pytest.fixture
def pg_engine(pg_settings):
    engine = create_store_engine(pg_settings)
    SQLModel.metadata.drop_all(engine)
    init_db(engine, pg_settings.accounts)
    yield engine
    engine.dispose()


def snapshot(engine, cliente_id):
    with Session(engine) as s:
        account = s.get(Account, cliente_id)
        entries = s.exec(
            select(func.count()).select_from(LedgerEntry).where(LedgerEntry.cliente_id == cliente_id)
        ).one()
        return account.saldo, entries


def test_locked_account_does_not_block_others(pg_engine, strategy):
    holder = Session(pg_engine)
    try:
        # row 1 stays locked until the holder rolls back
        strategy.apply(holder, 1, 10, "d", "segura")

        with Session(pg_engine) as other:
            balance = apply_transaction(other, 2, 10, "c", "livre", strategy=strategy, accounts=DEFAULT_ACCOUNTS)
            assert balance.saldo == 10

            with pytest.raises(StoreUnavailable):
                apply_transaction(other, 1, 5, "c", "espera", strategy=strategy, accounts=DEFAULT_ACCOUNTS)
    finally:
        holder.rollback()
        holder.close()

    assert snapshot(pg_engine, 1) == (0, 0)
    assert snapshot(pg_engine, 2) == (10, 1)


def test_concurrent_debits_on_row_lock(pg_engine, strategy):
    limite = DEFAULT_ACCOUNTS[2]
    n = 8
    valor = limite // n + 1
    barrier = threading.Barrier(n)
    outcomes = []
    lock = threading.Lock()

    def worker():
        with Session(pg_engine) as s:
            barrier.wait()
            try:
                apply_transaction(s, 2, valor, "d", "conc", strategy=strategy, accounts=DEFAULT_ACCOUNTS)
                outcome = "ok"
            except OverdraftRejected:
                outcome = "rejected"
            with lock:
                outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["ok"] * (n - 1) + ["rejected"]
    assert snapshot(pg_engine, 2) == (-valor * (n - 1), n - 1)


def test_statement_snapshot(pg_engine, strategy):
    with Session(pg_engine) as s:
        for i in range(12):
            apply_transaction(s, 3, 100, "c", f"t{i}", strategy=strategy, accounts=DEFAULT_ACCOUNTS)
        statement = get_statement(s, 3, accounts=DEFAULT_ACCOUNTS)

    assert statement.saldo == 1200
    assert len(statement.ultimas_transacoes) == 10
    assert statement.ultimas_transacoes[0].descricao == "t11"
