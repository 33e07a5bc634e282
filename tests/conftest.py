"""Shared fixtures: a throwaway SQLite store per test and an app wired to it."""

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from ledger_service.db import create_store_engine, get_session, init_db
from ledger_service.ledger import get_strategy
from ledger_service.main import app
from ledger_service.settings import DEFAULT_ACCOUNTS, Settings, get_settings


@pytest.fixture(params=["locking", "conditional"])
def strategy_name(request):
    return request.param


@pytest.fixture
def accounts():
    return dict(DEFAULT_ACCOUNTS)


@pytest.fixture
def settings(tmp_path, accounts, strategy_name):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'ledger.db'}",
        pool_size=10,
        store_timeout_seconds=30,
        ledger_strategy=strategy_name,
        accounts=accounts,
    )


@pytest.fixture
def engine(settings):
    engine = create_store_engine(settings)
    init_db(engine, settings.accounts)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def strategy(settings):
    return get_strategy(settings.ledger_strategy)


@pytest.fixture
def client(engine, settings):
    def override_session():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_settings] = lambda: settings
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
