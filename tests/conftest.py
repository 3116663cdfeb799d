"""Shared pytest fixtures for the billing core tests."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from billing.core.database import Base, build_engine
from billing.core.dependencies import get_db
from billing.main import app
from billing.services.client_service import create_client
from billing.services.product_service import create_product


@pytest.fixture
def engine(tmp_path: Path):
    """A fresh SQLite file per test, so several sessions/threads can share it."""

    engine = build_engine(f"sqlite:///{tmp_path / 'billing_test.db'}")
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def api(session_factory: sessionmaker) -> Iterator[TestClient]:
    """HTTP client with ``get_db`` pointed at the test database."""

    def _get_test_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_test_db
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.pop(get_db, None)


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_client(db: Session) -> Callable:
    counter = {"n": 0}

    def _make(name: str | None = None, opening_debt_cents: int = 0):
        counter["n"] += 1
        return create_client(
            db,
            name=name or f"Client {counter['n']}",
            phone="0550000000",
            opening_debt_cents=opening_debt_cents,
        )

    return _make


@pytest.fixture
def make_product(db: Session) -> Callable:
    counter = {"n": 0}

    def _make(unit_price_cents: int = 1000, name: str | None = None, sku: str | None = None, **kwargs):
        counter["n"] += 1
        return create_product(
            db,
            name=name or f"Product {counter['n']}",
            sku=sku or f"SKU-{counter['n']:03d}",
            unit_price_cents=unit_price_cents,
            **kwargs,
        )

    return _make


@pytest.fixture
def client(make_client):
    return make_client("Acme Trading")


@pytest.fixture
def products(make_product):
    """The two products of the reference pricing scenario: 1000 and 500 cents."""

    return make_product(1000, name="Widget"), make_product(500, name="Gadget")
