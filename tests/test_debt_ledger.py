from concurrent.futures import ThreadPoolExecutor

import pytest

from billing.core.exceptions import ConflictError, NotFoundError, ValidationError
from billing.models.client import Client, DebtAdjustment, DebtAdjustmentType
from billing.services import client_service
from billing.services.debt_ledger import DebtLedgerService


def _assert_chain(db, client_id):
    """Every row starts where the previous one ended and the cache matches the tail."""
    rows = (
        db.query(DebtAdjustment)
        .filter(DebtAdjustment.client_id == client_id)
        .order_by(DebtAdjustment.id.asc())
        .all()
    )
    previous = 0
    for row in rows:
        assert row.previous_debt_cents == previous
        assert row.new_debt_cents == row.previous_debt_cents + row.adjustment_cents
        previous = row.new_debt_cents

    client = db.query(Client).filter(Client.id == client_id).one()
    db.refresh(client)
    assert client.debt_cents == previous
    return rows


def test_new_client_has_zero_balance(db, client):
    ledger = DebtLedgerService(db)
    assert client.debt_cents == 0
    assert ledger.current_balance(client.id) == 0
    assert ledger.last_adjustment(client.id) is None


def test_opening_debt_is_first_entry(db, make_client):
    client = make_client("Old Customer", opening_debt_cents=5000)

    rows = _assert_chain(db, client.id)

    assert client.debt_cents == 5000
    assert [r.type for r in rows] == [DebtAdjustmentType.opening_balance]


def test_adjustments_form_a_chain(db, client):
    ledger = DebtLedgerService(db)

    ledger.adjust_debt(client.id, 2363, notes="first")
    ledger.adjust_debt(client.id, -1000)
    _, adjustment = ledger.adjust_debt(client.id, -63, DebtAdjustmentType.manual_adjustment)

    assert adjustment.previous_debt_cents == 1363
    assert adjustment.new_debt_cents == 1300
    rows = _assert_chain(db, client.id)
    assert len(rows) == 3
    assert ledger.replayed_balance(client.id) == ledger.current_balance(client.id) == 1300


def test_balance_may_go_negative(db, client):
    client, _ = DebtLedgerService(db).adjust_debt(client.id, -700)
    assert client.debt_cents == -700


def test_zero_delta_rejected(db, client):
    with pytest.raises(ValidationError):
        DebtLedgerService(db).adjust_debt(client.id, 0)


def test_unknown_client_rejected(db):
    with pytest.raises(ValidationError):
        DebtLedgerService(db).adjust_debt(424242, 100)


def test_unknown_type_rejected(db, client):
    with pytest.raises(ValidationError):
        DebtLedgerService(db).adjust_debt(client.id, 100, "gift")


def test_float_delta_rejected(db, client):
    with pytest.raises(ValidationError):
        DebtLedgerService(db).adjust_debt(client.id, 10.5)


def test_list_adjustments_filters(db, make_client):
    first = make_client(opening_debt_cents=100)
    second = make_client()
    ledger = DebtLedgerService(db)
    ledger.adjust_debt(first.id, 50)
    ledger.adjust_debt(second.id, 75)

    rows, total = ledger.list_adjustments(client_id=first.id)
    assert total == 2
    assert rows[0].adjustment_cents == 50  # newest first

    rows, total = ledger.list_adjustments(adjustment_type=DebtAdjustmentType.opening_balance)
    assert total == 1


def test_concurrent_adjustments_are_serialized(session_factory, db, client):
    workers = 8
    per_worker = 5

    def adjust(_):
        session = session_factory()
        try:
            for _ in range(per_worker):
                DebtLedgerService(session).adjust_debt(client.id, 100)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=workers) as pool:
        list(pool.map(adjust, range(workers)))

    rows = _assert_chain(db, client.id)
    n = workers * per_worker
    assert len(rows) == n
    assert rows[-1].new_debt_cents == 100 * n


def test_adjustments_for_different_clients_are_independent(session_factory, db, make_client):
    clients = [make_client() for _ in range(4)]

    def adjust(client_id):
        session = session_factory()
        try:
            for _ in range(5):
                DebtLedgerService(session).adjust_debt(client_id, 10)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(adjust, [c.id for c in clients]))

    for c in clients:
        rows = _assert_chain(db, c.id)
        assert rows[-1].new_debt_cents == 50


class TestClientService:
    def test_update_never_touches_debt(self, db, make_client):
        client = make_client(opening_debt_cents=900)
        client = client_service.update_client(db, client.id, name="Renamed", phone="")
        assert client.name == "Renamed"
        assert client.phone is None
        assert client.debt_cents == 900

    def test_blank_name_rejected(self, db):
        with pytest.raises(ValidationError):
            client_service.create_client(db, name="   ")

    def test_search(self, db, make_client):
        make_client("Alice Store")
        make_client("Bob Market")
        rows, total = client_service.get_all_clients(db, search="market")
        assert total == 1 and rows[0].name == "Bob Market"

    def test_delete_without_history(self, db, client):
        client_service.delete_client(db, client.id)
        with pytest.raises(NotFoundError):
            client_service.get_client(db, client.id)

    def test_delete_with_debt_history_conflicts(self, db, make_client):
        client = make_client(opening_debt_cents=100)
        with pytest.raises(ConflictError):
            client_service.delete_client(db, client.id)
