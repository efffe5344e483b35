import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import database
from config import get_settings
from database import Base
from models import TransactionType
from schemas import (
    BankRecord,
    CategoryRecord,
    FlowOptions,
    ScheduledPaymentRecord,
    TransactionRecord,
)
from services import FlowService, RecordRepository


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed(repo: RecordRepository) -> None:
    repo.add_category(CategoryRecord(id="1", name="1-Ventas"))
    repo.add_category(CategoryRecord(id="40", name="40-Papelería"))
    repo.add_bank(BankRecord(id="b1", name="BBVA"))
    repo.add_transactions(
        [
            TransactionRecord(
                id="t2",
                bank="b1",
                guide="40",
                date="2024-01-07",
                amount_mn=-25.0,
                type=TransactionType.expense,
            ),
            TransactionRecord(
                id="t1",
                bank="b1",
                guide="1",
                date="2024-01-05",
                amount_mn=100.0,
                type=TransactionType.income,
            ),
        ]
    )


def test_records_round_trip_through_session() -> None:
    repo = RecordRepository(make_session())
    seed(repo)

    transactions = repo.list_transactions()
    assert [t.id for t in transactions] == ["t1", "t2"]
    assert transactions[1].type == TransactionType.expense

    catalog = repo.load_catalog()
    assert catalog.name_of("40") == "40-Papelería"
    assert catalog.bank_name("b1") == "BBVA"


def test_repository_feeds_flow_views() -> None:
    repo = RecordRepository(make_session())
    seed(repo)

    service = FlowService(repo.load_catalog(), FlowOptions())
    table = service.daily_flow(repo.list_transactions())
    assert table.final_balance == 75.0
    assert table.expense_categories() == ["40-Papelería"]


def test_update_transaction_validates_changes() -> None:
    repo = RecordRepository(make_session())
    seed(repo)

    updated = repo.update_transaction("t1", amount_mn=120.0, description="Factura 12")
    assert updated.amount_mn == 120.0
    assert repo.list_transactions()[0].description == "Factura 12"

    with pytest.raises(ValidationError):
        repo.update_transaction("t1", type="transfer")


def test_missing_records_raise() -> None:
    repo = RecordRepository(make_session())
    with pytest.raises(ValueError, match="Transaction not found"):
        repo.delete_transaction("nope")
    with pytest.raises(ValueError, match="Transaction not found"):
        repo.update_transaction("nope", amount_mn=1.0)
    with pytest.raises(ValueError, match="Scheduled payment not found"):
        repo.delete_scheduled_payment("nope")
    with pytest.raises(ValueError, match="Category not found"):
        repo.set_inactive_for_forecast("nope", True)
    with pytest.raises(ValueError):
        repo.delete_catalog_item("accounts", "b1")


def test_catalog_maintenance() -> None:
    repo = RecordRepository(make_session())
    seed(repo)

    repo.set_inactive_for_forecast("40", True)
    flags = {c.id: c.is_inactive_for_forecast for c in repo.list_categories()}
    assert flags == {"1": False, "40": True}

    repo.delete_catalog_item("banks", "b1")
    assert repo.list_banks() == []


def test_scheduled_payments_and_clearing_history() -> None:
    repo = RecordRepository(make_session())
    seed(repo)
    repo.add_scheduled_payments(
        [
            ScheduledPaymentRecord(
                id="p1",
                supplier="Papelera",
                concept="Hojas",
                amount=-80.0,
                guide=" ",
                date="2024-02-01",
            )
        ]
    )

    payments = repo.list_scheduled_payments()
    assert payments[0].guide is None
    assert payments[0].type == TransactionType.expense

    repo.delete_scheduled_payment("p1")
    assert repo.list_scheduled_payments() == []

    repo.clear_transactions()
    assert repo.list_transactions() == []


def test_session_scope_uses_configured_database(monkeypatch) -> None:
    monkeypatch.setenv("CASHFLOW_DATABASE_URL", "sqlite://")
    monkeypatch.setattr(database, "_session_factory", None)
    get_settings.cache_clear()
    try:
        with database.session_scope() as session:
            RecordRepository(session).add_category(CategoryRecord(id="1", name="1-Ventas"))
        with database.session_scope() as session:
            names = [c.name for c in RecordRepository(session).list_categories()]
    finally:
        get_settings.cache_clear()

    assert names == ["1-Ventas"]
