import logging
from datetime import date

from sqlalchemy import inspect

from catalog import CategoryCatalog
from config import configure_logging, get_settings, local_today
from database import Base, make_engine
from models import AmountField
from schemas import FlowOptions
from services import FlowService


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("CASHFLOW_DATABASE_URL", "sqlite://")
    monkeypatch.setenv("CASHFLOW_AMOUNT_FIELD", "Foreign")
    monkeypatch.setenv("CASHFLOW_VAT_RATE", "0.08")
    monkeypatch.setenv("CASHFLOW_FORECAST_SEED", " ")
    monkeypatch.setenv("CASHFLOW_LOG_LEVEL", "debug")
    get_settings.cache_clear()
    try:
        settings = get_settings()
        options = FlowOptions.from_settings(start=date(2024, 1, 1))
    finally:
        get_settings.cache_clear()

    assert settings.database_url == "sqlite://"
    assert settings.vat_rate == 0.08
    assert settings.forecast_seed is None
    assert settings.log_level == "DEBUG"
    assert options.amount_field == AmountField.foreign
    assert options.start == date(2024, 1, 1)


def test_local_today_uses_configured_zone(monkeypatch) -> None:
    monkeypatch.setenv("CASHFLOW_DATABASE_URL", "sqlite://")
    monkeypatch.setenv("CASHFLOW_TIMEZONE", "UTC")
    get_settings.cache_clear()
    try:
        assert isinstance(local_today(), date)
    finally:
        get_settings.cache_clear()


def test_flow_views_log_their_size(caplog) -> None:
    configure_logging("info")
    service = FlowService(CategoryCatalog([]), FlowOptions())
    with caplog.at_level(logging.INFO, logger="services"):
        service.daily_flow([])
    assert "flow_built: view=daily buckets=0 items=0" in caplog.text


def test_make_engine_creates_tables() -> None:
    engine = make_engine("sqlite://")
    Base.metadata.create_all(engine)
    tables = set(inspect(engine).get_table_names())
    assert {"guides", "banks", "transactions", "scheduled_payments"} <= tables
