import logging
import os
from datetime import date, datetime
from functools import lru_cache
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        amount_field: str,
        vat_rate: float,
        forecast_seed: Optional[int],
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.amount_field = amount_field
        self.vat_rate = vat_rate
        self.forecast_seed = forecast_seed
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("CASHFLOW_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _optional_int(raw: Optional[str]) -> Optional[int]:
    if raw is None or not raw.strip():
        return None
    return int(raw)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("CASHFLOW_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'cashflow.db'}"
    timezone = os.getenv("CASHFLOW_TIMEZONE", "America/Mexico_City")
    amount_field = os.getenv("CASHFLOW_AMOUNT_FIELD", "home").strip().lower()
    vat_rate = float(os.getenv("CASHFLOW_VAT_RATE", "0.16"))
    forecast_seed = _optional_int(os.getenv("CASHFLOW_FORECAST_SEED"))
    log_level = os.getenv("CASHFLOW_LOG_LEVEL", "INFO").strip().upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        amount_field=amount_field,
        vat_rate=vat_rate,
        forecast_seed=forecast_seed,
        log_level=log_level,
    )


def configure_logging(level: Optional[str] = None) -> None:
    level_name = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()
