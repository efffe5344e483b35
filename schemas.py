import re
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from config import get_settings
from models import AmountField, TransactionType

TRANSFER_CATEGORY_ID = "13"

_NUMBER_PREFIX = re.compile(r"^(\d+)-")


class CategoryRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    is_inactive_for_forecast: bool = False

    @property
    def number(self) -> Optional[int]:
        match = _NUMBER_PREFIX.match(self.name)
        return int(match.group(1)) if match else None

    @property
    def bare_name(self) -> str:
        return _NUMBER_PREFIX.sub("", self.name, count=1).strip()


class BankRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str

    @property
    def is_foreign_currency(self) -> bool:
        return "USD" in self.name or "EURO" in self.name


class TransactionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    bank: str = ""
    guide: str = ""
    date: str
    description: str = ""
    amount_mn: float = 0.0
    amount_me: float = 0.0
    type: TransactionType
    assigned: str = ""

    @property
    def month(self) -> str:
        return self.date[:7]

    def amount(self, field: AmountField) -> float:
        if field == AmountField.foreign:
            return self.amount_me
        return self.amount_mn


class ScheduledPaymentRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    responsible: str = ""
    supplier: str = ""
    concept: str = ""
    amount_me: float = 0.0
    exchange_rate: float = 0.0
    amount: float = 0.0
    guide: Optional[str] = None
    date: str

    @field_validator("guide")
    @classmethod
    def _blank_guide_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @property
    def type(self) -> TransactionType:
        # Scheduled payments carry no type; the home-currency sign decides.
        return TransactionType.income if self.amount >= 0 else TransactionType.expense

    def amount_for(self, field: AmountField) -> float:
        if field == AmountField.foreign:
            return self.amount_me
        return self.amount


class FlowOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount_field: AmountField = AmountField.home
    start: Optional[date] = None
    end: Optional[date] = None
    transfer_category_id: str = TRANSFER_CATEGORY_ID
    excluded_category_ids: frozenset[str] = Field(default_factory=frozenset)

    @model_validator(mode="after")
    def _check_range(self) -> "FlowOptions":
        if self.start and self.end and self.start > self.end:
            raise ValueError("Start date must be before end date")
        return self

    @classmethod
    def from_settings(cls, **overrides: object) -> "FlowOptions":
        settings = get_settings()
        values: dict[str, object] = {"amount_field": AmountField(settings.amount_field)}
        values.update(overrides)
        return cls(**values)
