from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum as SAEnum, Float, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class AmountField(str, Enum):
    home = "home"
    foreign = "foreign"


class Granularity(str, Enum):
    day = "day"
    week = "week"
    month = "month"


class Routing(str, Enum):
    """Which field decides the income/expense side of an item.

    ``type`` trusts the record's TransactionType, ``sign`` trusts the sign of
    the selected amount. Magnitudes always come from the amount itself.
    """

    type = "type"
    sign = "sign"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Guide(Base, TimestampMixin):
    __tablename__ = "guides"

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    is_inactive_for_forecast: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )


class Bank(Base, TimestampMixin):
    __tablename__ = "banks"

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    bank: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    guide: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    date: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    amount_mn: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    amount_me: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    assigned: Mapped[str] = mapped_column(String(120), nullable=False, default="")

    __table_args__ = (
        Index("ix_transactions_date", "date"),
        Index("ix_transactions_guide_date", "guide", "date"),
    )


class ScheduledPayment(Base, TimestampMixin):
    __tablename__ = "scheduled_payments"

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    responsible: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    supplier: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    concept: Mapped[str] = mapped_column(Text, nullable=False, default="")
    amount_me: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    exchange_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    guide: Mapped[Optional[str]] = mapped_column(String(40))
    date: Mapped[str] = mapped_column(String(10), nullable=False)

    __table_args__ = (Index("ix_scheduled_payments_date", "date"),)
