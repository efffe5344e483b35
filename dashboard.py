from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from aggregation import EPSILON
from catalog import CategoryCatalog
from config import local_today
from models import AmountField, TransactionType
from periods import Period, parse_record_date, resolve_dashboard_period
from schemas import (
    TRANSFER_CATEGORY_ID,
    FlowOptions,
    ScheduledPaymentRecord,
    TransactionRecord,
)

logger = logging.getLogger(__name__)

OPERATING = "Operating"
INVESTING = "Investing"
FINANCING = "Financing"

ACTIVITY_LABELS = {
    OPERATING: "Operaciones",
    INVESTING: "Inversiones",
    FINANCING: "Financiamiento",
}

_INVESTING_IDS = frozenset({"16", "17", "18", "62"})
_FINANCING_IDS = frozenset({"13", "14", "15", "58"})

TOP_CATEGORY_LIMIT = 5
CHART_TRAILING_MONTHS = 3


def activity_type(category_id: Optional[str]) -> str:
    if category_id in _INVESTING_IDS:
        return INVESTING
    if category_id in _FINANCING_IDS:
        return FINANCING
    return OPERATING


@dataclass(frozen=True)
class DashboardKpis:
    income: float
    expenses: float
    operating_flow: float
    accounts_payable: float
    final_balance: float
    cash_ratio: float


@dataclass(frozen=True)
class ActivityShare:
    activity: str
    label: str
    value: float
    percentage: float


@dataclass(frozen=True)
class CategoryTotal:
    name: str
    value: float


@dataclass(frozen=True)
class BankBalance:
    name: str
    balance: float


@dataclass
class ChartPoint:
    month: int
    income: Optional[float] = None
    expense: Optional[float] = None
    projected_income: Optional[float] = None
    projected_expense: Optional[float] = None
    real_balance: Optional[float] = None
    projected_balance: Optional[float] = None

    @property
    def is_real(self) -> bool:
        return self.income is not None or self.expense is not None


@dataclass(frozen=True)
class MonthSummary:
    month: int
    income: float
    expense: float

    @property
    def profit(self) -> float:
        return self.income - self.expense

    @property
    def margin(self) -> float:
        return self.profit / self.income * 100 if self.income > 0 else 0.0


@dataclass(frozen=True)
class FinancialSummary:
    year: int
    months: list[MonthSummary]
    initial_balance: float

    @property
    def total_income(self) -> float:
        return sum(m.income for m in self.months)

    @property
    def total_expense(self) -> float:
        return sum(m.expense for m in self.months)

    @property
    def total_profit(self) -> float:
        return self.total_income - self.total_expense

    @property
    def total_margin(self) -> float:
        income = self.total_income
        return self.total_profit / income * 100 if income > 0 else 0.0

    @property
    def final_balance(self) -> float:
        return self.initial_balance + self.total_profit


@dataclass(frozen=True)
class PeriodData:
    period: Period
    transactions: list[tuple[date, TransactionRecord]]
    initial_balance: float


class DashboardService:
    """Headline figures for a year or a slice of one.

    Transfers between own accounts are left out of everything except the bank
    balances and the financial summary, which nets them into income.
    """

    def __init__(
        self,
        catalog: CategoryCatalog,
        options: Optional[FlowOptions] = None,
        *,
        today: Optional[date] = None,
    ) -> None:
        self.catalog = catalog
        self.options = options or FlowOptions.from_settings()
        self._today = today

    @property
    def today(self) -> date:
        return self._today or local_today()

    @property
    def amount_field(self) -> AmountField:
        return self.options.amount_field

    @property
    def transfer_category_id(self) -> str:
        return self.options.transfer_category_id or TRANSFER_CATEGORY_ID

    def _dated(
        self, transactions: Iterable[TransactionRecord]
    ) -> list[tuple[date, TransactionRecord]]:
        dated = []
        for txn in transactions:
            parsed = parse_record_date(txn.date)
            if parsed is not None:
                dated.append((parsed, txn))
        return dated

    def period_data(
        self,
        transactions: Iterable[TransactionRecord],
        year: int,
        period_type: str = "year",
        period: int = 0,
    ) -> PeriodData:
        selected = resolve_dashboard_period(year, period_type, period)
        dated = [
            (d, txn)
            for d, txn in self._dated(transactions)
            if txn.guide != self.transfer_category_id
        ]
        in_period = [(d, t) for d, t in dated if selected.start <= d <= selected.end]
        initial_balance = sum(
            (t.amount(self.amount_field) for d, t in dated if d < selected.start),
            0.0,
        )
        return PeriodData(selected, in_period, initial_balance)

    def kpis(
        self,
        transactions: Iterable[TransactionRecord],
        payments: Iterable[ScheduledPaymentRecord],
        year: int,
        period_type: str = "year",
        period: int = 0,
    ) -> DashboardKpis:
        data = self.period_data(transactions, year, period_type, period)
        field = self.amount_field
        income = sum(
            t.amount(field)
            for _, t in data.transactions
            if t.type == TransactionType.income
        )
        expenses = sum(
            abs(t.amount(field))
            for _, t in data.transactions
            if t.type == TransactionType.expense
        )
        operating_flow = sum(
            t.amount(field)
            for _, t in data.transactions
            if activity_type(t.guide) == OPERATING
        )

        today = self.today
        accounts_payable = 0.0
        for payment in payments:
            due = parse_record_date(payment.date)
            amount = payment.amount_for(field)
            if due is not None and due > today and amount < 0:
                accounts_payable += abs(amount)

        kpis = DashboardKpis(
            income=income,
            expenses=expenses,
            operating_flow=operating_flow,
            accounts_payable=accounts_payable,
            final_balance=data.initial_balance + income - expenses,
            cash_ratio=income / expenses if expenses > 0 else 0.0,
        )
        logger.info(
            f"dashboard_kpis: year={year} period_type={period_type} period={period} "
            f"transactions={len(data.transactions)}"
        )
        return kpis

    def activity_breakdown(
        self,
        transactions: Iterable[TransactionRecord],
        year: int,
        period_type: str = "year",
        period: int = 0,
    ) -> list[ActivityShare]:
        data = self.period_data(transactions, year, period_type, period)
        totals = {OPERATING: 0.0, INVESTING: 0.0, FINANCING: 0.0}
        for _, txn in data.transactions:
            totals[activity_type(txn.guide)] += txn.amount(self.amount_field)
        total_abs = sum(abs(v) for v in totals.values())
        return [
            ActivityShare(
                activity=activity,
                label=ACTIVITY_LABELS[activity],
                value=value,
                percentage=abs(value) / total_abs * 100 if total_abs > 0 else 0.0,
            )
            for activity, value in totals.items()
        ]

    def activity_descriptions(self) -> dict[str, str]:
        investing = [
            c.bare_name
            for c in self.catalog.categories
            if activity_type(c.id) == INVESTING
        ]
        financing = [
            c.bare_name
            for c in self.catalog.categories
            if activity_type(c.id) == FINANCING
        ]
        return {
            INVESTING: f"Suma de categorías: {', '.join(investing)}.",
            FINANCING: f"Suma de categorías: {', '.join(financing)}.",
            OPERATING: (
                "Suma de todas las demás categorías que no son de inversión "
                "o financiamiento."
            ),
        }

    def top_categories(
        self,
        transactions: Iterable[TransactionRecord],
        year: int,
        period_type: str = "year",
        period: int = 0,
        *,
        limit: int = TOP_CATEGORY_LIMIT,
    ) -> tuple[list[CategoryTotal], list[CategoryTotal]]:
        """Largest income and expense categories, expenses as positive values."""
        data = self.period_data(transactions, year, period_type, period)
        incomes: dict[str, float] = defaultdict(float)
        expenses: dict[str, float] = defaultdict(float)
        for _, txn in data.transactions:
            name = self.catalog.name_of(txn.guide)
            value = txn.amount(self.amount_field)
            if txn.type == TransactionType.income:
                incomes[name] += value
            else:
                expenses[name] += abs(value)

        def _top(values: dict[str, float]) -> list[CategoryTotal]:
            ranked = sorted(values.items(), key=lambda item: item[1], reverse=True)
            return [CategoryTotal(name, value) for name, value in ranked[:limit]]

        return _top(incomes), _top(expenses)

    def bank_balances(
        self,
        transactions: Iterable[TransactionRecord],
        year: int,
        period_type: str = "year",
        period: int = 0,
    ) -> list[BankBalance]:
        end = resolve_dashboard_period(year, period_type, period).end
        balances: dict[str, float] = defaultdict(float)
        for d, txn in self._dated(transactions):
            if d <= end:
                balances[txn.bank] += txn.amount(self.amount_field)
        rows = [
            BankBalance(self.catalog.bank_name(bank_id), balance)
            for bank_id, balance in balances.items()
            if abs(balance) > EPSILON
        ]
        return sorted(rows, key=lambda row: row.balance, reverse=True)

    def monthly_chart(
        self,
        transactions: Iterable[TransactionRecord],
        year: int,
        period_type: str = "year",
        period: int = 0,
    ) -> list[ChartPoint]:
        """Twelve points of real flow plus a flat projection of the rest of the year.

        The projection repeats the average of the last three real months; in
        the current year, months after today's month always count as projected.
        """
        data = self.period_data(transactions, year, period_type, period)
        today = self.today
        points = [ChartPoint(month=m) for m in range(1, 13)]

        last_real = 0
        for d, txn in data.transactions:
            if d.year != year:
                continue
            if year == today.year and d.month > today.month:
                continue
            point = points[d.month - 1]
            last_real = max(last_real, d.month)
            if point.income is None:
                point.income = 0.0
                point.expense = 0.0
            value = txn.amount(self.amount_field)
            if txn.type == TransactionType.income:
                point.income += value
            else:
                point.expense += abs(value)

        if 0 < last_real < 12:
            window = [
                p
                for p in points[max(0, last_real - CHART_TRAILING_MONTHS) : last_real]
                if p.income is not None
            ]
            avg_income = sum(p.income for p in window) / len(window) if window else 0.0
            avg_expense = sum(p.expense for p in window) / len(window) if window else 0.0
            anchor = points[last_real - 1]
            anchor.projected_income = anchor.income
            anchor.projected_expense = anchor.expense
            for point in points[last_real:]:
                point.projected_income = avg_income
                point.projected_expense = avg_expense

        balance = data.initial_balance
        for point in points:
            if point.is_real:
                balance += (point.income or 0.0) - (point.expense or 0.0)
                point.real_balance = balance
            else:
                balance += (point.projected_income or 0.0) - (
                    point.projected_expense or 0.0
                )
                point.projected_balance = balance

        if 0 < last_real < 12:
            anchor = points[last_real - 1]
            anchor.projected_balance = anchor.real_balance
        return points

    def financial_summary(
        self, transactions: Iterable[TransactionRecord], year: int
    ) -> FinancialSummary:
        income = [0.0] * 12
        expense = [0.0] * 12
        initial_balance = 0.0
        for d, txn in self._dated(transactions):
            value = txn.amount(self.amount_field)
            if d.year < year:
                initial_balance += value
                continue
            if d.year != year:
                continue
            if txn.guide == self.transfer_category_id:
                income[d.month - 1] += value
            elif txn.type == TransactionType.income:
                income[d.month - 1] += value
            else:
                expense[d.month - 1] += abs(value)
        months = [
            MonthSummary(month=i + 1, income=income[i], expense=expense[i])
            for i in range(12)
        ]
        return FinancialSummary(year=year, months=months, initial_balance=initial_balance)
