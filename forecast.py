from __future__ import annotations

import logging
import random
import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

from aggregation import EPSILON, BucketBalance, BucketTotals, running_balance
from catalog import CategoryCatalog, category_sort_key
from models import AmountField
from periods import add_months, month_bucket, months_of_year, parse_record_date
from schemas import TRANSFER_CATEGORY_ID, TransactionRecord

logger = logging.getLogger(__name__)

INITIAL_BALANCE_CATEGORY_NAME = "0-Saldo Inicial"
PAYROLL_CATEGORY_NAME = "19-Nómina"
AGUINALDO_CATEGORY_NAME = "20-Aguinaldo"
PTU_CATEGORY_NAME = "22-PTU Garantizada"
VAT_CATEGORY_PREFIX = "29-"
OPERATING_INCOME_PATTERN = re.compile(r"\bP\d{4}\b")

# Lines that never carry creditable VAT: payroll, statutory withholdings,
# taxes and intercompany payables.
VAT_EXEMPT_EXPENSE_NAMES = frozenset(
    {
        "19-Nómina",
        "20-Aguinaldo",
        "22-PTU Garantizada",
        "25-Nómina generico",
        "23-Finiquitos",
        "26-IMSS, RCV e INFONAVIT",
        "27-Impuesto Sobre Remuneraciones",
        "28-ISR Personas Morales",
        "30-ISR Retenido",
        "31-IVA Retenido",
        "32-Otros impuestos federales",
        "59-American Express Company mexic",
        "65-ISR por pagar",
        "66-IVA por pagar",
        "67-Retenidos por pagar",
        "68-IMSS, RCV e INFONAVIT por pagar",
        "69-Impuesto Sobre Remuneraciones por pagar",
        "70-Otros impuestos por pagar",
        "71-AMEXCO PYPSA Cta. 51003",
        "72-Carbures Europe, S.A (Suc)",
        "74-Fonacot",
        "75-Gratificacion Garantizada",
        "76-Gratificacion FA",
        "80-Otros Acreedores por Pagar",
    }
)

DEFAULT_VAT_RATE = 0.16
TRAILING_MONTHS = 3
# Multiplicative spread around the average: (r - 0.5) * 0.4 is within +/-20%.
VARIATION_SPREAD = 0.4
AGUINALDO_MONTH = 12
PTU_MONTH = 5


@dataclass
class VatLine:
    name: str
    amount: float


@dataclass
class VatBreakdown:
    incomes: list[VatLine] = field(default_factory=list)
    expenses: list[VatLine] = field(default_factory=list)
    total_income: float = 0.0
    total_expense: float = 0.0
    iva_collected: float = 0.0
    iva_creditable: float = 0.0
    net_vat: float = 0.0


@dataclass
class ForecastCell:
    amount: float
    is_forecast: bool


@dataclass
class ForecastTable:
    year: int
    months: list[str]
    forecast_months: list[str]
    cells: dict[str, dict[str, ForecastCell]]
    totals: dict[str, BucketTotals]
    initial_balance: float
    category_names: dict[str, str]
    vat_breakdowns: dict[str, VatBreakdown] = field(default_factory=dict)
    monthly_averages: dict[str, float] = field(default_factory=dict)
    last_real_date: Optional[date] = None
    transfer_category_id: Optional[str] = TRANSFER_CATEGORY_ID

    def is_forecast(self, month: str) -> bool:
        return month in self.forecast_months

    def vat_breakdown(self, month: str) -> Optional[VatBreakdown]:
        return self.vat_breakdowns.get(month)

    def name_of(self, category_id: str) -> str:
        return self.category_names.get(category_id, category_id)

    def amount(self, category_id: str, month: str) -> Optional[float]:
        cell = self.cells.get(category_id, {}).get(month)
        return cell.amount if cell else None

    def income_value(self, category_id: str, month: str) -> Optional[float]:
        value = self.amount(category_id, month)
        if value is None:
            return None
        if category_id == self.transfer_category_id:
            return value if abs(value) > EPSILON else None
        return value if value > 0 else None

    def expense_value(self, category_id: str, month: str) -> Optional[float]:
        if category_id == self.transfer_category_id:
            return None
        value = self.amount(category_id, month)
        return value if value is not None and value < 0 else None

    def _sorted_ids(self, ids: Iterable[str]) -> list[str]:
        return sorted(
            ids, key=lambda category_id: category_sort_key(self.name_of(category_id))
        )

    def income_categories(self) -> list[str]:
        return self._sorted_ids(
            category_id
            for category_id, by_month in self.cells.items()
            if any(self.income_value(category_id, m) is not None for m in by_month)
        )

    def expense_categories(self) -> list[str]:
        return self._sorted_ids(
            category_id
            for category_id, by_month in self.cells.items()
            if any(self.expense_value(category_id, m) is not None for m in by_month)
        )

    def forecast_total(self, category_id: str) -> float:
        by_month = self.cells.get(category_id, {})
        return sum(
            (cell.amount for cell in by_month.values() if cell.is_forecast), 0.0
        )

    def balances(self) -> list[BucketBalance]:
        return running_balance(self.initial_balance, self.months, self.totals)


@dataclass
class _History:
    dated: list[tuple[date, TransactionRecord]]
    last_real: Optional[date]
    active_ids: list[str]
    initial_balance_id: Optional[str]
    payroll_id: Optional[str]
    aguinaldo_id: Optional[str]
    ptu_id: Optional[str]
    base_averages: dict[str, float]
    averages_by_year: dict[int, dict[str, float]] = field(default_factory=dict)

    def is_forecast_month(self, month: str) -> bool:
        if self.last_real is None:
            return True
        return date(int(month[:4]), int(month[5:7]), 1) > self.last_real


class ForecastEngine:
    """Extends a year of actual monthly flows into the months with no data.

    Months up to the last real transaction month are reported as posted.
    Later months get each active category's trailing average, with seasonal
    bonus lines derived from payroll, a +/-20% variation reconciled in
    December, and a VAT line derived from the other forecast lines.
    """

    def __init__(
        self,
        catalog: CategoryCatalog,
        *,
        amount_field: AmountField = AmountField.home,
        excluded_category_ids: Iterable[str] = (),
        transfer_category_id: str = TRANSFER_CATEGORY_ID,
        rng: Optional[random.Random] = None,
        vat_rate: float = DEFAULT_VAT_RATE,
    ) -> None:
        self.catalog = catalog
        self.amount_field = amount_field
        self.excluded_category_ids = frozenset(excluded_category_ids)
        self.transfer_category_id = transfer_category_id
        self.rng = rng or random.Random()
        self.vat_rate = vat_rate

    def forecast_year(
        self, transactions: Iterable[TransactionRecord], year: int
    ) -> ForecastTable:
        history = self._history(transactions)
        averages = self._averages_for_year(history, year)
        months = months_of_year(year)

        vat_category = self.catalog.first_with_prefix(VAT_CATEGORY_PREFIX)
        vat_id = vat_category.id if vat_category else None

        cells: dict[str, dict[str, ForecastCell]] = {}
        vat_breakdowns: dict[str, VatBreakdown] = {}
        correction: dict[str, float] = defaultdict(float)
        forecast_months: list[str] = []

        for month in months:
            if not history.is_forecast_month(month):
                self._post_actuals(history, month, cells)
                continue
            forecast_months.append(month)
            is_last_month = month == months[-1]
            # Phase 1: every active category except the derived VAT line.
            for category_id in history.active_ids:
                if category_id == vat_id:
                    continue
                amount = self._forecast_amount(
                    history, category_id, month, averages, correction, is_last_month
                )
                if abs(amount) > EPSILON:
                    cells.setdefault(category_id, {})[month] = ForecastCell(
                        amount, True
                    )
            # Phase 2: VAT from this month's phase-1 lines.
            if vat_id and vat_id in history.active_ids:
                breakdown = self._derive_vat(cells, month)
                if abs(breakdown.net_vat) > EPSILON:
                    cells.setdefault(vat_id, {})[month] = ForecastCell(
                        breakdown.net_vat, True
                    )
                    vat_breakdowns[month] = breakdown

        totals = {month: BucketTotals() for month in months}
        for category_id, by_month in cells.items():
            for month, cell in by_month.items():
                bucket_totals = totals[month]
                if category_id == self.transfer_category_id or cell.amount > 0:
                    bucket_totals.income += cell.amount
                else:
                    bucket_totals.expense += cell.amount
                bucket_totals.net += cell.amount

        initial_balance = sum(
            (
                txn.amount(self.amount_field)
                for d, txn in history.dated
                if d.year < year
            ),
            0.0,
        )
        logger.info(
            f"forecast_built: year={year} last_real={history.last_real} "
            f"forecast_months={len(forecast_months)} categories={len(cells)}"
        )
        return ForecastTable(
            year=year,
            months=months,
            forecast_months=forecast_months,
            cells=cells,
            totals=totals,
            initial_balance=initial_balance,
            category_names={
                category_id: self.catalog.name_of(category_id) for category_id in cells
            },
            vat_breakdowns=vat_breakdowns,
            monthly_averages=dict(averages),
            last_real_date=history.last_real,
            transfer_category_id=self.transfer_category_id,
        )

    def _history(self, transactions: Iterable[TransactionRecord]) -> _History:
        dated: list[tuple[date, TransactionRecord]] = []
        for txn in transactions:
            parsed = parse_record_date(txn.date)
            if parsed is None:
                logger.debug(
                    f"skip_record: source=transaction id={txn.id} date={txn.date!r}"
                )
                continue
            dated.append((parsed, txn))
        last_real = max((d for d, _ in dated), default=None)

        active_ids = [
            c.id
            for c in self.catalog.categories
            if not c.is_inactive_for_forecast and c.id not in self.excluded_category_ids
        ]
        history = _History(
            dated=dated,
            last_real=last_real,
            active_ids=active_ids,
            initial_balance_id=self.catalog.id_of(INITIAL_BALANCE_CATEGORY_NAME),
            payroll_id=self.catalog.id_of(PAYROLL_CATEGORY_NAME),
            aguinaldo_id=self.catalog.id_of(AGUINALDO_CATEGORY_NAME),
            ptu_id=self.catalog.id_of(PTU_CATEGORY_NAME),
            base_averages={},
        )
        history.base_averages = self._trailing_averages(history)
        return history

    def _counts_toward_history(self, history: _History, category_id: str) -> bool:
        return (
            bool(category_id)
            and category_id in history.active_ids
            and category_id != history.initial_balance_id
        )

    def _trailing_averages(self, history: _History) -> dict[str, float]:
        if history.last_real is None:
            return {}
        window_start = add_months(history.last_real, -TRAILING_MONTHS)
        sums: dict[str, float] = defaultdict(float)
        months_with_data: set[str] = set()
        for d, txn in history.dated:
            if not self._counts_toward_history(history, txn.guide):
                continue
            if window_start <= d <= history.last_real:
                sums[txn.guide] += txn.amount(self.amount_field)
                months_with_data.add(month_bucket(d))
        month_count = max(len(months_with_data), 1)
        return {category_id: total / month_count for category_id, total in sums.items()}

    def _averages_for_year(self, history: _History, year: int) -> dict[str, float]:
        if history.last_real is None or year <= history.last_real.year:
            return history.base_averages
        cached = history.averages_by_year.get(year)
        if cached is not None:
            return cached

        previous_totals = self._year_totals(history, year - 1)
        adjusted: dict[str, float] = {}
        for category_id, average in history.base_averages.items():
            projected = average * 12
            previous = previous_totals.get(category_id, 0.0)
            if abs(projected) > abs(previous) and previous != 0:
                adjusted[category_id] = previous / 12
            else:
                adjusted[category_id] = average
        history.averages_by_year[year] = adjusted
        return adjusted

    def _year_totals(self, history: _History, year: int) -> dict[str, float]:
        averages = self._averages_for_year(history, year)
        totals: dict[str, float] = defaultdict(float)
        for month in months_of_year(year):
            if history.is_forecast_month(month):
                month_number = int(month[5:7])
                for category_id, average in history.base_averages.items():
                    if category_id == history.aguinaldo_id:
                        totals[category_id] += self._payroll_bonus(
                            history, averages, month_number, AGUINALDO_MONTH
                        )
                    elif category_id == history.ptu_id:
                        totals[category_id] += self._payroll_bonus(
                            history, averages, month_number, PTU_MONTH
                        )
                    else:
                        totals[category_id] += averages.get(category_id, average)
                continue
            for d, txn in history.dated:
                if month_bucket(d) != month:
                    continue
                if self._counts_toward_history(history, txn.guide):
                    totals[txn.guide] += txn.amount(self.amount_field)
        return totals

    def _payroll_bonus(
        self,
        history: _History,
        averages: dict[str, float],
        month_number: int,
        bonus_month: int,
    ) -> float:
        if month_number != bonus_month or not history.payroll_id:
            return 0.0
        payroll_average = averages.get(history.payroll_id, 0.0)
        return -(abs(payroll_average) / 2)

    def _forecast_amount(
        self,
        history: _History,
        category_id: str,
        month: str,
        averages: dict[str, float],
        correction: dict[str, float],
        is_last_month: bool,
    ) -> float:
        """One category's forecast for one month.

        December returns the average minus the drift booked so far. When that
        figure is itself under EPSILON it is dropped, so the year can miss
        ``average * months`` by at most EPSILON.
        """
        month_number = int(month[5:7])
        if category_id == history.aguinaldo_id:
            return self._payroll_bonus(history, averages, month_number, AGUINALDO_MONTH)
        if category_id == history.ptu_id:
            return self._payroll_bonus(history, averages, month_number, PTU_MONTH)

        average = averages.get(category_id, 0.0)
        if abs(average) < EPSILON:
            return 0.0
        if is_last_month:
            # December absorbs the drift so the year sums to average * months.
            return average - correction.pop(category_id, 0.0)
        variation = (self.rng.random() - 0.5) * VARIATION_SPREAD
        varied = average * (1 + variation)
        if abs(varied) <= EPSILON:
            # Not stored, so the whole average is owed to December.
            varied = 0.0
        correction[category_id] += varied - average
        return varied

    def _derive_vat(
        self, cells: dict[str, dict[str, ForecastCell]], month: str
    ) -> VatBreakdown:
        breakdown = VatBreakdown()
        for category_id, by_month in cells.items():
            cell = by_month.get(month)
            if cell is None or not cell.is_forecast:
                continue
            name = self.catalog.name_of(category_id)
            if OPERATING_INCOME_PATTERN.search(name):
                breakdown.incomes.append(VatLine(name, cell.amount))
                breakdown.total_income += cell.amount
            elif cell.amount < 0 and name not in VAT_EXEMPT_EXPENSE_NAMES:
                breakdown.expenses.append(VatLine(name, cell.amount))
                breakdown.total_expense += cell.amount

        gross = 1 + self.vat_rate
        breakdown.iva_collected = breakdown.total_income / gross * self.vat_rate
        breakdown.iva_creditable = abs(breakdown.total_expense) / gross * self.vat_rate
        breakdown.net_vat = -(breakdown.iva_collected - breakdown.iva_creditable)
        return breakdown

    def _post_actuals(
        self,
        history: _History,
        month: str,
        cells: dict[str, dict[str, ForecastCell]],
    ) -> None:
        for d, txn in history.dated:
            if not txn.guide or month_bucket(d) != month:
                continue
            by_month = cells.setdefault(txn.guide, {})
            cell = by_month.get(month)
            if cell is None:
                cell = by_month[month] = ForecastCell(0.0, False)
            cell.amount += txn.amount(self.amount_field)
