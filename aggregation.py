from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Sequence

from catalog import sort_category_names
from models import Granularity, Routing, TransactionType
from periods import bucket_key
from sources import AggregationItem

# Amounts below this are treated as empty cells.
EPSILON = 0.01


@dataclass
class BucketTotals:
    income: float = 0.0
    expense: float = 0.0
    net: float = 0.0


@dataclass
class CategoryCell:
    net: float = 0.0
    income: float = 0.0
    expense: float = 0.0


@dataclass(frozen=True)
class BucketBalance:
    bucket: str
    opening: float
    closing: float


def running_balance(
    initial_balance: float,
    buckets: Sequence[str],
    totals: Mapping[str, BucketTotals],
) -> list[BucketBalance]:
    balances: list[BucketBalance] = []
    opening = initial_balance
    for bucket in buckets:
        bucket_totals = totals.get(bucket)
        closing = opening + (bucket_totals.net if bucket_totals else 0.0)
        balances.append(BucketBalance(bucket, opening, closing))
        opening = closing
    return balances


@dataclass
class BucketedTable:
    granularity: Granularity
    buckets: list[str]
    cells: dict[str, dict[str, CategoryCell]] = field(default_factory=dict)
    totals: dict[str, BucketTotals] = field(default_factory=dict)
    initial_balance: float = 0.0
    transfer_category: Optional[str] = None

    @property
    def data_by_category(self) -> dict[str, dict[str, float]]:
        return {
            category: {bucket: cell.net for bucket, cell in by_bucket.items()}
            for category, by_bucket in self.cells.items()
        }

    def is_transfer(self, category: str) -> bool:
        return self.transfer_category is not None and category == self.transfer_category

    def income_value(self, category: str, bucket: str) -> Optional[float]:
        cell = self.cells.get(category, {}).get(bucket)
        if cell is None:
            return None
        if self.is_transfer(category):
            return cell.income if abs(cell.income) > EPSILON else None
        return cell.income if cell.income > 0 else None

    def expense_value(self, category: str, bucket: str) -> Optional[float]:
        if self.is_transfer(category):
            return None
        cell = self.cells.get(category, {}).get(bucket)
        if cell is None:
            return None
        return cell.expense if cell.expense < 0 else None

    def income_categories(self) -> list[str]:
        return sort_category_names(
            category
            for category in self.cells
            if any(
                self.income_value(category, b) is not None for b in self.cells[category]
            )
        )

    def expense_categories(self) -> list[str]:
        return sort_category_names(
            category
            for category in self.cells
            if any(
                self.expense_value(category, b) is not None for b in self.cells[category]
            )
        )

    def balances(self) -> list[BucketBalance]:
        return running_balance(self.initial_balance, self.buckets, self.totals)

    @property
    def final_balance(self) -> float:
        return self.initial_balance + sum(t.net for t in self.totals.values())


def _routes_to_income(item: AggregationItem, routing: Routing) -> bool:
    if routing == Routing.sign:
        return item.amount >= 0
    return item.type == TransactionType.income


def _is_transfer(
    item: AggregationItem,
    transfer_category: Optional[str],
    transfer_category_id: Optional[str],
) -> bool:
    if transfer_category is None:
        return False
    if transfer_category_id is not None:
        return item.category_id == transfer_category_id
    return item.concept == transfer_category


def aggregate_items(
    items: Iterable[AggregationItem],
    buckets: Sequence[str],
    granularity: Granularity,
    transfer_category: Optional[str],
    *,
    transfer_category_id: Optional[str] = None,
    routing: Routing = Routing.type,
    initial_balance: float = 0.0,
) -> BucketedTable:
    """Group items into category x bucket cells plus per-bucket totals.

    Items outside ``buckets`` are ignored. Transfer items are netted per
    bucket first and the single net figure lands on the income side, so a
    transfer that nets to zero never inflates income or expense.

    With ``transfer_category_id`` set, transfers are the items carrying that
    category id and are shown under ``transfer_category`` whatever name the
    catalog resolved for them. Without it they are matched by name.
    """
    totals = {bucket: BucketTotals() for bucket in buckets}
    cells: dict[str, dict[str, CategoryCell]] = {}
    transfer_net: dict[str, float] = defaultdict(float)

    for item in items:
        key = bucket_key(item.date, granularity)
        bucket_totals = totals.get(key)
        if bucket_totals is None:
            continue
        is_transfer = _is_transfer(item, transfer_category, transfer_category_id)
        concept = transfer_category if is_transfer else item.concept
        cell = cells.setdefault(concept, {}).setdefault(key, CategoryCell())
        cell.net += item.amount
        if is_transfer:
            transfer_net[key] += item.amount
            continue
        if _routes_to_income(item, routing):
            cell.income += item.amount
            bucket_totals.income += item.amount
        else:
            cell.expense += item.amount
            bucket_totals.expense += item.amount
        bucket_totals.net += item.amount

    for key, net in transfer_net.items():
        cells[transfer_category][key].income = net
        totals[key].income += net
        totals[key].net += net

    return BucketedTable(
        granularity=granularity,
        buckets=list(buckets),
        cells=cells,
        totals=totals,
        initial_balance=initial_balance,
        transfer_category=transfer_category,
    )
