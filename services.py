from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from aggregation import BucketedTable, aggregate_items
from catalog import CategoryCatalog
from config import get_settings, local_today
from forecast import ForecastEngine, ForecastTable
from models import Bank, Granularity, Guide, Routing, ScheduledPayment, Transaction
from periods import (
    bucket_key,
    bucket_start,
    days_of_week,
    enumerate_buckets,
    months_of_year,
    resolve_range,
    week_bucket,
    week_start,
)
from schemas import (
    BankRecord,
    CategoryRecord,
    FlowOptions,
    ScheduledPaymentRecord,
    TransactionRecord,
)
from sources import (
    AggregationItem,
    balance_before,
    combine_sources,
    filter_items,
    items_from_scheduled_payments,
    items_from_transactions,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CellDetail:
    date: str
    description: str
    amount: float


class FlowService:
    """Builds every flow view from immutable record lists.

    Routing contract per view: daily, weekly and monthly transaction views
    place items by TransactionType; the combined view and the scheduled
    payment report place them by the sign of the selected amount.
    """

    def __init__(
        self,
        catalog: CategoryCatalog,
        options: Optional[FlowOptions] = None,
        *,
        today: Optional[date] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.catalog = catalog
        self.options = options or FlowOptions.from_settings()
        self._today = today
        self._rng = rng

    @property
    def today(self) -> date:
        return self._today or local_today()

    @property
    def transfer_name(self) -> str:
        return self.catalog.transfer_name(self.options.transfer_category_id)

    def _transaction_items(
        self, transactions: Iterable[TransactionRecord]
    ) -> list[AggregationItem]:
        items = items_from_transactions(
            transactions, self.catalog, self.options.amount_field
        )
        return sorted(items, key=lambda item: item.date)

    def _build(
        self,
        view: str,
        items: Sequence[AggregationItem],
        buckets: Sequence[str],
        granularity: Granularity,
        *,
        routing: Routing,
        initial_balance: float,
        transfer_category: Optional[str],
    ) -> BucketedTable:
        table = aggregate_items(
            items,
            buckets,
            granularity,
            transfer_category,
            transfer_category_id=self.options.transfer_category_id,
            routing=routing,
            initial_balance=initial_balance,
        )
        logger.info(
            f"flow_built: view={view} buckets={len(table.buckets)} items={len(items)}"
        )
        return table

    def daily_flow(self, transactions: Iterable[TransactionRecord]) -> BucketedTable:
        items = self._transaction_items(transactions)
        start, end = self.options.start, self.options.end
        filtered = filter_items(items, start, end)
        period = resolve_range((item.date for item in filtered), start, end)
        buckets = (
            enumerate_buckets(period.start, period.end, Granularity.day)
            if period
            else []
        )
        return self._build(
            "daily",
            filtered,
            buckets,
            Granularity.day,
            routing=Routing.type,
            initial_balance=balance_before(items, start),
            transfer_category=self.transfer_name,
        )

    def weekly_flow(
        self,
        transactions: Iterable[TransactionRecord],
        *,
        week_of: Optional[date] = None,
    ) -> BucketedTable:
        """Saturday-start weeks, or the seven days of ``week_of``'s week."""
        items = self._transaction_items(transactions)
        if week_of is not None:
            buckets = days_of_week(week_of)
            first_day = week_start(week_of)
            return self._build(
                "weekly_days",
                filter_items(items, first_day, first_day + timedelta(days=6)),
                buckets,
                Granularity.day,
                routing=Routing.type,
                initial_balance=balance_before(items, first_day),
                transfer_category=self.transfer_name,
            )

        start, end = self.options.start, self.options.end
        filtered = filter_items(items, start, end)
        period = resolve_range((item.date for item in filtered), start, end)
        buckets = (
            enumerate_buckets(period.start, period.end, Granularity.week)
            if period
            else []
        )
        # A mid-week start widens to its Saturday so no record falls between
        # the opening balance and the first bucket.
        first_week = bucket_start(buckets[0], Granularity.week) if buckets else start
        return self._build(
            "weekly",
            filter_items(items, first_week, end),
            buckets,
            Granularity.week,
            routing=Routing.type,
            initial_balance=balance_before(items, first_week),
            transfer_category=self.transfer_name,
        )

    def monthly_flow(
        self, transactions: Iterable[TransactionRecord], year: int
    ) -> BucketedTable:
        items = self._transaction_items(transactions)
        return self._build(
            "monthly",
            [item for item in items if item.date.year == year],
            months_of_year(year),
            Granularity.month,
            routing=Routing.type,
            initial_balance=balance_before(items, date(year, 1, 1)),
            transfer_category=self.transfer_name,
        )

    def scheduled_flow_report(
        self,
        payments: Iterable[ScheduledPaymentRecord],
        *,
        week_of: Optional[date] = None,
    ) -> BucketedTable:
        """Weekly report of scheduled payments alone; carries no balance."""
        items = sorted(
            items_from_scheduled_payments(
                payments, self.catalog, self.options.amount_field
            ),
            key=lambda item: item.date,
        )
        if week_of is not None:
            buckets = [week_bucket(week_of)]
        elif items:
            buckets = enumerate_buckets(items[0].date, items[-1].date, Granularity.week)
        else:
            buckets = []
        return self._build(
            "scheduled_report",
            items,
            buckets,
            Granularity.week,
            routing=Routing.sign,
            initial_balance=0.0,
            transfer_category=None,
        )

    def combined_flow(
        self,
        transactions: Iterable[TransactionRecord],
        payments: Iterable[ScheduledPaymentRecord],
    ) -> BucketedTable:
        """Real transactions plus scheduled payments, day by day.

        Without an end filter the range reaches today. The opening balance
        counts real transactions only.
        """
        transactions = list(transactions)
        start, end = self.options.start, self.options.end
        combined = combine_sources(
            transactions, payments, self.catalog, self.options.amount_field
        )
        filtered = filter_items(combined, start, end)
        period = resolve_range(
            (item.date for item in filtered),
            start,
            end,
            extend_to=None if end else self.today,
        )
        buckets = (
            enumerate_buckets(period.start, period.end, Granularity.day)
            if period
            else []
        )
        return self._build(
            "combined",
            filtered,
            buckets,
            Granularity.day,
            routing=Routing.sign,
            initial_balance=balance_before(
                self._transaction_items(transactions), start
            ),
            transfer_category=self.transfer_name,
        )

    def forecasted_monthly_flow(
        self,
        transactions: Iterable[TransactionRecord],
        year: int,
        *,
        excluded_category_ids: Iterable[str] = (),
        rng: Optional[random.Random] = None,
    ) -> ForecastTable:
        settings = get_settings()
        if rng is None:
            rng = self._rng
        if rng is None and settings.forecast_seed is not None:
            rng = random.Random(settings.forecast_seed)
        engine = ForecastEngine(
            self.catalog,
            amount_field=self.options.amount_field,
            excluded_category_ids=set(self.options.excluded_category_ids)
            | set(excluded_category_ids),
            transfer_category_id=self.options.transfer_category_id,
            rng=rng,
            vat_rate=settings.vat_rate,
        )
        return engine.forecast_year(transactions, year)

    def cell_details(
        self,
        category: str,
        bucket: str,
        granularity: Granularity,
        *,
        transactions: Iterable[TransactionRecord] = (),
        payments: Iterable[ScheduledPaymentRecord] = (),
        side: Optional[str] = None,
    ) -> list[CellDetail]:
        """Records behind one displayed cell, for drill-down.

        ``side`` ("income"/"expense") keeps only amounts of that sign, except
        for the transfer category whose legs are always listed together.
        """
        items = combine_sources(
            transactions, payments, self.catalog, self.options.amount_field
        )
        transfer_id = self.options.transfer_category_id
        is_transfer = category == self.transfer_name
        details: list[CellDetail] = []
        for item in items:
            if is_transfer:
                if item.category_id != transfer_id:
                    continue
            elif item.concept != category or item.category_id == transfer_id:
                continue
            if bucket_key(item.date, granularity) != bucket:
                continue
            if side and not is_transfer:
                if side == "income" and item.amount < 0:
                    continue
                if side == "expense" and item.amount >= 0:
                    continue
            details.append(
                CellDetail(item.date.isoformat(), item.description, item.amount)
            )
        return details


class RecordRepository:
    """Persistence collaborator: stores records and hands them out as schemas."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def add_category(self, data: CategoryRecord) -> CategoryRecord:
        guide = Guide(
            id=data.id,
            name=data.name,
            is_inactive_for_forecast=data.is_inactive_for_forecast,
        )
        self.session.add(guide)
        self.session.commit()
        return data

    def list_categories(self) -> list[CategoryRecord]:
        guides = self.session.scalars(
            select(Guide).order_by(Guide.created_at, Guide.id)
        )
        return [
            CategoryRecord(
                id=g.id,
                name=g.name,
                is_inactive_for_forecast=g.is_inactive_for_forecast,
            )
            for g in guides
        ]

    def set_inactive_for_forecast(self, category_id: str, inactive: bool) -> None:
        guide = self.session.get(Guide, category_id)
        if not guide:
            raise ValueError("Category not found")
        guide.is_inactive_for_forecast = inactive
        self.session.commit()

    def add_bank(self, data: BankRecord) -> BankRecord:
        self.session.add(Bank(id=data.id, name=data.name))
        self.session.commit()
        return data

    def list_banks(self) -> list[BankRecord]:
        banks = self.session.scalars(select(Bank).order_by(Bank.created_at, Bank.id))
        return [BankRecord(id=b.id, name=b.name) for b in banks]

    def delete_catalog_item(self, kind: str, item_id: str) -> None:
        model = {"guides": Guide, "banks": Bank}.get(kind)
        if model is None:
            raise ValueError(f"Unknown catalog '{kind}'")
        item = self.session.get(model, item_id)
        if not item:
            raise ValueError("Catalog item not found")
        self.session.delete(item)
        self.session.commit()

    def load_catalog(self) -> CategoryCatalog:
        return CategoryCatalog(self.list_categories(), self.list_banks())

    def add_transactions(self, records: Iterable[TransactionRecord]) -> int:
        count = 0
        for record in records:
            self.session.add(Transaction(**record.model_dump()))
            count += 1
        self.session.commit()
        logger.debug(f"transactions_added: count={count}")
        return count

    def list_transactions(self) -> list[TransactionRecord]:
        rows = self.session.scalars(
            select(Transaction).order_by(Transaction.date, Transaction.id)
        ).all()
        logger.debug(f"transactions_loaded: count={len(rows)}")
        return [
            TransactionRecord(
                id=t.id,
                bank=t.bank,
                guide=t.guide,
                date=t.date,
                description=t.description,
                amount_mn=t.amount_mn,
                amount_me=t.amount_me,
                type=t.type,
                assigned=t.assigned,
            )
            for t in rows
        ]

    def update_transaction(
        self, transaction_id: str, **changes: object
    ) -> TransactionRecord:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise ValueError("Transaction not found")
        current = TransactionRecord(
            id=txn.id,
            bank=txn.bank,
            guide=txn.guide,
            date=txn.date,
            description=txn.description,
            amount_mn=txn.amount_mn,
            amount_me=txn.amount_me,
            type=txn.type,
            assigned=txn.assigned,
        )
        updated = TransactionRecord(**{**current.model_dump(), **changes, "id": txn.id})
        for key, value in updated.model_dump().items():
            setattr(txn, key, value)
        self.session.commit()
        return updated

    def delete_transaction(self, transaction_id: str) -> None:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise ValueError("Transaction not found")
        self.session.delete(txn)
        self.session.commit()

    def clear_transactions(self) -> None:
        self.session.execute(delete(Transaction))
        self.session.commit()

    def add_scheduled_payments(self, records: Iterable[ScheduledPaymentRecord]) -> int:
        count = 0
        for record in records:
            self.session.add(ScheduledPayment(**record.model_dump()))
            count += 1
        self.session.commit()
        logger.debug(f"scheduled_payments_added: count={count}")
        return count

    def list_scheduled_payments(self) -> list[ScheduledPaymentRecord]:
        rows = self.session.scalars(
            select(ScheduledPayment).order_by(
                ScheduledPayment.date, ScheduledPayment.id
            )
        ).all()
        logger.debug(f"scheduled_payments_loaded: count={len(rows)}")
        return [
            ScheduledPaymentRecord(
                id=p.id,
                responsible=p.responsible,
                supplier=p.supplier,
                concept=p.concept,
                amount_me=p.amount_me,
                exchange_rate=p.exchange_rate,
                amount=p.amount,
                guide=p.guide,
                date=p.date,
            )
            for p in rows
        ]

    def delete_scheduled_payment(self, payment_id: str) -> None:
        payment = self.session.get(ScheduledPayment, payment_id)
        if not payment:
            raise ValueError("Scheduled payment not found")
        self.session.delete(payment)
        self.session.commit()
