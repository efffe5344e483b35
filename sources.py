import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from catalog import CategoryCatalog
from models import AmountField, TransactionType
from periods import parse_record_date
from schemas import ScheduledPaymentRecord, TransactionRecord

logger = logging.getLogger(__name__)

SOURCE_TRANSACTION = "transaction"
SOURCE_SCHEDULED = "scheduled"


@dataclass(frozen=True)
class AggregationItem:
    date: date
    concept: str
    amount: float
    type: TransactionType
    category_id: Optional[str] = None
    description: str = ""
    source: str = SOURCE_TRANSACTION


def items_from_transactions(
    transactions: Iterable[TransactionRecord],
    catalog: CategoryCatalog,
    amount_field: AmountField,
) -> list[AggregationItem]:
    items: list[AggregationItem] = []
    for txn in transactions:
        parsed = parse_record_date(txn.date)
        if parsed is None:
            logger.debug(
                f"skip_record: source=transaction id={txn.id} date={txn.date!r}"
            )
            continue
        items.append(
            AggregationItem(
                date=parsed,
                concept=catalog.name_of(txn.guide),
                amount=txn.amount(amount_field),
                type=txn.type,
                category_id=txn.guide or None,
                description=txn.description,
                source=SOURCE_TRANSACTION,
            )
        )
    return items


def items_from_scheduled_payments(
    payments: Iterable[ScheduledPaymentRecord],
    catalog: CategoryCatalog,
    amount_field: AmountField,
) -> list[AggregationItem]:
    items: list[AggregationItem] = []
    for payment in payments:
        parsed = parse_record_date(payment.date)
        if parsed is None:
            logger.debug(
                f"skip_record: source=scheduled id={payment.id} date={payment.date!r}"
            )
            continue
        amount = payment.amount_for(amount_field)
        concept = catalog.name_of(payment.guide) if payment.guide else payment.concept
        items.append(
            AggregationItem(
                date=parsed,
                concept=concept,
                amount=amount,
                type=TransactionType.income if amount >= 0 else TransactionType.expense,
                category_id=payment.guide,
                description=payment.concept,
                source=SOURCE_SCHEDULED,
            )
        )
    return items


def combine_sources(
    transactions: Iterable[TransactionRecord],
    payments: Iterable[ScheduledPaymentRecord],
    catalog: CategoryCatalog,
    amount_field: AmountField,
) -> list[AggregationItem]:
    combined = items_from_transactions(transactions, catalog, amount_field)
    combined.extend(items_from_scheduled_payments(payments, catalog, amount_field))
    # sorted() is stable: same-day items keep transactions before payments.
    return sorted(combined, key=lambda item: item.date)


def filter_items(
    items: Iterable[AggregationItem],
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> list[AggregationItem]:
    kept = []
    for item in items:
        if start and item.date < start:
            continue
        if end and item.date > end:
            continue
        kept.append(item)
    return kept


def balance_before(items: Iterable[AggregationItem], start: Optional[date]) -> float:
    if start is None:
        return 0.0
    return sum((item.amount for item in items if item.date < start), 0.0)
