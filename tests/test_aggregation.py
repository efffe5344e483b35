from datetime import date

from aggregation import BucketTotals, aggregate_items, running_balance
from catalog import UNCATEGORIZED, CategoryCatalog
from models import Granularity, Routing, TransactionType
from periods import enumerate_buckets
from schemas import CategoryRecord
from sources import AggregationItem

TRANSFER = "13-Traspasos intercompañia"


def make_item(
    d: date, concept: str, amount: float, type_: TransactionType
) -> AggregationItem:
    return AggregationItem(date=d, concept=concept, amount=amount, type=type_)


def make_catalog() -> CategoryCatalog:
    return CategoryCatalog(
        [
            CategoryRecord(id="1", name="1-Ventas"),
            CategoryRecord(id="13", name=TRANSFER),
            CategoryRecord(id="40", name="40-Papelería"),
        ]
    )


def test_transfer_legs_net_into_income() -> None:
    items = [
        make_item(date(2024, 1, 5), "1-Ventas", 100.0, TransactionType.income),
        make_item(date(2024, 1, 5), TRANSFER, 50.0, TransactionType.income),
        make_item(date(2024, 1, 6), TRANSFER, -50.0, TransactionType.expense),
    ]
    buckets = enumerate_buckets(date(2024, 1, 5), date(2024, 1, 6), Granularity.day)
    table = aggregate_items(items, buckets, Granularity.day, TRANSFER)

    assert table.totals["2024-01-05"].income == 150.0
    assert table.totals["2024-01-06"].income == -50.0
    assert table.totals["2024-01-05"].expense == 0.0
    assert table.totals["2024-01-06"].expense == 0.0
    assert table.income_value(TRANSFER, "2024-01-06") == -50.0
    assert table.expense_value(TRANSFER, "2024-01-06") is None
    assert TRANSFER in table.income_categories()
    assert TRANSFER not in table.expense_categories()


def test_transfer_netting_to_zero_is_invisible() -> None:
    items = [
        make_item(date(2024, 1, 5), TRANSFER, 75.0, TransactionType.income),
        make_item(date(2024, 1, 5), TRANSFER, -75.0, TransactionType.expense),
    ]
    table = aggregate_items(items, ["2024-01-05"], Granularity.day, TRANSFER)

    totals = table.totals["2024-01-05"]
    assert totals.income == 0.0
    assert totals.expense == 0.0
    assert totals.net == 0.0
    assert table.income_value(TRANSFER, "2024-01-05") is None
    assert table.income_categories() == []


def test_net_conservation_per_bucket() -> None:
    items = [
        make_item(date(2024, 3, 1), "1-Ventas", 1200.0, TransactionType.income),
        make_item(date(2024, 3, 2), "40-Papelería", -300.0, TransactionType.expense),
        make_item(date(2024, 3, 9), "40-Papelería", -45.5, TransactionType.expense),
        make_item(date(2024, 3, 9), TRANSFER, 20.0, TransactionType.income),
    ]
    buckets = enumerate_buckets(date(2024, 3, 1), date(2024, 3, 15), Granularity.week)
    table = aggregate_items(items, buckets, Granularity.week, TRANSFER)

    for bucket in table.buckets:
        totals = table.totals[bucket]
        assert abs(totals.income + totals.expense - totals.net) < 1e-9
        assert totals.expense <= 0


def test_empty_buckets_are_present_with_zero_totals() -> None:
    buckets = enumerate_buckets(date(2024, 1, 1), date(2024, 1, 3), Granularity.day)
    table = aggregate_items([], buckets, Granularity.day, TRANSFER)

    assert table.buckets == ["2024-01-01", "2024-01-02", "2024-01-03"]
    assert all(table.totals[b].net == 0.0 for b in buckets)
    assert table.initial_balance == 0.0
    assert table.final_balance == 0.0


def test_items_outside_buckets_are_ignored() -> None:
    items = [
        make_item(date(2024, 1, 1), "1-Ventas", 10.0, TransactionType.income),
        make_item(date(2024, 2, 1), "1-Ventas", 99.0, TransactionType.income),
    ]
    table = aggregate_items(items, ["2024-01"], Granularity.month, TRANSFER)
    assert table.totals["2024-01"].income == 10.0
    assert "2024-02" not in table.totals


def test_sign_routing_uses_amount_sign() -> None:
    # A refund recorded as an expense with a positive amount.
    items = [make_item(date(2024, 1, 1), "40-Papelería", 30.0, TransactionType.expense)]
    by_type = aggregate_items(items, ["2024-01-01"], Granularity.day, TRANSFER)
    by_sign = aggregate_items(
        items, ["2024-01-01"], Granularity.day, TRANSFER, routing=Routing.sign
    )

    assert by_type.totals["2024-01-01"].expense == 30.0
    assert by_sign.totals["2024-01-01"].income == 30.0
    assert by_sign.totals["2024-01-01"].expense == 0.0


def test_balance_continuity() -> None:
    items = [
        make_item(date(2024, 1, 2), "1-Ventas", 500.0, TransactionType.income),
        make_item(date(2024, 1, 4), "40-Papelería", -120.0, TransactionType.expense),
        make_item(date(2024, 1, 4), TRANSFER, -30.0, TransactionType.expense),
    ]
    buckets = enumerate_buckets(date(2024, 1, 1), date(2024, 1, 5), Granularity.day)
    table = aggregate_items(
        items, buckets, Granularity.day, TRANSFER, initial_balance=1000.0
    )
    balances = table.balances()

    assert balances[0].opening == 1000.0
    for previous, current in zip(balances, balances[1:]):
        assert previous.closing == current.opening
    assert balances[-1].closing == 1000.0 + sum(t.net for t in table.totals.values())
    assert balances[-1].closing == table.final_balance == 1350.0


def test_running_balance_treats_missing_totals_as_zero() -> None:
    balances = running_balance(5.0, ["a", "b"], {"b": BucketTotals(net=2.0)})
    assert [(b.opening, b.closing) for b in balances] == [(5.0, 5.0), (5.0, 7.0)]


def test_category_order_is_numeric() -> None:
    items = [
        make_item(date(2024, 1, 1), "10-Bar", 1.0, TransactionType.income),
        make_item(date(2024, 1, 1), "Zeta", 1.0, TransactionType.income),
        make_item(date(2024, 1, 1), "2-Foo", 1.0, TransactionType.income),
    ]
    table = aggregate_items(items, ["2024-01-01"], Granularity.day, TRANSFER)
    assert table.income_categories() == ["2-Foo", "10-Bar", "Zeta"]
    assert table.income_categories() == table.income_categories()


def test_data_by_category_keeps_net_values() -> None:
    catalog = make_catalog()
    items = [
        make_item(date(2024, 1, 1), catalog.name_of("1"), 10.0, TransactionType.income),
        make_item(date(2024, 1, 1), catalog.name_of("1"), -4.0, TransactionType.expense),
    ]
    table = aggregate_items(items, ["2024-01-01"], Granularity.day, TRANSFER)
    assert table.data_by_category == {"1-Ventas": {"2024-01-01": 6.0}}
    assert table.income_value("1-Ventas", "2024-01-01") == 10.0
    assert table.expense_value("1-Ventas", "2024-01-01") == -4.0


def test_transfers_are_matched_by_category_id() -> None:
    items = [
        AggregationItem(
            date=date(2024, 1, 5),
            concept=UNCATEGORIZED,
            amount=50.0,
            type=TransactionType.income,
            category_id="13",
        ),
        AggregationItem(
            date=date(2024, 1, 5),
            concept=UNCATEGORIZED,
            amount=-50.0,
            type=TransactionType.expense,
            category_id="13",
        ),
        make_item(date(2024, 1, 5), UNCATEGORIZED, 5.0, TransactionType.income),
    ]
    table = aggregate_items(
        items, ["2024-01-05"], Granularity.day, TRANSFER, transfer_category_id="13"
    )

    totals = table.totals["2024-01-05"]
    assert (totals.income, totals.expense, totals.net) == (5.0, 0.0, 5.0)
    assert table.data_by_category == {
        TRANSFER: {"2024-01-05": 0.0},
        UNCATEGORIZED: {"2024-01-05": 5.0},
    }
