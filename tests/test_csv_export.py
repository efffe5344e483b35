import random
from datetime import date

from catalog import CategoryCatalog
from csv_utils import (
    ExportTable,
    export_bucketed_table,
    export_combined_table,
    export_filename,
    export_forecast_table,
    export_scheduled_report,
    render_csv,
    sanitize_csv_value,
)
from forecast import ForecastEngine
from models import TransactionType
from schemas import (
    CategoryRecord,
    FlowOptions,
    ScheduledPaymentRecord,
    TransactionRecord,
)
from services import FlowService

TRANSFER = "13-Traspasos intercompañia"


def make_catalog() -> CategoryCatalog:
    return CategoryCatalog(
        [
            CategoryRecord(id="1", name="1-Ventas"),
            CategoryRecord(id="13", name=TRANSFER),
            CategoryRecord(id="40", name="40-Papelería"),
        ]
    )


def make_service() -> FlowService:
    return FlowService(make_catalog(), FlowOptions(), today=date(2024, 1, 6))


def txn(id_: str, guide: str, d: str, amount: float) -> TransactionRecord:
    return TransactionRecord(
        id=id_,
        guide=guide,
        date=d,
        amount_mn=amount,
        type=TransactionType.income if amount >= 0 else TransactionType.expense,
    )


def scenario() -> list[TransactionRecord]:
    return [
        txn("t1", "1", "2024-01-05", 100.0),
        txn("t2", "13", "2024-01-05", 50.0),
        txn("t3", "13", "2024-01-06", -50.0),
    ]


def test_daily_export_rows() -> None:
    export = export_bucketed_table(make_service().daily_flow(scenario()))

    assert export.headers == ["Categoría", "05/01/2024", "06/01/2024"]
    assert export.rows == [
        ["Saldo Inicial", 0.0, 150.0],
        ["INGRESOS", None, None],
        ["1-Ventas", 100.0, None],
        [TRANSFER, 50.0, -50.0],
        ["Total Ingresos", 150.0, -50.0],
        ["EGRESOS", None, None],
        ["Total Egresos", 0.0, 0.0],
        ["Saldo Final", 150.0, 100.0],
    ]


def test_render_csv_with_bom_and_blank_cells() -> None:
    export = export_bucketed_table(make_service().daily_flow(scenario()))
    lines = render_csv(export).split("\n")

    assert lines[0] == "\ufeffCategoría,05/01/2024,06/01/2024"
    assert lines[1] == "Saldo Inicial,0,150"
    assert lines[2] == "INGRESOS,,"
    assert lines[3] == "1-Ventas,100,"


def test_render_csv_quotes_and_sanitizes_text() -> None:
    export = ExportTable(
        headers=["Concepto", "Monto"],
        rows=[["Renta, oficina", 10.5], ['Dice "hola"', -3.0], ["=cmd|calc", None]],
    )
    lines = render_csv(export).split("\n")

    assert lines[1] == '"Renta, oficina",10.5'
    assert lines[2] == '"Dice ""hola""",-3'
    assert lines[3] == "\t=cmd|calc,"


def test_sanitize_csv_value() -> None:
    assert sanitize_csv_value("  ") == ""
    assert sanitize_csv_value("@SUM(A1)") == "\t@SUM(A1)"
    assert sanitize_csv_value("https://example.com") == "\thttps://example.com"
    assert sanitize_csv_value("40-Papelería") == "40-Papelería"


def test_combined_export_uses_projected_labels() -> None:
    table = make_service().combined_flow(scenario(), [])
    export = export_combined_table(table)
    assert export.rows[0][0] == "Saldo Inicial Proyectado"
    assert export.rows[-1][0] == "Saldo Final Proyectado"


def test_scheduled_report_export_has_no_balance_rows() -> None:
    payments = [
        ScheduledPaymentRecord(id="p1", amount=-20.0, guide="40", date="2024-01-08"),
        ScheduledPaymentRecord(id="p2", amount=80.0, concept="Cobro", date="2024-01-09"),
    ]
    export = export_scheduled_report(make_service().scheduled_flow_report(payments))

    assert export.headers == ["Concepto / Categoría", "06/01/2024 al 12/01/2024"]
    assert [row[0] for row in export.rows] == [
        "INGRESOS",
        "Cobro",
        "Total Ingresos",
        "EGRESOS",
        "40-Papelería",
        "Total Egresos",
    ]


def test_forecast_export_tags_forecast_months() -> None:
    records = [
        TransactionRecord(
            id=f"t{m}",
            guide="40",
            date=f"2024-{m:02d}-10",
            amount_mn=-100.0,
            type=TransactionType.expense,
        )
        for m in (1, 2, 3)
    ]
    engine = ForecastEngine(make_catalog(), rng=random.Random(3))
    export = export_forecast_table(engine.forecast_year(records, 2024))

    assert export.headers[1] == "enero de 2024"
    assert export.headers[3] == "marzo de 2024"
    assert export.headers[4] == "abril de 2024 (P)"
    assert export.headers[12] == "diciembre de 2024 (P)"
    assert export.rows[0][0] == "Saldo Inicial"
    assert ["40-Papelería", -100.0, -100.0, -100.0] == export.rows[4][:4]
    assert export.rows[-1][0] == "Saldo Final"


def test_export_filename() -> None:
    assert export_filename("flujo_mensual", "2024") == "flujo_mensual_2024.csv"
