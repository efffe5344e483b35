import csv
import re
from dataclasses import dataclass, field
from io import StringIO
from typing import Optional, Union

from aggregation import BucketedTable
from config import local_today
from forecast import ForecastTable
from periods import format_bucket, format_month_name

Cell = Union[str, float, None]

CATEGORY_HEADER = "Categoría"
CONCEPT_HEADER = "Concepto / Categoría"
OPENING_LABEL = "Saldo Inicial"
PROJECTED_OPENING_LABEL = "Saldo Inicial Proyectado"
INCOME_LABEL = "INGRESOS"
INCOME_TOTAL_LABEL = "Total Ingresos"
EXPENSE_LABEL = "EGRESOS"
EXPENSE_TOTAL_LABEL = "Total Egresos"
CLOSING_LABEL = "Saldo Final"
PROJECTED_CLOSING_LABEL = "Saldo Final Proyectado"
FORECAST_TAG = "(P)"

CSV_BOM = "\ufeff"


@dataclass
class ExportTable:
    headers: list[str]
    rows: list[list[Cell]] = field(default_factory=list)


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^\.",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _render_cell(value: Cell) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return sanitize_csv_value(value)
    return _format_number(value)


def render_csv(table: ExportTable) -> str:
    """UTF-8 CSV text with a BOM so spreadsheet tools detect the encoding."""
    output = StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow([_render_cell(h) for h in table.headers])
    for row in table.rows:
        writer.writerow([_render_cell(value) for value in row])
    return CSV_BOM + output.getvalue()


def _category_row(name: str, buckets: list[str], value_of) -> list[Cell]:
    return [name, *(value_of(bucket) for bucket in buckets)]


def export_bucketed_table(
    table: BucketedTable,
    *,
    first_header: str = CATEGORY_HEADER,
    include_balances: bool = True,
    opening_label: str = OPENING_LABEL,
    closing_label: str = CLOSING_LABEL,
) -> ExportTable:
    buckets = table.buckets
    export = ExportTable(
        headers=[
            first_header,
            *(format_bucket(b, table.granularity) for b in buckets),
        ]
    )
    balances = {b.bucket: b for b in table.balances()} if include_balances else {}

    if include_balances:
        export.rows.append(
            [opening_label, *(balances[b].opening for b in buckets)]
        )

    export.rows.append([INCOME_LABEL, *([None] * len(buckets))])
    for category in table.income_categories():
        export.rows.append(
            _category_row(
                category, buckets, lambda b, c=category: table.income_value(c, b)
            )
        )
    export.rows.append(
        [INCOME_TOTAL_LABEL, *(table.totals[b].income for b in buckets)]
    )

    export.rows.append([EXPENSE_LABEL, *([None] * len(buckets))])
    for category in table.expense_categories():
        export.rows.append(
            _category_row(
                category, buckets, lambda b, c=category: table.expense_value(c, b)
            )
        )
    export.rows.append(
        [EXPENSE_TOTAL_LABEL, *(table.totals[b].expense for b in buckets)]
    )

    if include_balances:
        export.rows.append(
            [closing_label, *(balances[b].closing for b in buckets)]
        )
    return export


def export_combined_table(table: BucketedTable) -> ExportTable:
    return export_bucketed_table(
        table,
        opening_label=PROJECTED_OPENING_LABEL,
        closing_label=PROJECTED_CLOSING_LABEL,
    )


def export_scheduled_report(table: BucketedTable) -> ExportTable:
    return export_bucketed_table(
        table, first_header=CONCEPT_HEADER, include_balances=False
    )


def _forecast_header(table: ForecastTable, month: str) -> str:
    name = format_month_name(month)
    return f"{name} {FORECAST_TAG}" if table.is_forecast(month) else name


def export_forecast_table(table: ForecastTable) -> ExportTable:
    months = table.months
    export = ExportTable(
        headers=[CATEGORY_HEADER, *(_forecast_header(table, m) for m in months)]
    )
    balances = {b.bucket: b for b in table.balances()}

    export.rows.append(
        [OPENING_LABEL, *(balances[m].opening for m in months)]
    )
    export.rows.append([INCOME_LABEL, *([None] * len(months))])
    for category_id in table.income_categories():
        export.rows.append(
            _category_row(
                table.name_of(category_id),
                months,
                lambda m, c=category_id: table.income_value(c, m),
            )
        )
    export.rows.append([INCOME_TOTAL_LABEL, *(table.totals[m].income for m in months)])

    export.rows.append([EXPENSE_LABEL, *([None] * len(months))])
    for category_id in table.expense_categories():
        export.rows.append(
            _category_row(
                table.name_of(category_id),
                months,
                lambda m, c=category_id: table.expense_value(c, m),
            )
        )
    export.rows.append(
        [EXPENSE_TOTAL_LABEL, *(table.totals[m].expense for m in months)]
    )
    export.rows.append(
        [CLOSING_LABEL, *(balances[m].closing for m in months)]
    )
    return export


def export_filename(prefix: str, suffix: Optional[str] = None) -> str:
    """``flujo_diario_2025-01-31.csv`` style names; the suffix defaults to today."""
    return f"{prefix}_{suffix or local_today().isoformat()}.csv"
