"""
Spreadsheet / CSV export of the reporting read model.

Rows are built once per export type and rendered by either writer, so the
two formats always carry the same columns.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from ..extensions import db
from ..models import Transaction, Product
from ..validation import ValidationError
from kasir.time_utils import parse_date_range, utcnow
from .payment_state import PaymentStatus


EXPORT_TYPES = ("transactions", "products")
EXPORT_FORMATS = ("excel", "csv")

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_MIMETYPE = "text/csv"


@dataclass
class ExportFile:
    content: bytes
    filename: str
    mimetype: str


# (header, width)
TRANSACTION_COLUMNS = [
    ("Transaction #", 28),
    ("Date", 12),
    ("Cashier", 18),
    ("Payment Method", 22),
    ("Total Amount", 14),
    ("Tax Amount", 12),
    ("Discount", 12),
    ("Final Amount", 14),
]

PRODUCT_COLUMNS = [
    ("Name", 28),
    ("SKU", 16),
    ("Category", 20),
    ("Price", 12),
    ("Cost", 12),
    ("Stock", 10),
    ("Min Stock", 10),
]


def _transaction_rows(start: str | None, end: str | None) -> list[list]:
    try:
        start_dt, end_dt = parse_date_range(start, end)
    except ValueError:
        raise ValidationError("start_date/end_date must be ISO-8601 dates")

    query = db.session.query(Transaction).filter(Transaction.payment_status == PaymentStatus.PAID.value)
    if start_dt:
        query = query.filter(Transaction.created_at >= start_dt)
    if end_dt:
        query = query.filter(Transaction.created_at <= end_dt)

    rows = []
    for t in query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).all():
        rows.append([
            t.transaction_number,
            t.created_at.strftime("%Y-%m-%d") if t.created_at else "",
            t.cashier.name if t.cashier else "",
            t.payment_method,
            t.total_amount,
            t.tax_amount,
            t.discount_amount,
            t.final_amount,
        ])
    return rows


def _product_rows() -> list[list]:
    products = (
        db.session.query(Product)
        .filter(Product.is_active.is_(True))
        .order_by(Product.name.asc())
        .all()
    )
    return [
        [
            p.name,
            p.sku,
            p.category.name if p.category else "",
            p.price,
            p.cost,
            p.stock,
            p.min_stock,
        ]
        for p in products
    ]


def _to_xlsx(sheet_title: str, columns: list[tuple[str, int]], rows: list[list]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title

    ws.append([header for header, _ in columns])
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for index, (_, width) in enumerate(columns, start=1):
        ws.column_dimensions[get_column_letter(index)].width = width

    for row in rows:
        ws.append(row)

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def _to_csv(columns: list[tuple[str, int]], rows: list[list]) -> bytes:
    stream = io.StringIO()
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow([header for header, _ in columns])
    writer.writerows(rows)
    return stream.getvalue().encode("utf-8")


def export_data(export_type: str | None, export_format: str | None, *, start: str | None = None, end: str | None = None) -> ExportFile:
    export_type = (export_type or "transactions").strip().lower()
    export_format = (export_format or "excel").strip().lower()

    if export_type not in EXPORT_TYPES:
        raise ValidationError(f"type must be one of {', '.join(EXPORT_TYPES)}")
    if export_format not in EXPORT_FORMATS:
        raise ValidationError("Invalid format")

    if export_type == "transactions":
        columns, rows, sheet = TRANSACTION_COLUMNS, _transaction_rows(start, end), "Transactions"
    else:
        columns, rows, sheet = PRODUCT_COLUMNS, _product_rows(), "Products"

    stamp = utcnow().strftime("%Y-%m-%d")
    if export_format == "excel":
        return ExportFile(_to_xlsx(sheet, columns, rows), f"{export_type}_{stamp}.xlsx", XLSX_MIMETYPE)
    return ExportFile(_to_csv(columns, rows), f"{export_type}_{stamp}.csv", CSV_MIMETYPE)
