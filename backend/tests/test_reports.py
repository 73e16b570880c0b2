"""
Reporting, export and dashboard tests.

Only PAID transactions count towards revenue.
"""

import csv
import io
from datetime import datetime, timedelta

import pytest
from openpyxl import load_workbook

from conftest import make_product

from kasir.extensions import db
from kasir.models import Transaction
from kasir.services import reporting_service, transaction_service
from kasir.services.reporting_service import ReportError
from kasir.time_utils import utcnow


@pytest.fixture
def sales(cashier_user, coffee, tea):
    """Two PAID sales (cash + QRIS) and one PENDING QRIS sale."""
    cash = transaction_service.create_transaction(
        items=[{"product_id": coffee.id, "quantity": 2}, {"product_id": tea.id, "quantity": 1}],
        payment_method="CASH",
        cashier_id=cashier_user.id,
    )
    qris = transaction_service.create_transaction(
        items=[{"product_id": tea.id, "quantity": 4}],
        payment_method="XENDIT_QRIS",
        cashier_id=cashier_user.id,
        payment_status="PAID",
    )
    pending = transaction_service.create_transaction(
        items=[{"product_id": coffee.id, "quantity": 5}],
        payment_method="XENDIT_QRIS",
        cashier_id=cashier_user.id,
    )
    return cash, qris, pending


class TestReports:

    def test_overview(self, client, manager_headers, sales):
        resp = client.get("/api/reports", headers=manager_headers)
        assert resp.status_code == 200
        overview = resp.get_json()["overview"]
        # 35.000 cash + 20.000 QRIS; the pending sale is excluded
        assert overview["total_revenue"] == 55000
        assert overview["total_transactions"] == 2
        assert overview["total_products"] == 2
        assert overview["average_order_value"] == 27500

    def test_overview_low_stock_uses_min_stock(self, db_session, category):
        make_product(db_session, category, sku="L1", name="At min", price=1, stock=3, min_stock=3)
        make_product(db_session, category, sku="L2", name="Above", price=1, stock=4, min_stock=3)
        make_product(db_session, category, sku="L3", name="High min", price=1, stock=8, min_stock=10)

        overview = reporting_service.build_report("overview")["overview"]
        assert overview["low_stock_count"] == 2

    def test_sales_breakdown(self, client, manager_headers, sales):
        body = client.get("/api/reports?type=sales", headers=manager_headers).get_json()

        assert body["summary"] == {"total_amount": 55000, "total_revenue": 55000, "total_transactions": 2}
        assert body["payment_methods"] == [
            {"payment_method": "CASH", "revenue": 35000, "transactions": 1},
            {"payment_method": "XENDIT_QRIS", "revenue": 20000, "transactions": 1},
        ]
        trend = body["revenue_trends"]
        assert len(trend) == 1
        assert trend[0]["date"] == utcnow().strftime("%Y-%m-%d")
        assert (trend[0]["cash_transactions"], trend[0]["digital_transactions"]) == (1, 1)

    def test_top_products(self, client, manager_headers, sales, tea):
        body = client.get("/api/reports?type=products", headers=manager_headers).get_json()
        top = body["top_products"]
        assert [p["name"] for p in top] == ["Kopi Susu", "Teh Manis"]
        assert top[1] == {
            "product_id": tea.id,
            "name": "Teh Manis",
            "sku": "BEV-002",
            "category": "Beverages",
            "quantity": 5,
            "revenue": 25000,
            "orders": 2,
        }

    def test_inventory_report(self, client, manager_headers, db_session, category, coffee):
        make_product(db_session, category, sku="INV-1", name="Telur", price=2000, stock=1, min_stock=6)
        body = client.get("/api/reports?type=inventory", headers=manager_headers).get_json()
        assert body["inventory_stats"] == {"total_stock": 11, "product_count": 2}
        assert [p["name"] for p in body["low_stock_products"]] == ["Telur"]

    def test_date_range_excludes_other_days(self, client, manager_headers, sales):
        cash, _, _ = sales
        row = db.session.get(Transaction, cash.id)
        row.created_at = utcnow() - timedelta(days=40)
        db.session.commit()

        today = utcnow().strftime("%Y-%m-%d")
        body = client.get(f"/api/reports?start_date={today}&end_date={today}", headers=manager_headers).get_json()
        assert body["overview"]["total_revenue"] == 20000

    def test_invalid_type_and_dates(self, client, manager_headers):
        assert client.get("/api/reports?type=profit", headers=manager_headers).status_code == 400
        assert client.get("/api/reports?start_date=31-01-2025", headers=manager_headers).status_code == 400

    def test_report_error_is_validation_error(self):
        with pytest.raises(ReportError):
            reporting_service.build_report("nope")


class TestDashboard:

    def test_dashboard_stats(self, client, cashier_headers, sales):
        body = client.get("/api/dashboard/stats", headers=cashier_headers).get_json()
        assert body["total_transactions"] == 3
        assert body["total_revenue"] == 55000
        assert body["total_products"] == 2

    def test_sales_summary_change_against_last_month(self, cashier_user, coffee):
        now = datetime(2026, 3, 15, 12, 0, 0)
        for when, qty in ((datetime(2026, 2, 10), 2), (datetime(2026, 3, 2), 3)):
            txn = transaction_service.create_transaction(
                items=[{"product_id": coffee.id, "quantity": qty}],
                payment_method="CASH",
                cashier_id=cashier_user.id,
            )
            txn.created_at = when
            db.session.commit()

        summary = reporting_service.sales_summary(now)
        assert summary["monthly_revenue"] == 45000
        assert summary["previous_month_revenue"] == 30000
        assert summary["percentage_change"] == 50.0
        assert summary["total_revenue"] == 75000

    def test_sales_summary_without_history(self, client, cashier_headers):
        body = client.get("/api/sales/summary", headers=cashier_headers).get_json()
        assert body["percentage_change"] == 0
        assert body["last_updated"].endswith("Z")


class TestExport:

    def test_excel_export(self, client, manager_headers, sales):
        resp = client.get("/api/reports/export?type=transactions&format=excel", headers=manager_headers)
        assert resp.status_code == 200
        assert resp.mimetype == "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        stamp = utcnow().strftime("%Y-%m-%d")
        assert f'filename="transactions_{stamp}.xlsx"' in resp.headers["Content-Disposition"]

        ws = load_workbook(io.BytesIO(resp.data)).active
        rows = list(ws.iter_rows(values_only=True))
        assert rows[0][0] == "Transaction #"
        assert ws["A1"].font.bold
        # header + the two PAID sales
        assert len(rows) == 3
        assert sorted(r[7] for r in rows[1:]) == [20000, 35000]

    def test_csv_products_export(self, client, admin_headers, coffee, tea):
        resp = client.get("/api/reports/export?type=products&format=csv", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.mimetype == "text/csv"

        rows = list(csv.reader(io.StringIO(resp.data.decode("utf-8"))))
        assert rows[0] == ["Name", "SKU", "Category", "Price", "Cost", "Stock", "Min Stock"]
        assert rows[1] == ["Kopi Susu", "BEV-001", "Beverages", "15000", "9000", "10", "5"]

    def test_invalid_format(self, client, manager_headers):
        resp = client.get("/api/reports/export?format=pdf", headers=manager_headers)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid format"

    def test_cashier_cannot_export(self, client, cashier_headers):
        assert client.get("/api/reports/export", headers=cashier_headers).status_code == 403
