"""
Checkout tests.

Verifies:
- Totals are computed from catalog prices
- Cash sales are PAID at once and take stock with one SALE log per line
- Digital sales stay PENDING and leave stock alone
- A sale that cannot be fulfilled is rolled back completely
- Low-stock alerts fire at stock <= min_stock
"""

import pytest

from conftest import make_product

from kasir.extensions import db
from kasir.models import Product, InventoryLog, Transaction, Notification
from kasir.services import transaction_service
from kasir.services.inventory_service import InsufficientStockError
from kasir.validation import ValidationError, NotFoundError


@pytest.fixture
def cart_products(db_session, category):
    """Two products priced for the 3 x 10.000 + 1 x 5.000 cart."""
    nasi = make_product(db_session, category, sku="FD-001", name="Nasi Goreng", price=10000, stock=10, min_stock=2)
    es = make_product(db_session, category, sku="FD-002", name="Es Jeruk", price=5000, stock=20, min_stock=2)
    return nasi, es


def _stock(product_id):
    return db.session.get(Product, product_id, populate_existing=True).stock


# =============================================================================
# CASH CHECKOUT
# =============================================================================


class TestCashCheckout:

    def test_two_line_cash_sale(self, client, cashier_headers, cart_products):
        nasi, es = cart_products
        resp = client.post(
            "/api/transactions",
            json={
                "items": [
                    {"product_id": nasi.id, "quantity": 3},
                    {"product_id": es.id, "quantity": 1},
                ],
                "payment_method": "CASH",
            },
            headers=cashier_headers,
        )
        assert resp.status_code == 201
        body = resp.get_json()

        assert body["total_amount"] == 35000
        assert body["final_amount"] == 35000
        assert body["payment_status"] == "PAID"
        assert body["paid_at"] is not None
        assert body["transaction_number"].startswith("TXN-")
        assert len(body["items"]) == 2

        assert _stock(nasi.id) == 7
        assert _stock(es.id) == 19

        logs = db.session.query(InventoryLog).filter_by(type="SALE").order_by(InventoryLog.id).all()
        assert len(logs) == 2
        assert [(l.product_id, l.quantity, l.previous_stock, l.new_stock) for l in logs] == [
            (nasi.id, 3, 10, 7),
            (es.id, 1, 20, 19),
        ]
        assert logs[0].reason == f"Sale - Transaction {body['transaction_number']}"

    def test_client_prices_are_ignored(self, client, cashier_headers, cart_products):
        nasi, _ = cart_products
        resp = client.post(
            "/api/transactions",
            json={
                "items": [{"product_id": nasi.id, "quantity": 2, "unit_price": 1}],
                "payment_method": "CASH",
            },
            headers=cashier_headers,
        )
        assert resp.status_code == 201
        item = resp.get_json()["items"][0]
        assert item["unit_price"] == 10000
        assert item["total_price"] == 20000

    def test_tax_and_discount(self, cashier_user, cart_products):
        nasi, _ = cart_products
        txn = transaction_service.create_transaction(
            items=[{"product_id": nasi.id, "quantity": 1}],
            payment_method="CASH",
            cashier_id=cashier_user.id,
            tax_amount=1100,
            discount_amount=600,
        )
        assert txn.total_amount == 10000
        assert txn.final_amount == 10500

    def test_cashier_defaults_to_caller(self, client, cashier_headers, cashier_user, cart_products):
        nasi, _ = cart_products
        resp = client.post(
            "/api/transactions",
            json={"items": [{"product_id": nasi.id, "quantity": 1}], "payment_method": "CASH"},
            headers=cashier_headers,
        )
        assert resp.get_json()["cashier_id"] == cashier_user.id

    def test_new_order_notification(self, cashier_user, cart_products):
        nasi, _ = cart_products
        txn = transaction_service.create_transaction(
            items=[{"product_id": nasi.id, "quantity": 1}],
            payment_method="CASH",
            cashier_id=cashier_user.id,
        )
        notes = db.session.query(Notification).filter_by(user_id=cashier_user.id, title="New Order").all()
        assert len(notes) == 1
        assert txn.transaction_number in notes[0].message
        assert "Rp 10.000,00" in notes[0].message


# =============================================================================
# INSUFFICIENT STOCK
# =============================================================================


class TestInsufficientStock:

    def test_whole_sale_rolls_back(self, client, cashier_headers, cart_products):
        nasi, es = cart_products
        resp = client.post(
            "/api/transactions",
            json={
                "items": [
                    {"product_id": es.id, "quantity": 1},
                    {"product_id": nasi.id, "quantity": 11},
                ],
                "payment_method": "CASH",
            },
            headers=cashier_headers,
        )
        assert resp.status_code == 409
        body = resp.get_json()
        assert "Insufficient stock" in body["error"]
        assert body["details"] == {"product_id": nasi.id, "requested": 11, "available": 10}

        assert _stock(nasi.id) == 10
        assert _stock(es.id) == 20
        assert db.session.query(Transaction).count() == 0
        assert db.session.query(InventoryLog).count() == 0

    def test_service_raises_typed_error(self, cashier_user, cart_products):
        nasi, _ = cart_products
        with pytest.raises(InsufficientStockError):
            transaction_service.create_transaction(
                items=[{"product_id": nasi.id, "quantity": 50}],
                payment_method="CASH",
                cashier_id=cashier_user.id,
            )

    def test_selling_exactly_the_remaining_stock(self, cashier_user, cart_products):
        nasi, _ = cart_products
        transaction_service.create_transaction(
            items=[{"product_id": nasi.id, "quantity": 10}],
            payment_method="CASH",
            cashier_id=cashier_user.id,
        )
        assert _stock(nasi.id) == 0


# =============================================================================
# DIGITAL CHECKOUT
# =============================================================================


class TestDigitalCheckout:

    def test_digital_sale_is_pending_and_keeps_stock(self, client, cashier_headers, cart_products):
        nasi, _ = cart_products
        resp = client.post(
            "/api/transactions",
            json={"items": [{"product_id": nasi.id, "quantity": 3}], "payment_method": "XENDIT_QRIS"},
            headers=cashier_headers,
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["payment_status"] == "PENDING"
        assert body["paid_at"] is None
        assert _stock(nasi.id) == 10
        assert db.session.query(InventoryLog).count() == 0

    def test_digital_sale_already_confirmed(self, cashier_user, cart_products):
        nasi, _ = cart_products
        txn = transaction_service.create_transaction(
            items=[{"product_id": nasi.id, "quantity": 2}],
            payment_method="XENDIT_EWALLET",
            cashier_id=cashier_user.id,
            payment_status="PAID",
            xendit_payment_id="inv_confirmed",
        )
        assert txn.payment_status == "PAID"
        assert _stock(nasi.id) == 8

    def test_pending_sale_does_not_check_stock(self, cashier_user, cart_products):
        nasi, _ = cart_products
        txn = transaction_service.create_transaction(
            items=[{"product_id": nasi.id, "quantity": 99}],
            payment_method="XENDIT_VIRTUAL_ACCOUNT",
            cashier_id=cashier_user.id,
        )
        assert txn.payment_status == "PENDING"


# =============================================================================
# LOW STOCK BOUNDARY
# =============================================================================


class TestLowStockAlert:

    def _low_stock_alerts(self, user_id):
        return db.session.query(Notification).filter_by(user_id=user_id, title="Low Stock Alert").all()

    def test_alert_when_stock_lands_on_min_stock(self, cashier_user, db_session, category):
        product = make_product(db_session, category, sku="LS-1", name="Gula", price=1000, stock=7, min_stock=5)
        transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 2}],
            payment_method="CASH",
            cashier_id=cashier_user.id,
        )
        alerts = self._low_stock_alerts(cashier_user.id)
        assert len(alerts) == 1
        assert alerts[0].meta["current_stock"] == 5
        assert alerts[0].type == "WARNING"

    def test_no_alert_one_above_min_stock(self, cashier_user, db_session, category):
        product = make_product(db_session, category, sku="LS-2", name="Garam", price=1000, stock=7, min_stock=5)
        transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 1}],
            payment_method="CASH",
            cashier_id=cashier_user.id,
        )
        assert self._low_stock_alerts(cashier_user.id) == []


# =============================================================================
# VALIDATION
# =============================================================================


class TestCheckoutValidation:

    @pytest.mark.parametrize(
        "payload,message",
        [
            ({"items": [], "payment_method": "CASH"}, "items must be a non-empty array"),
            ({"payment_method": "CASH"}, "items must be a non-empty array"),
            ({"items": [{"product_id": 1, "quantity": 1}], "payment_method": "BITCOIN"}, "payment_method"),
            ({"items": [{"product_id": 1, "quantity": 0}], "payment_method": "CASH"}, "Invalid quantity"),
            ({"items": [{"product_id": 1, "quantity": -2}], "payment_method": "CASH"}, "Invalid quantity"),
            ({"items": [{"quantity": 1}], "payment_method": "CASH"}, "product_id is required"),
        ],
    )
    def test_rejects_bad_input(self, client, cashier_headers, payload, message):
        resp = client.post("/api/transactions", json=payload, headers=cashier_headers)
        assert resp.status_code == 400
        assert message in resp.get_json()["error"]

    def test_duplicate_lines_rejected(self, cashier_user, cart_products):
        nasi, _ = cart_products
        with pytest.raises(ValidationError):
            transaction_service.create_transaction(
                items=[{"product_id": nasi.id, "quantity": 1}, {"product_id": nasi.id, "quantity": 2}],
                payment_method="CASH",
                cashier_id=cashier_user.id,
            )

    def test_unknown_product_is_404(self, client, cashier_headers):
        resp = client.post(
            "/api/transactions",
            json={"items": [{"product_id": 9999, "quantity": 1}], "payment_method": "CASH"},
            headers=cashier_headers,
        )
        assert resp.status_code == 404

    def test_unknown_cashier(self, cart_products):
        nasi, _ = cart_products
        with pytest.raises(ValidationError, match="Invalid cashier ID"):
            transaction_service.create_transaction(
                items=[{"product_id": nasi.id, "quantity": 1}],
                payment_method="CASH",
                cashier_id=424242,
            )

    def test_inactive_product_not_sellable(self, cashier_user, cart_products):
        nasi, _ = cart_products
        nasi.is_active = False
        db.session.commit()
        with pytest.raises(ValidationError, match="not available"):
            transaction_service.create_transaction(
                items=[{"product_id": nasi.id, "quantity": 1}],
                payment_method="CASH",
                cashier_id=cashier_user.id,
            )

    def test_discount_cannot_exceed_total(self, cashier_user, cart_products):
        _, es = cart_products
        with pytest.raises(ValidationError):
            transaction_service.create_transaction(
                items=[{"product_id": es.id, "quantity": 1}],
                payment_method="CASH",
                cashier_id=cashier_user.id,
                discount_amount=6000,
            )


# =============================================================================
# LISTING
# =============================================================================


class TestTransactionListing:

    def test_filters_and_pagination(self, client, cashier_headers, cashier_user, cart_products):
        nasi, es = cart_products
        cash = transaction_service.create_transaction(
            items=[{"product_id": nasi.id, "quantity": 1}], payment_method="CASH", cashier_id=cashier_user.id
        )
        transaction_service.create_transaction(
            items=[{"product_id": es.id, "quantity": 1}], payment_method="XENDIT_QRIS", cashier_id=cashier_user.id
        )

        resp = client.get("/api/transactions?status=pending", headers=cashier_headers)
        body = resp.get_json()
        assert resp.status_code == 200
        assert body["pagination"]["total"] == 1
        assert body["transactions"][0]["payment_method"] == "XENDIT_QRIS"

        resp = client.get(f"/api/transactions?search={cash.transaction_number}", headers=cashier_headers)
        assert [t["id"] for t in resp.get_json()["transactions"]] == [cash.id]

        resp = client.get("/api/transactions?per_page=1&page=2", headers=cashier_headers)
        pagination = resp.get_json()["pagination"]
        assert pagination["total_pages"] == 2
        assert pagination["has_prev"] is True

    def test_bad_date_is_400(self, client, cashier_headers):
        resp = client.get("/api/transactions?start_date=yesterday", headers=cashier_headers)
        assert resp.status_code == 400

    def test_get_one(self, client, cashier_headers, cashier_user, cart_products):
        nasi, _ = cart_products
        txn = transaction_service.create_transaction(
            items=[{"product_id": nasi.id, "quantity": 1}], payment_method="CASH", cashier_id=cashier_user.id
        )
        resp = client.get(f"/api/transactions/{txn.id}", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.get_json()["items"][0]["product"]["sku"] == "FD-001"

        assert client.get("/api/transactions/9999", headers=cashier_headers).status_code == 404

    def test_get_transaction_service_not_found(self):
        with pytest.raises(NotFoundError):
            transaction_service.get_transaction(12345)
