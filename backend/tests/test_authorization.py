"""
Authentication and authorization tests.

Verifies:
- Unauthenticated requests return 401
- Cashier role denied catalog, inventory and reporting writes (403)
- Login / logout / me lifecycle
- The webhook and health check are public
"""

import pytest

from conftest import TEST_PASSWORD, auth_headers

from kasir.extensions import db
from kasir.models import SessionToken
from kasir.services import auth_service
from kasir.services.auth_service import PasswordValidationError
from kasir.validation import ConflictError


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("GET", "/api/products"),
            ("POST", "/api/products"),
            ("GET", "/api/products/barcode"),
            ("GET", "/api/categories"),
            ("GET", "/api/inventory"),
            ("POST", "/api/inventory/adjust"),
            ("GET", "/api/inventory/logs"),
            ("GET", "/api/transactions"),
            ("POST", "/api/transactions"),
            ("PATCH", "/api/transactions/1"),
            ("POST", "/api/payments"),
            ("POST", "/api/payments/check"),
            ("GET", "/api/notifications"),
            ("POST", "/api/notifications/broadcast"),
            ("GET", "/api/reports"),
            ("GET", "/api/reports/export"),
            ("GET", "/api/dashboard/stats"),
            ("GET", "/api/sales/summary"),
        ],
    )
    def test_requires_auth(self, client, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client):
        resp = client.get("/api/products", headers=auth_headers("not-a-token"))
        assert resp.status_code == 401


# =============================================================================
# CASHIER DENIED PRIVILEGED OPERATIONS (403)
# =============================================================================


class TestCashierDenied:
    """Cashier role can sell but cannot manage the catalog or stock."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/products"),
            ("PUT", "/api/products/1"),
            ("DELETE", "/api/products/1"),
            ("POST", "/api/categories"),
            ("DELETE", "/api/categories/1"),
            ("POST", "/api/inventory/adjust"),
            ("POST", "/api/notifications/broadcast"),
            ("GET", "/api/reports/export"),
        ],
    )
    def test_forbidden(self, client, cashier_headers, method, path):
        resp = getattr(client, method.lower())(path, json={}, headers=cashier_headers)
        assert resp.status_code == 403
        assert resp.get_json()["required_roles"] == ["ADMIN", "MANAGER"]

    def test_cashier_can_sell(self, client, cashier_headers, coffee):
        resp = client.post(
            "/api/transactions",
            json={"items": [{"product_id": coffee.id, "quantity": 1}], "payment_method": "CASH"},
            headers=cashier_headers,
        )
        assert resp.status_code == 201


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================


class TestSessionLifecycle:

    def test_login_me_logout(self, client, cashier_user):
        resp = client.post("/api/auth/login", json={"email": "Cashier@Kasir.test", "password": TEST_PASSWORD})
        assert resp.status_code == 200
        token = resp.get_json()["token"]
        assert len(token) == 64

        me = client.get("/api/auth/me", headers=auth_headers(token))
        assert me.get_json()["user"]["role"] == "CASHIER"

        assert client.post("/api/auth/logout", headers=auth_headers(token)).status_code == 200
        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401

    def test_token_is_stored_hashed(self, client, cashier_user):
        token = client.post(
            "/api/auth/login", json={"email": "cashier@kasir.test", "password": TEST_PASSWORD}
        ).get_json()["token"]
        stored = db.session.query(SessionToken).filter_by(user_id=cashier_user.id).one()
        assert stored.token_hash != token

    def test_wrong_password(self, client, cashier_user):
        resp = client.post("/api/auth/login", json={"email": "cashier@kasir.test", "password": "Wrong123!"})
        assert resp.status_code == 401

    def test_missing_fields(self, client):
        assert client.post("/api/auth/login", json={"email": "x@y.z"}).status_code == 400

    def test_deactivated_user_loses_session(self, client, db_session, cashier_user, cashier_headers):
        cashier_user.is_active = False
        db_session.commit()
        assert client.get("/api/auth/me", headers=cashier_headers).status_code == 401


class TestUserCreation:

    def test_weak_password(self):
        with pytest.raises(PasswordValidationError):
            auth_service.create_user(name="Weak", email="weak@kasir.test", password="password")

    def test_duplicate_email(self, cashier_user):
        with pytest.raises(ConflictError):
            auth_service.create_user(name="Dup", email="CASHIER@kasir.test", password=TEST_PASSWORD)


# =============================================================================
# PUBLIC ENDPOINTS
# =============================================================================


class TestPublicEndpoints:

    def test_webhook_needs_no_session(self, client):
        resp = client.post("/api/webhooks/xendit", json={"external_id": "txn-1-1", "status": "PAID"})
        assert resp.status_code == 200

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["payment_gateway"]["details"]["configured"] is True
