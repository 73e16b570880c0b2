"""
CLI command tests (flask system ..., flask payments ...).
"""

from kasir.extensions import db
from kasir.models import User, Category, Transaction
from kasir.services import transaction_service


class TestSystemCommands:

    def test_init_is_idempotent(self, app):
        runner = app.test_cli_runner()

        first = runner.invoke(args=["system", "init"])
        assert first.exit_code == 0, first.output
        assert "Created user: admin@kasir.local" in first.output
        assert {u.role for u in db.session.query(User).all()} == {"ADMIN", "MANAGER", "CASHIER"}
        assert db.session.query(Category).filter_by(name="General").count() == 1

        second = runner.invoke(args=["system", "init"])
        assert second.exit_code == 0
        assert "already exists" in second.output
        assert db.session.query(User).count() == 3

    def test_create_user(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(
            args=["system", "create-user", "--name", "Siti", "--email", "siti@kasir.test", "--role", "manager"],
            input="Rahasia123!\nRahasia123!\n",
        )
        assert result.exit_code == 0, result.output
        user = db.session.query(User).filter_by(email="siti@kasir.test").one()
        assert user.role == "MANAGER"

    def test_create_user_weak_password(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(
            args=["system", "create-user", "--name", "Budi", "--email", "budi@kasir.test"],
            input="short\nshort\n",
        )
        assert result.exit_code != 0
        assert "Password validation failed" in result.output


class TestPaymentCommands:

    def test_reconcile_pending(self, app, gateway, cashier_user, coffee):
        txn = transaction_service.create_transaction(
            items=[{"product_id": coffee.id, "quantity": 1}],
            payment_method="XENDIT_QRIS",
            cashier_id=cashier_user.id,
            xendit_payment_id="inv_cli",
        )
        gateway.statuses["inv_cli"] = "EXPIRED"

        result = app.test_cli_runner().invoke(args=["payments", "reconcile-pending"])

        assert result.exit_code == 0, result.output
        assert "Checked 1 transaction(s): 1 changed, 0 gateway failure(s)" in result.output
        assert "EXPIRED" in result.output
        assert db.session.get(Transaction, txn.id, populate_existing=True).payment_status == "EXPIRED"
