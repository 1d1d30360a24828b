# Overview: Pytest coverage for the app factory, health endpoint and CLI.

import pytest

from workshop import create_app
from workshop.errors import ConflictError
from workshop.models import InventoryItem, Service, Setting
from workshop.services import stock_service, user_service


@pytest.fixture
def bare_app():
    """Separate app with throwaway routes for exercising the error handlers."""
    app = create_app({
        'TESTING': False,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    })

    @app.get("/boom/conflict")
    def conflict():
        raise ConflictError("Job card JC2026030001 already has an invoice", details={"invoice_id": 7})

    @app.get("/boom/crash")
    def crash():
        raise RuntimeError("kaboom")

    return app


class TestErrorHandlers:
    def test_workshop_error_maps_to_status_and_body(self, bare_app):
        resp = bare_app.test_client().get("/boom/conflict")

        assert resp.status_code == 409
        assert resp.get_json() == {
            "error": "Job card JC2026030001 already has an invoice",
            "details": {"invoice_id": 7},
        }

    def test_unexpected_error_is_a_generic_500(self, bare_app):
        resp = bare_app.test_client().get("/boom/crash")

        assert resp.status_code == 500
        assert resp.get_json() == {"error": "Internal server error"}

    def test_http_errors_pass_through(self, bare_app):
        assert bare_app.test_client().get("/nowhere").status_code == 404


class TestHealth:
    def test_healthy(self, client, item, clock):
        resp = client.get("/api/health")
        body = resp.get_json()

        assert resp.status_code == 200
        assert body["status"] == "healthy"
        assert body["timestamp"] == "2026-03-15T10:30:00Z"
        assert body["checks"]["database"]["details"]["inventory_items"] == 1
        assert body["checks"]["stock_ledger"]["details"] == {"mismatched_items": 0}

    def test_ledger_mismatch_is_degraded(self, client, item, db_session):
        item.current_stock = 3
        db_session.commit()

        resp = client.get("/api/health")
        body = resp.get_json()

        assert resp.status_code == 200
        assert body["status"] == "degraded"
        assert body["checks"]["stock_ledger"]["details"]["item_ids"] == [item.id]


class TestCli:
    def test_system_init_seeds_settings(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["system", "init"])

        assert result.exit_code == 0
        assert "PASS Schema ready" in result.output
        assert db_session.query(Setting).filter_by(key="tax_rate").one().value == "8"

    def test_seed_defaults_is_rerunnable(self, app, db_session):
        runner = app.test_cli_runner()

        first = runner.invoke(args=["system", "seed-defaults"])
        second = runner.invoke(args=["system", "seed-defaults"])

        assert "Seeded 6 item(s) and 4 service(s)" in first.output
        assert "Seeded 0 item(s) and 0 service(s)" in second.output
        assert db_session.query(InventoryItem).count() == 6
        assert db_session.query(Service).count() == 4
        assert stock_service.reconcile_all() == []

    def test_users_create_and_list(self, app, db_session):
        runner = app.test_cli_runner()

        created = runner.invoke(args=[
            "users", "create", "--name", "Ali", "--email", "ali@workshop.test", "--role", "foreman",
        ])
        duplicate = runner.invoke(args=[
            "users", "create", "--name", "Ali", "--email", "ALI@workshop.test", "--role", "foreman",
        ])
        listing = runner.invoke(args=["users", "list"])

        assert "PASS Created user: Ali (ali@workshop.test) with role 'foreman'" in created.output
        assert "FAIL Failed to create user" in duplicate.output
        assert "ali@workshop.test" in listing.output
        assert len(user_service.list_users()) == 1

    def test_stock_reconcile_fails_on_mismatch(self, app, item, db_session):
        runner = app.test_cli_runner()
        assert runner.invoke(args=["stock", "reconcile"]).exit_code == 0

        item.current_stock = 12
        db_session.commit()
        result = runner.invoke(args=["stock", "reconcile"])

        assert result.exit_code == 1
        assert "FAIL OIL-5W30" in result.output

    def test_stock_low(self, app, item, filter_item):
        stock_service.debit(filter_item.id, 4, "sale")

        result = app.test_cli_runner().invoke(args=["stock", "low"])

        assert "FLT-OIL" in result.output
        assert "OIL-5W30" not in result.output
