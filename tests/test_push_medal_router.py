import pytest
from fastapi.testclient import TestClient

from gachaapi.database.session import get_db
from gachaapi.main import create_app
from gachaapi.models.push_medal import PushMedalBalance
from gachaapi.services.push_medal_service import PushMedalService

USER_HEADERS = {"X-User-Id": "user-1"}
ADMIN_HEADERS = {"X-User-Id": "admin-1", "X-Admin-Id": "admin-1"}


@pytest.fixture
def client(db):
    """실제 서비스 + 인메모리 SQLite 세션으로 라우터 테스트"""
    app = create_app()
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.container.unwire()


@pytest.fixture
def ledger(db):
    return PushMedalService(db)


class TestBalanceRoutes:
    def test_balance_defaults_to_zero(self, client):
        response = client.get("/api/v1/push-medals/balance", headers=USER_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["balance"] == 0
        assert data["scope_id"] is None
        assert data["last_updated"] is None

    def test_scope_balance(self, client, ledger):
        ledger.credit("user-1", "scope-a", 42)

        response = client.get(
            "/api/v1/push-medals/balance?scope_id=scope-a", headers=USER_HEADERS
        )

        assert response.status_code == 200
        assert response.json()["balance"] == 42

    def test_pool_balance(self, client, ledger):
        ledger.credit("user-1", None, 100)
        ledger.credit("user-1", "scope-a", 5)

        response = client.get("/api/v1/push-medals/pool", headers=USER_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["total_pool_balance"] == 100
        assert data["scope_balances"] == [{"scope_id": "scope-a", "balance": 5}]

    def test_transactions_filtered_by_type(self, client, ledger):
        ledger.credit("user-1", None, 100)
        ledger.transfer_from_pool("user-1", "scope-a", 30)

        response = client.get(
            "/api/v1/push-medals/transactions?transaction_type=POOL_TRANSFER",
            headers=USER_HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total_count"] == 2
        assert {tx["amount"] for tx in data["transactions"]} == {-30, 30}


class TestTransferRoute:
    def test_transfer(self, client, ledger):
        ledger.credit("user-1", None, 100)

        response = client.post(
            "/api/v1/push-medals/transfer",
            json={"to_scope_id": "scope-a", "amount": 40},
            headers=USER_HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["debit"]["balance_after"] == 60
        assert data["credit"]["balance_after"] == 40

    def test_transfer_insufficient_balance(self, client, ledger):
        ledger.credit("user-1", None, 10)

        response = client.post(
            "/api/v1/push-medals/transfer",
            json={"to_scope_id": "scope-a", "amount": 40},
            headers=USER_HEADERS,
        )

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "INSUFFICIENT_BALANCE"
        assert error["details"] == {"requested": 40, "available": 10}
        assert ledger.get_balance("user-1") == 10

    def test_transfer_rejects_non_positive_amount(self, client):
        response = client.post(
            "/api/v1/push-medals/transfer",
            json={"to_scope_id": "scope-a", "amount": 0},
            headers=USER_HEADERS,
        )

        assert response.status_code == 422


class TestAdminRoutes:
    def test_adjust_requires_admin_header(self, client):
        response = client.post(
            "/api/v1/push-medals/admin/adjust",
            json={"user_id": "user-2", "amount": 10, "reason": "bonus"},
            headers=USER_HEADERS,
        )

        assert response.status_code == 422

    def test_adjust(self, client, ledger):
        response = client.post(
            "/api/v1/push-medals/admin/adjust",
            json={"user_id": "user-2", "scope_id": "scope-a", "amount": 10, "reason": "bonus"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["transaction_type"] == "ADMIN_ADJUSTMENT"
        assert data["reference_id"] == "admin-1"
        assert ledger.get_balance("user-2", "scope-a") == 10

    def test_adjust_below_zero_rejected(self, client):
        response = client.post(
            "/api/v1/push-medals/admin/adjust",
            json={"user_id": "user-2", "amount": -10, "reason": "clawback"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INSUFFICIENT_BALANCE"

    def test_integrity_report_flags_corruption(self, client, ledger, db):
        ledger.credit("user-1", None, 50)
        record = db.query(PushMedalBalance).one()
        record.balance = 70
        db.commit()

        response = client.get("/api/v1/push-medals/admin/integrity", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["total_checked"] == 1
        assert data["invalid_balances"] == 1
        assert data["discrepancies"][0]["discrepancy"] == 20

    def test_global_integrity(self, client, ledger):
        ledger.credit("user-1", None, 50)

        response = client.get(
            "/api/v1/push-medals/admin/integrity/global", headers=ADMIN_HEADERS
        )

        assert response.status_code == 200
        assert response.json()["status"] == "OK"
