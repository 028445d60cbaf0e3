"""
HTTP tests for the payouts API
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from payouts.api import app, get_executor
from payouts.config import get_settings

from payouts.tests.helpers import TUTOR_ID, add_tutor


@pytest.fixture
def client(executor, settings):
    app.dependency_overrides[get_executor] = lambda: executor
    app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


class TestParticipantEndpoints:
    def test_balance(self, client, storage):
        add_tutor(storage, sessions=10)

        response = client.get(f"/participants/{TUTOR_ID}/balance")

        assert response.status_code == 200
        assert Decimal(response.json()["available_credits"]) == Decimal("10")

    def test_balance_unknown_participant(self, client):
        assert client.get(f"/participants/{uuid4()}/balance").status_code == 404

    def test_cashout(self, client, storage):
        add_tutor(storage, sessions=10)

        response = client.post(f"/participants/{TUTOR_ID}/cashout", json={"credits": "4"})

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert Decimal(body["amount"]) == Decimal("360")

    def test_cashout_insufficient_balance(self, client, storage):
        add_tutor(storage, sessions=10)

        response = client.post(f"/participants/{TUTOR_ID}/cashout", json={"credits": "11"})

        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "InsufficientBalance"

    def test_cashout_without_destination(self, client, storage):
        add_tutor(storage, sessions=10, with_destination=False)

        response = client.post(f"/participants/{TUTOR_ID}/cashout", json={})

        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "IncompletePaymentInfo"

    def test_cashout_unknown_participant(self, client):
        assert client.post(f"/participants/{uuid4()}/cashout", json={}).status_code == 404


class TestWithdrawalEndpoints:
    def test_approve_and_process(self, client, storage):
        add_tutor(storage, sessions=10)
        withdrawal_id = client.post(f"/participants/{TUTOR_ID}/cashout", json={"credits": "5"}).json()["id"]

        approved = client.post(f"/withdrawals/{withdrawal_id}/approve", json={"performed_by": "admin"})
        processed = client.post(f"/withdrawals/{withdrawal_id}/process")

        assert approved.json()["status"] == "approved"
        assert processed.status_code == 200
        assert processed.json()["status"] == "completed"

    def test_process_before_approval_conflicts(self, client, storage):
        add_tutor(storage, sessions=10)
        withdrawal_id = client.post(f"/participants/{TUTOR_ID}/cashout", json={"credits": "5"}).json()["id"]

        assert client.post(f"/withdrawals/{withdrawal_id}/process").status_code == 409

    def test_reject_without_reason(self, client, storage):
        add_tutor(storage, sessions=10)
        withdrawal_id = client.post(f"/participants/{TUTOR_ID}/cashout", json={"credits": "5"}).json()["id"]

        response = client.post(
            f"/withdrawals/{withdrawal_id}/reject", json={"performed_by": "admin", "reason": " "}
        )

        assert response.status_code == 400

    def test_list_and_filter(self, client, storage):
        add_tutor(storage, sessions=10)
        client.post(f"/participants/{TUTOR_ID}/cashout", json={"credits": "2"})
        client.post(f"/participants/{TUTOR_ID}/cashout", json={"credits": "3"})

        all_records = client.get("/withdrawals").json()
        completed = client.get("/withdrawals", params={"status": "completed"}).json()

        assert all_records["total_count"] == 2
        assert completed["total_count"] == 0

    def test_unknown_withdrawal(self, client):
        assert client.get(f"/withdrawals/{uuid4()}").status_code == 404


class TestCronAndReports:
    def test_cron_requires_secret(self, client, settings):
        settings.cron_secret = "s3cret"

        assert client.post("/cron/payouts", params={"force": "true"}).status_code == 401

        response = client.post(
            "/cron/payouts", params={"force": "true"}, headers={"Authorization": "Bearer s3cret"}
        )
        assert response.status_code == 200

    def test_cron_run_creates_report(self, client, storage):
        add_tutor(storage, sessions=3)

        response = client.post("/cron/payouts", params={"force": "true"})

        assert response.status_code == 200
        report = response.json()["report"]
        assert report["status_counts"] == {"completed": 1}

        listed = client.get("/reports").json()
        assert listed["total_count"] == 1
        assert client.get(f"/reports/{report['id']}").status_code == 200

    def test_unknown_report(self, client):
        assert client.get(f"/reports/{uuid4()}").status_code == 404

    def test_stats(self, client, storage):
        add_tutor(storage, sessions=10)
        client.post(f"/participants/{TUTOR_ID}/cashout", json={"credits": "2"})

        stats = client.get("/stats").json()

        assert stats["counts_by_status"] == {"pending": 1}
        assert stats["stale_processing"] == 0
