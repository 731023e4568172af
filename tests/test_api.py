from datetime import date, timedelta
from decimal import Decimal

import pytest

import main
from conftest import make_token


@pytest.fixture
def seeded(client, admin_headers):
    student = client.post(
        "/api/students",
        json={"first_name": "Jane", "last_name": "Doe", "email": "Jane@Example.com"},
        headers=admin_headers,
    ).json()
    client.post(
        "/api/concessions/packages",
        json={"id": "5-class", "name": "5 Class Concession", "number_of_classes": 5, "price": "55.00"},
        headers=admin_headers,
    )
    client.post(
        "/api/concessions/casual-rates",
        json={"id": "casual", "name": "Casual Class", "price": "15.00"},
        headers=admin_headers,
    )
    return student


def test_missing_token_is_401(client):
    response = client.get("/api/students")
    assert response.status_code == 401


def test_bad_token_is_403(client):
    response = client.get("/api/students", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 403


def test_students_only_see_themselves(client, seeded):
    own = {"Authorization": f"Bearer {make_token('student', student_id=seeded['id'], uid='uid-1')}"}
    other = {"Authorization": f"Bearer {make_token('student', student_id='someone-else', uid='uid-2')}"}

    assert client.get(f"/api/students/{seeded['id']}", headers=own).status_code == 200
    assert client.get(f"/api/students/{seeded['id']}", headers=other).status_code == 403
    assert client.get("/api/students", headers=own).status_code == 403


def test_register_student(client, admin_headers, seeded):
    assert seeded["email"] == "jane@example.com"
    assert seeded["concession_balance"] == 0

    listed = client.get("/api/students", params={"search": "jane"}, headers=admin_headers).json()
    assert [s["id"] for s in listed] == [seeded["id"]]


def test_purchase_and_balance(client, admin_headers, seeded):
    response = client.post(
        "/api/concessions/purchases",
        json={"student_id": seeded["id"], "package_id": "5-class", "payment_method": "eftpos"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    body = response.json()
    assert body["concession_balance"] == 5
    assert body["block"]["remaining_quantity"] == 5
    assert body["block"]["status"] == "active"

    concessions = client.get(f"/api/students/{seeded['id']}/concessions", headers=admin_headers).json()
    assert concessions["concession_balance"] == 5
    assert len(concessions["blocks"]) == 1

    transactions = client.get(f"/api/students/{seeded['id']}/transactions", headers=admin_headers).json()
    assert transactions[0]["type"] == "concession-purchase"
    assert Decimal(transactions[0]["amount_paid"]) == Decimal("55")


def test_domain_errors_use_json_error_body(client, admin_headers, seeded):
    response = client.get("/api/transactions/does-not-exist", headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "not_found"

    response = client.post(
        "/api/concessions/purchases",
        json={"student_id": seeded["id"], "package_id": "5-class", "payment_method": "cheque"},
        headers=admin_headers,
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "validation_error"


def test_unknown_route(client):
    response = client.get("/api/nowhere")
    assert response.status_code == 404
    assert response.json() == {"error": "Route not found"}


def test_checkin_flow(client, admin_headers, seeded):
    client.post(
        "/api/concessions/purchases",
        json={"student_id": seeded["id"], "package_id": "5-class", "payment_method": "cash"},
        headers=admin_headers,
    )
    payload = {"student_id": seeded["id"], "entry_type": "concession", "checkin_date": "2026-03-05"}

    first = client.post("/api/checkins", json=payload, headers=admin_headers)
    assert first.status_code == 201
    assert first.json()["created_by"] == "admin@studio.test"

    duplicate = client.post("/api/checkins", json=payload, headers=admin_headers)
    assert duplicate.status_code == 409

    listed = client.get("/api/checkins", params={"checkin_date": "2026-03-05"}, headers=admin_headers).json()
    assert [c["id"] for c in listed] == [first.json()["id"]]

    reversed_checkin = client.post(f"/api/checkins/{first.json()['id']}/reverse", headers=admin_headers)
    assert reversed_checkin.json()["reversed"] is True
    balance = client.get(f"/api/students/{seeded['id']}/concessions", headers=admin_headers).json()
    assert balance["concession_balance"] == 5


def test_refund_flow(client, admin_headers, seeded):
    purchase = client.post(
        "/api/concessions/purchases",
        json={"student_id": seeded["id"], "package_id": "5-class", "payment_method": "cash"},
        headers=admin_headers,
    ).json()
    transaction_id = purchase["transaction_id"]

    eligibility = client.get(f"/api/refunds/transactions/{transaction_id}/eligibility", headers=admin_headers).json()
    assert eligibility["can_refund"] is True
    assert Decimal(eligibility["available"]) == Decimal("55")

    refund = client.post(
        f"/api/refunds/transactions/{transaction_id}",
        json={"amount": "20.00", "payment_method": "cash", "reason": "Moving away"},
        headers=admin_headers,
    )
    assert refund.status_code == 201
    assert Decimal(refund.json()["amount_refunded"]) == Decimal("20")

    parent = client.get(f"/api/transactions/{transaction_id}", headers=admin_headers).json()
    assert parent["refunded"] == "partial"
    assert Decimal(parent["total_refunded"]) == Decimal("20")

    history = client.get(f"/api/refunds/transactions/{transaction_id}/history", headers=admin_headers).json()
    assert len(history) == 1

    too_much = client.post(
        f"/api/refunds/transactions/{transaction_id}",
        json={"amount": "40.00", "payment_method": "cash"},
        headers=admin_headers,
    )
    assert too_much.status_code == 422

    undone = client.post(f"/api/refunds/{refund.json()['id']}/reverse", headers=admin_headers)
    assert undone.status_code == 200
    parent = client.get(f"/api/transactions/{transaction_id}", headers=admin_headers).json()
    assert parent["refunded"] == "none"


def test_student_prepays_casual_class(client, seeded, gateway):
    headers = {"Authorization": f"Bearer {make_token('student', student_id=seeded['id'], uid='uid-1', email=None)}"}
    class_day = (date.today() + timedelta(days=3)).isoformat()

    response = client.post(
        "/api/transactions/casual-payments",
        json={
            "student_id": seeded["id"],
            "rate_id": "casual",
            "class_date": class_day,
            "payment_method_id": "pm_card_visa",
            "idempotency_key": "casual-1",
        },
        headers=headers,
    )

    assert response.status_code == 201
    assert response.json()["used_for_checkin"] is False
    assert len(gateway.charges) == 1


def test_merge_endpoints(client, admin_headers, seeded):
    other = client.post(
        "/api/students",
        json={"first_name": "Jane", "last_name": "Doe", "email": "jane.doe@example.com"},
        headers=admin_headers,
    ).json()
    client.post(
        "/api/concessions/purchases",
        json={"student_id": other["id"], "package_id": "5-class", "payment_method": "cash"},
        headers=admin_headers,
    )

    preview = client.get(
        "/api/merges/preview",
        params={"primary_id": seeded["id"], "deprecated_id": other["id"]},
        headers=admin_headers,
    ).json()
    assert preview["deprecated_counts"]["concession_blocks"] == 1

    merged = client.post(
        "/api/merges",
        json={"primary_id": seeded["id"], "deprecated_id": other["id"], "field_selections": {"email": "deprecated"}},
        headers=admin_headers,
    )
    assert merged.status_code == 201
    assert merged.json()["current_step"] == "completed"

    primary = client.get(f"/api/students/{seeded['id']}", headers=admin_headers).json()
    assert primary["email"] == "jane.doe@example.com"
    assert primary["concession_balance"] == 5

    fetched = client.get(f"/api/merges/{merged.json()['id']}", headers=admin_headers).json()
    assert fetched["blocks_updated"] == 1


def test_expiry_sweep_endpoint(client, admin_headers, seeded):
    client.post(
        "/api/concessions/gifts",
        json={"student_id": seeded["id"], "quantity": 2, "expiry_date": (date.today() + timedelta(days=30)).isoformat()},
        headers=admin_headers,
    )

    response = client.post("/api/maintenance/expire-concessions", headers=admin_headers)

    assert response.status_code == 200
    assert response.json() == {"blocks_expired": 0}


def test_request_context_is_bound_for_logging(client, monkeypatch):
    bound = []
    monkeypatch.setattr(main, "bind_request_context", lambda **values: bound.append(values))

    client.get("/api/nowhere", headers={"X-Request-ID": "req-1"})

    assert bound == [{"request_id": "req-1", "method": "GET", "path": "/api/nowhere"}]
