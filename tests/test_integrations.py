from contextlib import contextmanager
from datetime import timedelta
from decimal import Decimal

import pytest
import requests
from sqlalchemy.exc import OperationalError

import jobs
from exceptions import ExternalServiceError, NotFoundError, PaymentDeclinedError
from services import auth_provider as auth_provider_module
from services import payment_gateway, retry
from services.auth_provider import AuthProvider, IdentityToolkitAuthProvider
from services.payment_gateway import StripeGateway, to_minor_units
from utils.dates import utcnow


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body
        self.content = b"{}" if body is not None else b""
        self.text = str(body)

    def json(self):
        return self._body


class UnreadableResponse(FakeResponse):
    def __init__(self, status_code):
        super().__init__(status_code, None)
        self.content = b"<html>Bad Gateway</html>"
        self.text = "<html>Bad Gateway</html>"

    def json(self):
        raise ValueError("Expecting value: line 1 column 1 (char 0)")


@pytest.fixture
def recorded_posts(monkeypatch):
    calls = []
    responses = []

    def fake_post(url, **kwargs):
        calls.append({"url": url, **kwargs})
        return responses.pop(0)

    monkeypatch.setattr(requests, "post", fake_post)
    return calls, responses


def test_minor_units():
    assert to_minor_units(Decimal("55")) == 5500
    assert to_minor_units(Decimal("19.99")) == 1999
    assert to_minor_units(Decimal("0.005")) == 1


def test_charge_sends_idempotency_key(recorded_posts):
    calls, responses = recorded_posts
    responses.append(FakeResponse(200, {
        "id": "pi_123",
        "status": "succeeded",
        "latest_charge": {"receipt_url": "https://pay.example/r/1"},
    }))
    gateway = StripeGateway(secret_key="sk_test", api_base="https://stripe.test/v1", currency="nzd")

    result = gateway.charge(Decimal("55"), "cus_1", "pm_card_visa", "5 Class", idempotency_key="buy-1")

    assert result == {"payment_intent_id": "pi_123", "status": "succeeded", "receipt_url": "https://pay.example/r/1"}
    assert calls[0]["url"] == "https://stripe.test/v1/payment_intents"
    assert calls[0]["headers"]["Idempotency-Key"] == "buy-1"
    assert calls[0]["data"]["amount"] == 5500


def test_declined_card(recorded_posts):
    _, responses = recorded_posts
    responses.append(FakeResponse(402, {"error": {"type": "card_error", "message": "Your card was declined.", "decline_code": "generic_decline"}}))
    gateway = StripeGateway(secret_key="sk_test")

    with pytest.raises(PaymentDeclinedError) as excinfo:
        gateway.charge(Decimal("15"), "cus_1", "pm_card_chargeDeclined", "Casual")
    assert excinfo.value.details["decline_code"] == "generic_decline"


def test_payment_needing_action_is_declined(recorded_posts):
    _, responses = recorded_posts
    responses.append(FakeResponse(200, {"id": "pi_9", "status": "requires_action"}))

    with pytest.raises(PaymentDeclinedError):
        StripeGateway(secret_key="sk_test").charge(Decimal("15"), "cus_1", "pm_3ds", "Casual")


def test_gateway_without_key(monkeypatch):
    monkeypatch.setattr(payment_gateway.config, "STRIPE_SECRET_KEY", None)
    with pytest.raises(ExternalServiceError):
        StripeGateway().refund("pi_1", Decimal("5"))


def test_refund_returns_refund_id(recorded_posts):
    calls, responses = recorded_posts
    responses.append(FakeResponse(200, {"id": "re_1"}))

    assert StripeGateway(secret_key="sk_test").refund("pi_1", Decimal("20"), idempotency_key="r-1", reason="Injury") == "re_1"
    assert calls[0]["data"]["amount"] == 2000
    assert calls[0]["data"]["metadata[reason]"] == "Injury"


def test_identity_user_not_found(recorded_posts):
    _, responses = recorded_posts
    responses.append(FakeResponse(400, {"error": {"message": "USER_NOT_FOUND"}}))
    provider = IdentityToolkitAuthProvider(api_base="https://id.test/v1", project_id="studio", access_token="token")

    with pytest.raises(NotFoundError):
        provider.delete_user("uid-1")


def test_identity_create_user(recorded_posts):
    calls, responses = recorded_posts
    responses.append(FakeResponse(200, {"localId": "uid-42"}))
    provider = IdentityToolkitAuthProvider(api_base="https://id.test/v1", project_id="studio", access_token="token")

    assert provider.create_user("jane@example.com", "secret1") == "uid-42"
    assert calls[0]["url"] == "https://id.test/v1/projects/studio/accounts"


def test_identity_unreachable(monkeypatch):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(auth_provider_module.requests, "post", boom)
    provider = IdentityToolkitAuthProvider(project_id="studio", access_token="token")
    with pytest.raises(ExternalServiceError):
        provider.update_email("uid-1", "jane@example.com")


def test_retry_call_retries_operational_errors(monkeypatch):
    monkeypatch.setattr(retry.time, "sleep", lambda seconds: None)
    attempts = []
    rollbacks = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))
        return "ok"

    assert retry.retry_call(flaky, attempts=3, on_retry=lambda: rollbacks.append(1)) == "ok"
    assert len(attempts) == 3
    assert len(rollbacks) == 2


def test_retry_call_gives_up(monkeypatch):
    monkeypatch.setattr(retry.time, "sleep", lambda seconds: None)

    def always_fails():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    with pytest.raises(OperationalError):
        retry.retry_call(always_fails, attempts=2)


def test_scheduled_expiry_job(db, student, make_block, monkeypatch):
    make_block(student, quantity=3, expiry_date=utcnow() - timedelta(seconds=1))
    block = make_block(student, quantity=2)
    block.expiry_date = utcnow() - timedelta(minutes=1)
    db.commit()

    @contextmanager
    def session_context():
        yield db

    monkeypatch.setattr(jobs, "get_session_context", session_context)

    assert jobs.run_expiry_sweep() == 1
    assert jobs.run_expiry_sweep() == 0
    db.refresh(student)
    assert student.expired_concessions == 5


def test_gateway_html_error_page(recorded_posts):
    _, responses = recorded_posts
    responses.append(UnreadableResponse(502))

    with pytest.raises(ExternalServiceError):
        StripeGateway(secret_key="sk_test").charge(Decimal("15"), "cus_1", "pm_card_visa", "Casual")


def test_identity_html_error_page(recorded_posts):
    _, responses = recorded_posts
    responses.append(UnreadableResponse(502))
    provider = IdentityToolkitAuthProvider(project_id="studio", access_token="token")

    with pytest.raises(ExternalServiceError):
        provider.delete_user("uid-1")


def test_auth_provider_is_abstract():
    with pytest.raises(TypeError):
        AuthProvider()
