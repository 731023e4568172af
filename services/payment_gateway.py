# services/payment_gateway.py
"""
Stripe REST client used for online purchases and refunds.

Talks to the Stripe API with requests (form-encoded bodies, secret key as
bearer token) the same way the Brevo sender talks to its API. Every
mutating call carries an Idempotency-Key so a retried request never charges
or refunds twice.
"""
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import requests

import config
from exceptions import ExternalServiceError, PaymentDeclinedError
from logging_config import get_logger

log = get_logger(__name__)

REQUEST_TIMEOUT_SECONDS = 20


def to_minor_units(amount: Decimal) -> int:
     """Dollars to cents."""
     return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripeGateway:
     """Thin wrapper around the three Stripe resources the studio uses."""

     def __init__(
          self,
          secret_key: Optional[str] = None,
          api_base: Optional[str] = None,
          currency: Optional[str] = None
     ):
          self.secret_key = secret_key or config.STRIPE_SECRET_KEY
          self.api_base = (api_base or config.STRIPE_API_BASE).rstrip("/")
          self.currency = currency or config.STRIPE_CURRENCY

     def _headers(self, idempotency_key: Optional[str] = None) -> dict:
          headers = {"Authorization": f"Bearer {self.secret_key}"}
          if idempotency_key:
               headers["Idempotency-Key"] = idempotency_key
          return headers

     def _post(self, path: str, data: dict, idempotency_key: Optional[str] = None) -> dict:
          if not self.secret_key:
               raise ExternalServiceError("STRIPE_SECRET_KEY not configured")

          try:
               response = requests.post(
                    f"{self.api_base}/{path}",
                    data=data,
                    headers=self._headers(idempotency_key),
                    timeout=REQUEST_TIMEOUT_SECONDS,
               )
          except requests.RequestException as e:
               log.error("stripe_request_failed", path=path, error=str(e))
               raise ExternalServiceError(f"Payment provider unreachable: {e}") from e

          try:
               body = response.json() if response.content else {}
          except ValueError as e:
               log.warning("stripe_response_unreadable", path=path, status=response.status_code)
               raise ExternalServiceError(
                    f"Payment provider returned an unreadable response (HTTP {response.status_code})"
               ) from e
          if response.status_code in (200, 201):
               return body

          error = body.get("error", {}) if isinstance(body, dict) else {}
          message = error.get("message") or response.text
          log.warning("stripe_request_rejected", path=path, status=response.status_code, error_type=error.get("type"))
          if error.get("type") == "card_error" or response.status_code == 402:
               raise PaymentDeclinedError(
                    message,
                    details={"decline_code": error.get("decline_code"), "stripe_code": error.get("code")},
               )
          raise ExternalServiceError(f"Payment provider error: {message}")

     def create_customer(self, email: Optional[str], name: str, student_id: str) -> str:
          """Create a Stripe customer for a student and return its id."""
          data = {"name": name, "metadata[student_id]": student_id}
          if email:
               data["email"] = email
          customer = self._post("customers", data, idempotency_key=f"customer-{student_id}")
          log.info("stripe_customer_created", student_id=student_id, customer_id=customer["id"])
          return customer["id"]

     def charge(
          self,
          amount: Decimal,
          customer_id: str,
          payment_method_id: str,
          description: str,
          idempotency_key: Optional[str] = None,
          metadata: Optional[dict] = None
     ) -> dict:
          """
          Create and confirm a PaymentIntent in one call.

          Returns:
               dict with payment_intent_id, status and receipt_url

          Raises:
               PaymentDeclinedError: card declined or the payment needs further action
               ExternalServiceError: any other provider failure
          """
          data = {
               "amount": to_minor_units(amount),
               "currency": self.currency,
               "customer": customer_id,
               "payment_method": payment_method_id,
               "description": description,
               "confirm": "true",
               "automatic_payment_methods[enabled]": "true",
               "automatic_payment_methods[allow_redirects]": "never",
               "expand[]": "latest_charge",
          }
          for key, value in (metadata or {}).items():
               data[f"metadata[{key}]"] = value

          intent = self._post("payment_intents", data, idempotency_key=idempotency_key or uuid.uuid4().hex)
          if intent.get("status") != "succeeded":
               raise PaymentDeclinedError(
                    "Payment was not completed",
                    details={"status": intent.get("status"), "payment_intent_id": intent.get("id")},
               )

          charge = intent.get("latest_charge")
          receipt_url = charge.get("receipt_url") if isinstance(charge, dict) else None
          log.info("stripe_payment_succeeded", payment_intent_id=intent["id"], amount=str(amount))
          return {
               "payment_intent_id": intent["id"],
               "status": intent["status"],
               "receipt_url": receipt_url,
          }

     def refund(
          self,
          payment_intent_id: str,
          amount: Decimal,
          idempotency_key: Optional[str] = None,
          reason: Optional[str] = None
     ) -> str:
          """Refund part or all of a PaymentIntent and return the refund id."""
          data = {
               "payment_intent": payment_intent_id,
               "amount": to_minor_units(amount),
               "reason": "requested_by_customer",
          }
          if reason:
               data["metadata[reason]"] = reason[:500]

          refund = self._post("refunds", data, idempotency_key=idempotency_key or uuid.uuid4().hex)
          log.info("stripe_refund_created", payment_intent_id=payment_intent_id, refund_id=refund["id"])
          return refund["id"]


def get_payment_gateway() -> StripeGateway:
     """FastAPI dependency; tests override it with a fake."""
     return StripeGateway()
