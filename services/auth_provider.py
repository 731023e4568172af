# services/auth_provider.py
"""
Portal account management against the external identity provider.

Passwords and sign-in live with the provider; this service only creates,
re-addresses and deletes the accounts the studio links to students.
"""
from abc import ABC, abstractmethod
from typing import Optional

import requests

import config
from exceptions import ExternalServiceError, NotFoundError
from logging_config import get_logger

log = get_logger(__name__)

REQUEST_TIMEOUT_SECONDS = 20


class AuthProvider(ABC):
     """Interface the merge and student services depend on."""

     @abstractmethod
     def create_user(self, email: str, password: str) -> str:
          """Create an account and return its uid."""

     @abstractmethod
     def update_email(self, uid: str, email: str) -> None:
          """Change the sign-in email of an account."""

     @abstractmethod
     def delete_user(self, uid: str) -> None:
          """Delete an account. Raises NotFoundError if the uid is unknown."""


class IdentityToolkitAuthProvider(AuthProvider):
     """Identity Toolkit admin REST API (projects/{id}/accounts...)."""

     def __init__(
          self,
          api_base: Optional[str] = None,
          project_id: Optional[str] = None,
          access_token: Optional[str] = None
     ):
          self.api_base = (api_base or config.IDENTITY_API_BASE).rstrip("/")
          self.project_id = project_id or config.IDENTITY_PROJECT_ID
          self.access_token = access_token or config.IDENTITY_ACCESS_TOKEN

     def _post(self, action: str, payload: dict) -> dict:
          if not self.project_id or not self.access_token:
               raise ExternalServiceError("Identity provider not configured")

          url = f"{self.api_base}/projects/{self.project_id}/{action}"
          try:
               response = requests.post(
                    url,
                    json=payload,
                    headers={
                         "Authorization": f"Bearer {self.access_token}",
                         "Content-Type": "application/json",
                    },
                    timeout=REQUEST_TIMEOUT_SECONDS,
               )
          except requests.RequestException as e:
               raise ExternalServiceError(f"Identity provider unreachable: {e}") from e

          try:
               body = response.json() if response.content else {}
          except ValueError as e:
               log.warning("identity_response_unreadable", action=action, status=response.status_code)
               raise ExternalServiceError(
                    f"Identity provider returned an unreadable response (HTTP {response.status_code})"
               ) from e
          if response.status_code == 200:
               return body

          message = (body.get("error") or {}).get("message", response.text) if isinstance(body, dict) else response.text
          if message and message.startswith("USER_NOT_FOUND"):
               raise NotFoundError("Portal account not found", details={"provider_message": message})
          log.warning("identity_request_rejected", action=action, status=response.status_code, message=message)
          raise ExternalServiceError(f"Identity provider error: {message}")

     def create_user(self, email: str, password: str) -> str:
          body = self._post("accounts", {"email": email, "password": password})
          log.info("portal_account_created", uid=body.get("localId"))
          return body["localId"]

     def update_email(self, uid: str, email: str) -> None:
          self._post("accounts:update", {"localId": uid, "email": email})
          log.info("portal_account_email_updated", uid=uid)

     def delete_user(self, uid: str) -> None:
          self._post("accounts:delete", {"localId": uid})
          log.info("portal_account_deleted", uid=uid)


def get_auth_provider() -> AuthProvider:
     """FastAPI dependency; tests override it with a fake."""
     return IdentityToolkitAuthProvider()
