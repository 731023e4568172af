# utils/email.py
import requests

import config
from exceptions import ExternalServiceError


def send_low_balance_email(to_email: str, first_name: str, remaining: int):
     """Tell a student they are down to their last concession class."""
     if not config.BREVO_API_KEY:
          raise ExternalServiceError("BREVO_API_KEY is not set")

     classes = "class" if remaining == 1 else "classes"
     response = requests.post(
          "https://api.brevo.com/v3/smtp/email",
          headers={
               "api-key": config.BREVO_API_KEY,
               "Content-Type": "application/json",
          },
          json={
               "sender": {"name": config.EMAIL_FROM_NAME, "email": config.EMAIL_FROM_ADDRESS},
               "to": [{"email": to_email}],
               "subject": "You're running low on concession classes",
               "htmlContent": f"""
                    <h2>Hi {first_name},</h2>
                    <p>You have <strong>{remaining}</strong> concession {classes} left.</p>
                    <p>You can top up from the student portal before your next class.</p>
               """,
          },
          timeout=10,
     )
     if response.status_code not in (200, 201):
          raise ExternalServiceError(f"Brevo error: {response.text}")
