# services/__init__.py
from . import ledger_service, transaction_service, refund_service, merge_service, checkin_service
from .student_service import StudentService
from .payment_gateway import StripeGateway, get_payment_gateway
from .auth_provider import AuthProvider, IdentityToolkitAuthProvider, get_auth_provider

__all__ = [
     "ledger_service",
     "transaction_service",
     "refund_service",
     "merge_service",
     "checkin_service",
     "StudentService",
     "StripeGateway",
     "get_payment_gateway",
     "AuthProvider",
     "IdentityToolkitAuthProvider",
     "get_auth_provider",
]
