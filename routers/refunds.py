# routers/refunds.py
"""
Refund API routes (admin only).
"""
from decimal import Decimal
from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from database import get_session
from dependencies import actor, require_admin
from schemas.transaction import (
     RefundEligibilityResponse,
     RefundHistoryEntryResponse,
     RefundRequest,
     TransactionResponse,
)
from services import refund_service, transaction_service
from services.payment_gateway import StripeGateway, get_payment_gateway

router = APIRouter(prefix="/api/refunds", tags=["refunds"])


@router.get(
     "/transactions/{transaction_id}/eligibility",
     response_model=RefundEligibilityResponse,
     summary="Can this transaction be refunded?"
)
def get_eligibility(
     transaction_id: str,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     transaction = transaction_service.get_transaction(db, transaction_id)
     can_refund, reason = refund_service.check_refund_eligibility(transaction)
     available = Decimal(str(transaction.amount_paid or 0)) - Decimal(str(transaction.total_refunded or 0))
     return RefundEligibilityResponse(
          transaction_id=transaction.id,
          can_refund=can_refund,
          reason=reason,
          available=available if can_refund else Decimal("0"),
     )


@router.post(
     "/transactions/{transaction_id}",
     response_model=TransactionResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Refund a transaction"
)
def refund_transaction(
     transaction_id: str,
     body: RefundRequest,
     db: Session = Depends(get_session),
     gateway: StripeGateway = Depends(get_payment_gateway),
     token: dict = Depends(require_admin)
):
     refund = refund_service.perform_refund(
          db,
          transaction_id,
          amount=body.amount,
          payment_method=body.payment_method,
          reason=body.reason,
          refunded_by=actor(token),
          is_full_refund=body.is_full_refund,
          gateway=gateway,
          idempotency_key=body.idempotency_key,
     )
     db.commit()
     return refund


@router.get(
     "/transactions/{transaction_id}/history",
     response_model=List[RefundHistoryEntryResponse],
     summary="Refund history of a transaction"
)
def get_history(
     transaction_id: str,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     return refund_service.get_refund_history(db, transaction_id)


@router.get(
     "/transactions/{transaction_id}",
     response_model=List[TransactionResponse],
     summary="Refund transactions issued against a transaction"
)
def list_refunds(
     transaction_id: str,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     return refund_service.get_refund_transactions(db, transaction_id)


@router.post(
     "/{refund_transaction_id}/reverse",
     response_model=TransactionResponse,
     summary="Reverse a manual refund"
)
def reverse_refund(
     refund_transaction_id: str,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     refund = refund_service.reverse_refund(db, refund_transaction_id, reversed_by=actor(token))
     db.commit()
     return refund
