# routers/transactions.py
"""
Transaction API routes: prepaid casual classes, reversal and restore.
"""
from datetime import date
from typing import List
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from database import get_session
from dependencies import ensure_student_access, require_admin, verify_token
from schemas.transaction import CasualPaymentRequest, ClassDateUpdate, TransactionResponse
from services import transaction_service
from services.payment_gateway import StripeGateway, get_payment_gateway

router = APIRouter(prefix="/api/transactions", tags=["transactions"])


@router.get(
     "/pending",
     response_model=List[TransactionResponse],
     summary="Prepaid casual classes not yet checked in"
)
def list_pending(
     class_date: date = Query(..., description="Class day"),
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     return transaction_service.list_pending_online_transactions(db, class_date)


@router.post(
     "/casual-payments",
     response_model=TransactionResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Prepay a casual class by card"
)
def prepay_casual_class(
     body: CasualPaymentRequest,
     db: Session = Depends(get_session),
     gateway: StripeGateway = Depends(get_payment_gateway),
     token: dict = Depends(verify_token)
):
     ensure_student_access(token, body.student_id)
     transaction = transaction_service.process_online_casual_payment(
          db,
          gateway,
          body.student_id,
          body.rate_id,
          body.class_date,
          body.payment_method_id,
          idempotency_key=body.idempotency_key,
     )
     db.commit()
     return transaction


@router.get("/{transaction_id}", response_model=TransactionResponse, summary="Get a transaction")
def get_transaction(
     transaction_id: str,
     db: Session = Depends(get_session),
     token: dict = Depends(verify_token)
):
     transaction = transaction_service.get_transaction(db, transaction_id)
     ensure_student_access(token, transaction.student_id)
     return transaction


@router.put(
     "/{transaction_id}/class-date",
     response_model=TransactionResponse,
     summary="Move a prepaid class to another day"
)
def update_class_date(
     transaction_id: str,
     body: ClassDateUpdate,
     db: Session = Depends(get_session),
     token: dict = Depends(verify_token)
):
     transaction = transaction_service.get_transaction(db, transaction_id)
     ensure_student_access(token, transaction.student_id)
     transaction = transaction_service.update_class_date(db, transaction_id, body.class_date)
     db.commit()
     return transaction


@router.post(
     "/{transaction_id}/reverse",
     response_model=TransactionResponse,
     summary="Reverse (soft delete) a transaction"
)
def reverse_transaction(
     transaction_id: str,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     transaction = transaction_service.reverse_transaction(db, transaction_id)
     db.commit()
     return transaction


@router.post(
     "/{transaction_id}/restore",
     response_model=TransactionResponse,
     summary="Restore a reversed transaction"
)
def restore_transaction(
     transaction_id: str,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     transaction = transaction_service.restore_transaction(db, transaction_id)
     db.commit()
     return transaction
