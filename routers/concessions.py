# routers/concessions.py
"""
Concession API routes: packages, casual rates, sales, gifts and block
administration.

Role-based access:
- Admin: everything
- Student: read packages and rates, buy a package online for themselves
"""
from typing import List
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from database import get_session
from dependencies import actor, ensure_student_access, is_admin, require_admin, verify_token
from exceptions import ConflictError
from models import CasualRate, ConcessionPackage
from schemas.concession import (
     BlockLockRequest,
     BlockNotesRequest,
     BlockResponse,
     CasualRateCreate,
     CasualRateResponse,
     ConcessionPurchaseRequest,
     GiftRequest,
     LockExpiredResponse,
     OnlinePurchaseRequest,
     PackageCreate,
     PackageResponse,
     PurchaseResponse,
)
from services import ledger_service, transaction_service
from services.payment_gateway import StripeGateway, get_payment_gateway

router = APIRouter(prefix="/api/concessions", tags=["concessions"])


def _purchase_response(db: Session, transaction, block) -> PurchaseResponse:
     student = ledger_service.get_student(db, transaction.student_id)
     return PurchaseResponse(
          transaction_id=transaction.id,
          block=BlockResponse.model_validate(block) if block is not None else None,
          concession_balance=student.concession_balance,
     )


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------

@router.get("/packages", response_model=List[PackageResponse], summary="List concession packages")
def list_packages(
     include_inactive: bool = Query(False),
     db: Session = Depends(get_session),
     token: dict = Depends(verify_token)
):
     query = db.query(ConcessionPackage)
     if not (include_inactive and is_admin(token)):
          query = query.filter(ConcessionPackage.is_active == True)  # noqa: E712
     return query.order_by(ConcessionPackage.display_order, ConcessionPackage.id).all()


@router.post(
     "/packages",
     response_model=PackageResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Add a concession package"
)
def create_package(
     body: PackageCreate,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     if db.get(ConcessionPackage, body.id) is not None:
          raise ConflictError(f"Concession package {body.id} already exists")
     package = ConcessionPackage(**body.model_dump())
     db.add(package)
     db.commit()
     return package


@router.get("/casual-rates", response_model=List[CasualRateResponse], summary="List casual rates")
def list_casual_rates(
     db: Session = Depends(get_session),
     token: dict = Depends(verify_token)
):
     return (
          db.query(CasualRate)
          .filter(CasualRate.is_active == True)  # noqa: E712
          .order_by(CasualRate.display_order, CasualRate.id)
          .all()
     )


@router.post(
     "/casual-rates",
     response_model=CasualRateResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Add a casual rate"
)
def create_casual_rate(
     body: CasualRateCreate,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     if db.get(CasualRate, body.id) is not None:
          raise ConflictError(f"Casual rate {body.id} already exists")
     rate = CasualRate(**body.model_dump())
     db.add(rate)
     db.commit()
     return rate


# ---------------------------------------------------------------------------
# Sales and gifts
# ---------------------------------------------------------------------------

@router.post(
     "/purchases",
     response_model=PurchaseResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Record an in-person package sale"
)
def purchase_concession(
     body: ConcessionPurchaseRequest,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     transaction, block = transaction_service.purchase_concession(
          db,
          body.student_id,
          body.package_id,
          payment_method=body.payment_method,
          purchase_date=body.purchase_date,
          amount_paid=body.amount_paid,
          notes=body.notes,
          created_by=actor(token),
     )
     db.commit()
     return _purchase_response(db, transaction, block)


@router.post(
     "/purchases/online",
     response_model=PurchaseResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Buy a package by card"
)
def purchase_concession_online(
     body: OnlinePurchaseRequest,
     db: Session = Depends(get_session),
     gateway: StripeGateway = Depends(get_payment_gateway),
     token: dict = Depends(verify_token)
):
     ensure_student_access(token, body.student_id)
     transaction, block = transaction_service.process_online_concession_purchase(
          db,
          gateway,
          body.student_id,
          body.package_id,
          body.payment_method_id,
          idempotency_key=body.idempotency_key,
     )
     db.commit()
     return _purchase_response(db, transaction, block)


@router.post(
     "/gifts",
     response_model=PurchaseResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Gift free classes to a student"
)
def gift_concessions(
     body: GiftRequest,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     transaction, block = transaction_service.gift_concessions(
          db,
          body.student_id,
          body.quantity,
          expiry_date=body.expiry_date,
          gift_date=body.gift_date,
          notes=body.notes,
          gifted_by=actor(token),
     )
     db.commit()
     return _purchase_response(db, transaction, block)


# ---------------------------------------------------------------------------
# Block administration
# ---------------------------------------------------------------------------

@router.post("/blocks/{block_id}/lock", response_model=BlockResponse, summary="Lock a block")
def lock_block(
     block_id: str,
     body: BlockLockRequest,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     block = ledger_service.lock_block(db, block_id, locked_by=actor(token), notes=body.notes)
     db.commit()
     return block


@router.post("/blocks/{block_id}/unlock", response_model=BlockResponse, summary="Unlock a block")
def unlock_block(
     block_id: str,
     body: BlockLockRequest,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     block = ledger_service.unlock_block(db, block_id, unlocked_by=actor(token), notes=body.notes)
     db.commit()
     return block


@router.put("/blocks/{block_id}/notes", response_model=BlockResponse, summary="Edit a block's notes")
def update_block_notes(
     block_id: str,
     body: BlockNotesRequest,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     block = ledger_service.update_block_notes(db, block_id, body.notes)
     db.commit()
     return block


@router.delete(
     "/blocks/{block_id}",
     status_code=status.HTTP_204_NO_CONTENT,
     summary="Delete an unused block"
)
def delete_block(
     block_id: str,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     ledger_service.delete_block(db, block_id)
     db.commit()


@router.post(
     "/students/{student_id}/lock-expired",
     response_model=LockExpiredResponse,
     summary="Lock all of a student's expired blocks"
)
def lock_all_expired(
     student_id: str,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     count = ledger_service.lock_all_expired_blocks(db, student_id, locked_by=actor(token))
     db.commit()
     return LockExpiredResponse(blocks_locked=count)
