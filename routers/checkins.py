# routers/checkins.py
"""
Check-in API routes (admin console).
"""
from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from database import get_session
from dependencies import actor, require_admin
from schemas.checkin import CheckinCreate, CheckinFromPendingRequest, CheckinResponse, CheckinUpdate
from services import checkin_service
from utils.dates import studio_today

router = APIRouter(prefix="/api/checkins", tags=["checkins"])


@router.get("", response_model=List[CheckinResponse], summary="Check-ins for a class day")
def list_checkins(
     checkin_date: Optional[date] = Query(None, description="Defaults to today"),
     include_reversed: bool = Query(False),
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     return checkin_service.list_checkins_for_date(db, checkin_date or studio_today(), include_reversed)


@router.post(
     "",
     response_model=CheckinResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Check a student in"
)
def record_checkin(
     body: CheckinCreate,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     checkin = checkin_service.record_checkin(
          db,
          body.student_id,
          body.entry_type,
          checkin_date=body.checkin_date,
          payment_method=body.payment_method,
          free_entry_reason=body.free_entry_reason,
          notes=body.notes,
          online_transaction_id=body.online_transaction_id,
          amount=body.amount,
          created_by=actor(token),
     )
     db.commit()
     return checkin


@router.post(
     "/from-pending",
     response_model=CheckinResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Check in from a prepaid casual class"
)
def checkin_from_pending(
     body: CheckinFromPendingRequest,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     checkin = checkin_service.checkin_from_pending_transaction(db, body.transaction_id, created_by=actor(token))
     db.commit()
     return checkin


@router.put("/{checkin_id}", response_model=CheckinResponse, summary="Change a check-in's entry type")
def update_checkin(
     checkin_id: str,
     body: CheckinUpdate,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     checkin = checkin_service.update_checkin(
          db,
          checkin_id,
          body.entry_type,
          payment_method=body.payment_method,
          free_entry_reason=body.free_entry_reason,
          notes=body.notes,
          online_transaction_id=body.online_transaction_id,
          amount=body.amount,
     )
     db.commit()
     return checkin


@router.post("/{checkin_id}/reverse", response_model=CheckinResponse, summary="Reverse a check-in")
def reverse_checkin(
     checkin_id: str,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     checkin = checkin_service.reverse_checkin(db, checkin_id)
     db.commit()
     return checkin
