# routers/students.py
"""
Student API routes.

Role-based access:
- Admin: every student, registration, portal accounts
- Student: only their own record, concessions, transactions and check-ins
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from database import get_session
from dependencies import ensure_student_access, require_admin, verify_token
from schemas.checkin import CheckinResponse
from schemas.concession import BlockResponse, StudentBlocksResponse
from schemas.student import (
     PortalAccountCreate,
     PortalAccountResponse,
     StudentCreate,
     StudentResponse,
     StudentUpdate,
)
from schemas.transaction import TransactionResponse
from services import checkin_service, ledger_service, transaction_service
from services.auth_provider import AuthProvider, get_auth_provider
from services.student_service import StudentService

router = APIRouter(prefix="/api/students", tags=["students"])


@router.get("", response_model=List[StudentResponse], summary="List students")
def list_students(
     search: Optional[str] = Query(None, description="Match on first name, last name or email"),
     include_deleted: bool = Query(False),
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     return StudentService.list_students(db, search=search, include_deleted=include_deleted)


@router.post(
     "",
     response_model=StudentResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Register a student"
)
def create_student(
     body: StudentCreate,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     student = StudentService.create_student(db, **body.model_dump())
     db.commit()
     db.refresh(student)
     return student


@router.get("/{student_id}", response_model=StudentResponse, summary="Get a student")
def get_student(
     student_id: str,
     db: Session = Depends(get_session),
     token: dict = Depends(verify_token)
):
     ensure_student_access(token, student_id)
     return ledger_service.get_student(db, student_id, include_deleted=True)


@router.put("/{student_id}", response_model=StudentResponse, summary="Update a student's profile")
def update_student(
     student_id: str,
     body: StudentUpdate,
     db: Session = Depends(get_session),
     token: dict = Depends(verify_token)
):
     ensure_student_access(token, student_id)
     student = StudentService.update_student(db, student_id, **body.model_dump(exclude_unset=True))
     db.commit()
     db.refresh(student)
     return student


@router.post(
     "/{student_id}/portal-account",
     response_model=PortalAccountResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Create a portal login for a student"
)
def create_portal_account(
     student_id: str,
     body: PortalAccountCreate,
     db: Session = Depends(get_session),
     auth_provider: AuthProvider = Depends(get_auth_provider),
     token: dict = Depends(require_admin)
):
     user = StudentService.create_portal_account(db, auth_provider, student_id, body.email, body.password)
     db.commit()
     return user


@router.get(
     "/{student_id}/concessions",
     response_model=StudentBlocksResponse,
     summary="Concession blocks and balance of a student"
)
def get_student_concessions(
     student_id: str,
     db: Session = Depends(get_session),
     token: dict = Depends(verify_token)
):
     ensure_student_access(token, student_id)
     student = ledger_service.get_student(db, student_id, include_deleted=True)
     blocks = ledger_service.get_student_blocks(db, student_id)
     return StudentBlocksResponse(
          student_id=student.id,
          concession_balance=student.concession_balance,
          expired_concessions=student.expired_concessions,
          blocks=[BlockResponse.model_validate(b) for b in blocks],
     )


@router.get(
     "/{student_id}/transactions",
     response_model=List[TransactionResponse],
     summary="Transactions of a student, newest first"
)
def get_student_transactions(
     student_id: str,
     include_reversed: bool = Query(True),
     db: Session = Depends(get_session),
     token: dict = Depends(verify_token)
):
     ensure_student_access(token, student_id)
     return transaction_service.list_student_transactions(db, student_id, include_reversed=include_reversed)


@router.get(
     "/{student_id}/checkins",
     response_model=List[CheckinResponse],
     summary="Check-in history of a student"
)
def get_student_checkins(
     student_id: str,
     db: Session = Depends(get_session),
     token: dict = Depends(verify_token)
):
     ensure_student_access(token, student_id)
     return checkin_service.list_student_checkins(db, student_id)
