# routers/merges.py
"""
Student merge API routes (admin only).

A merge commits step by step; a failed merge keeps its progress and can be
resumed with POST /api/merges/{id}/resume.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from database import get_session
from dependencies import actor, require_admin
from schemas.merge import MergeOperationResponse, MergePreviewResponse, MergeRequest
from services import ledger_service, merge_service
from services.auth_provider import AuthProvider, get_auth_provider

router = APIRouter(prefix="/api/merges", tags=["merges"])


@router.get("/preview", response_model=MergePreviewResponse, summary="Documents each student owns")
def preview_merge(
     primary_id: str = Query(...),
     deprecated_id: str = Query(...),
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     ledger_service.get_student(db, primary_id)
     ledger_service.get_student(db, deprecated_id, include_deleted=True)
     return MergePreviewResponse(
          primary_id=primary_id,
          deprecated_id=deprecated_id,
          primary_counts=merge_service.get_related_document_counts(db, primary_id),
          deprecated_counts=merge_service.get_related_document_counts(db, deprecated_id),
     )


@router.post(
     "",
     response_model=MergeOperationResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Merge a duplicate student into a primary one"
)
def start_merge(
     body: MergeRequest,
     db: Session = Depends(get_session),
     auth_provider: AuthProvider = Depends(get_auth_provider),
     token: dict = Depends(require_admin)
):
     return merge_service.start_merge(
          db,
          body.primary_id,
          body.deprecated_id,
          body.field_selections,
          auth_provider,
          performed_by=actor(token),
     )


@router.post("/{operation_id}/resume", response_model=MergeOperationResponse, summary="Resume a failed merge")
def resume_merge(
     operation_id: int,
     db: Session = Depends(get_session),
     auth_provider: AuthProvider = Depends(get_auth_provider),
     token: dict = Depends(require_admin)
):
     return merge_service.resume_merge(db, operation_id, auth_provider)


@router.get("/{operation_id}", response_model=MergeOperationResponse, summary="Merge progress")
def get_merge(
     operation_id: int,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     return merge_service.get_merge_operation(db, operation_id)
