# routers/maintenance.py
"""
Maintenance routes for the scheduler and health checks.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import check_connection, get_session
from dependencies import require_admin
from schemas.concession import ExpirySweepResponse
from services import ledger_service

router = APIRouter(prefix="/api/maintenance", tags=["maintenance"])


@router.post(
     "/expire-concessions",
     response_model=ExpirySweepResponse,
     summary="Mark every block past its expiry date as expired"
)
def expire_concessions(
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin)
):
     return ExpirySweepResponse(blocks_expired=ledger_service.mark_expired_blocks(db))


@router.get("/health", summary="Database connectivity")
def health():
     return {"status": "ok" if check_connection() else "degraded"}
