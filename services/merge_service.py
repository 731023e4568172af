# services/merge_service.py
"""
Student Merge - fold a duplicate ("deprecated") student into a primary one.

A merge is a sequence of independently committed steps tracked on a
MergeOperation row:

     pending -> repointed -> fields_applied -> deprecated_deleted
             -> accounts_cleaned -> completed

current_step only advances after a step has committed, so a merge that
fails part way can be resumed with resume_merge. Every step is safe to run
again: repointing finds nothing left to move, field overrides and the soft
delete write the same values, and portal cleanup skips accounts already
gone.
"""
from typing import Dict, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

import config
from exceptions import NotFoundError, ValidationError
from logging_config import get_logger
from models import Checkin, ConcessionBlock, MergeOperation, MergeStep, PortalUser, Student, Transaction
from services import ledger_service
from services.auth_provider import AuthProvider
from utils.dates import utcnow

log = get_logger(__name__)

MERGEABLE_FIELDS = ("email", "first_name", "last_name", "phone_number", "pronouns", "stripe_customer_id")
PRIMARY = "primary"
DEPRECATED = "deprecated"

REPOINTED_MODELS = (
     ("transactions", Transaction),
     ("checkins", Checkin),
     ("concession_blocks", ConcessionBlock),
)


def get_related_document_counts(db: Session, student_id: str) -> Dict[str, int]:
     """How many transactions, check-ins and blocks point at a student."""
     return {
          key: db.query(func.count(model.id)).filter(model.student_id == student_id).scalar() or 0
          for key, model in REPOINTED_MODELS
     }


def repoint_student_documents(
     db: Session,
     from_student_id: str,
     to_student_id: str,
     batch_size: int = config.MERGE_BATCH_SIZE
) -> Dict[str, int]:
     """
     Move every document of one student to another, committing each batch.

     Running it again once nothing is left is a no-op that returns zero
     counts.
     """
     batch_size = max(1, min(batch_size, config.MAX_BATCH_SIZE))
     to_student = ledger_service.get_student(db, to_student_id, include_deleted=True)
     to_name = to_student.full_name
     counts = {}

     for key, model in REPOINTED_MODELS:
          moved = 0
          while True:
               batch = [
                    row.id for row in
                    db.query(model.id)
                    .filter(model.student_id == from_student_id)
                    .order_by(model.id)
                    .limit(batch_size)
                    .all()
               ]
               if not batch:
                    break
               db.execute(
                    update(model)
                    .where(model.id.in_(batch))
                    .values(student_id=to_student_id, student_name=to_name)
                    .execution_options(synchronize_session=False)
               )
               db.commit()
               moved += len(batch)
               log.info("merge_batch_committed", model=key, count=len(batch), to_student_id=to_student_id)
          counts[key] = moved

     db.expire_all()
     return counts


def _resolve_selections(primary: Student, deprecated: Student, field_selections: Optional[dict]) -> dict:
     selections = {}
     for field, choice in (field_selections or {}).items():
          if field not in MERGEABLE_FIELDS:
               raise ValidationError(f"Field '{field}' cannot be merged")
          if choice not in (PRIMARY, DEPRECATED):
               raise ValidationError(f"Field '{field}' must come from '{PRIMARY}' or '{DEPRECATED}'")
          selections[field] = choice

     # Keep whichever Stripe customer exists when the operator didn't choose
     if "stripe_customer_id" not in selections:
          if not primary.stripe_customer_id and deprecated.stripe_customer_id:
               selections["stripe_customer_id"] = DEPRECATED
          else:
               selections["stripe_customer_id"] = PRIMARY
     return selections


def _load_pair(db: Session, primary_id: str, deprecated_id: str):
     if primary_id == deprecated_id:
          raise ValidationError("Cannot merge a student into themselves")

     primary = ledger_service.get_student(db, primary_id, include_deleted=True)
     deprecated = ledger_service.get_student(db, deprecated_id, include_deleted=True)
     if primary.deleted:
          raise ValidationError("The primary student has been deleted")
     if deprecated.merged_into and deprecated.merged_into != primary.id:
          raise ValidationError(
               "Student has already been merged into another record",
               details={"merged_into": deprecated.merged_into},
          )
     return primary, deprecated


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------

def _apply_fields(db: Session, operation: MergeOperation) -> None:
     primary = ledger_service.get_student(db, operation.primary_id)
     deprecated = ledger_service.get_student(db, operation.deprecated_id, include_deleted=True)

     for field, choice in (operation.field_selections or {}).items():
          if choice == DEPRECATED:
               setattr(primary, field, getattr(deprecated, field))

     merged_from = list(primary.merged_from or [])
     if deprecated.id not in merged_from:
          merged_from.append(deprecated.id)
          primary.merged_from = merged_from

     db.flush()
     ledger_service.update_student_balance(db, primary.id)


def _soft_delete_deprecated(db: Session, operation: MergeOperation) -> None:
     deprecated = ledger_service.get_student(db, operation.deprecated_id, include_deleted=True)
     deprecated.deleted = True
     deprecated.merged_into = operation.primary_id
     deprecated.deleted_at = deprecated.deleted_at or utcnow()
     deprecated.concession_balance = 0
     deprecated.expired_concessions = 0
     db.flush()


def _delete_identity(auth_provider: AuthProvider, uid: str) -> None:
     try:
          auth_provider.delete_user(uid)
     except NotFoundError:
          log.info("merge_identity_already_gone", uid=uid)


def _clean_portal_accounts(db: Session, operation: MergeOperation, auth_provider: AuthProvider) -> None:
     """
     - both have accounts: delete the deprecated one, then move the primary's
       login email if the merged email came from the deprecated student
     - only the deprecated student has one: re-link it to the primary
     - only the primary has one: update its email if it changed
     """
     primary = ledger_service.get_student(db, operation.primary_id)
     primary_user = db.query(PortalUser).filter(PortalUser.student_id == primary.id).first()
     deprecated_user = db.query(PortalUser).filter(PortalUser.student_id == operation.deprecated_id).first()
     email_from_deprecated = (operation.field_selections or {}).get("email") == DEPRECATED

     if deprecated_user is not None and primary_user is not None:
          _delete_identity(auth_provider, deprecated_user.id)
          db.delete(deprecated_user)
          db.flush()
          if email_from_deprecated and primary.email and primary_user.email != primary.email:
               auth_provider.update_email(primary_user.id, primary.email)
               primary_user.email = primary.email
     elif deprecated_user is not None:
          deprecated_user.student_id = primary.id
          if primary.email and deprecated_user.email != primary.email:
               auth_provider.update_email(deprecated_user.id, primary.email)
               deprecated_user.email = primary.email
          log.info("merge_portal_account_relinked", uid=deprecated_user.id, student_id=primary.id)
     elif primary_user is not None and email_from_deprecated and primary.email and primary_user.email != primary.email:
          auth_provider.update_email(primary_user.id, primary.email)
          primary_user.email = primary.email
     db.flush()


def _advance(db: Session, operation: MergeOperation, step: MergeStep) -> None:
     operation.current_step = step
     operation.last_error = None
     db.commit()
     log.info("merge_step_completed", merge_id=operation.id, step=step.value)


def _run(db: Session, operation: MergeOperation, auth_provider: AuthProvider, batch_size: int) -> MergeOperation:
     operation_id = operation.id
     try:
          if not operation.has_reached(MergeStep.REPOINTED):
               counts = repoint_student_documents(db, operation.deprecated_id, operation.primary_id, batch_size)
               operation = db.get(MergeOperation, operation_id)
               operation.transactions_updated += counts["transactions"]
               operation.checkins_updated += counts["checkins"]
               operation.blocks_updated += counts["concession_blocks"]
               _advance(db, operation, MergeStep.REPOINTED)

          if not operation.has_reached(MergeStep.FIELDS_APPLIED):
               _apply_fields(db, operation)
               _advance(db, operation, MergeStep.FIELDS_APPLIED)

          if not operation.has_reached(MergeStep.DEPRECATED_DELETED):
               _soft_delete_deprecated(db, operation)
               _advance(db, operation, MergeStep.DEPRECATED_DELETED)

          if not operation.has_reached(MergeStep.ACCOUNTS_CLEANED):
               _clean_portal_accounts(db, operation, auth_provider)
               _advance(db, operation, MergeStep.ACCOUNTS_CLEANED)

          if not operation.has_reached(MergeStep.COMPLETED):
               operation.completed_at = utcnow()
               _advance(db, operation, MergeStep.COMPLETED)
     except Exception as e:
          db.rollback()
          operation = db.get(MergeOperation, operation_id)
          operation.last_error = str(e)[:2000]
          db.commit()
          log.error(
               "merge_step_failed",
               merge_id=operation_id,
               step=MergeStep(operation.current_step).value,
               error=str(e),
          )
          raise

     log.info(
          "merge_completed",
          merge_id=operation.id,
          primary_id=operation.primary_id,
          deprecated_id=operation.deprecated_id,
          transactions=operation.transactions_updated,
          checkins=operation.checkins_updated,
          blocks=operation.blocks_updated,
     )
     return operation


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def start_merge(
     db: Session,
     primary_id: str,
     deprecated_id: str,
     field_selections: Optional[dict],
     auth_provider: AuthProvider,
     batch_size: int = config.MERGE_BATCH_SIZE,
     performed_by: Optional[str] = None,
) -> MergeOperation:
     """
     Record a new merge and run it to completion.

     Raises:
          NotFoundError: either student missing
          ValidationError: same student, bad field selections, or the
               deprecated student was already merged elsewhere
     """
     primary, deprecated = _load_pair(db, primary_id, deprecated_id)
     selections = _resolve_selections(primary, deprecated, field_selections)

     operation = MergeOperation(
          primary_id=primary.id,
          deprecated_id=deprecated.id,
          field_selections=selections,
          current_step=MergeStep.PENDING,
          transactions_updated=0,
          checkins_updated=0,
          blocks_updated=0,
          performed_by=performed_by,
     )
     db.add(operation)
     db.commit()
     log.info("merge_started", merge_id=operation.id, primary_id=primary.id, deprecated_id=deprecated.id)
     return _run(db, operation, auth_provider, batch_size)


def resume_merge(
     db: Session,
     operation_id: int,
     auth_provider: AuthProvider,
     batch_size: int = config.MERGE_BATCH_SIZE
) -> MergeOperation:
     """Continue a merge from the last step that committed."""
     operation = get_merge_operation(db, operation_id)
     if operation.has_reached(MergeStep.COMPLETED):
          return operation
     log.info("merge_resumed", merge_id=operation.id, step=MergeStep(operation.current_step).value)
     return _run(db, operation, auth_provider, batch_size)


def get_merge_operation(db: Session, operation_id: int) -> MergeOperation:
     operation = db.get(MergeOperation, operation_id)
     if operation is None:
          raise NotFoundError(f"Merge operation {operation_id} not found")
     return operation
