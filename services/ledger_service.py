# services/ledger_service.py
"""
Entitlement Ledger - concession blocks and the derived student balance.

A concession block is a prepaid grant of class entries. Blocks are consumed
oldest-first on check-in, expire on a schedule, and can be locked by an
admin so they are neither used nor counted.

Every mutation here:
1. changes block rows with a conditional UPDATE whose row count is checked
   (no read-modify-write on remaining_quantity)
2. recomputes the student's concession_balance / expired_concessions in the
   same database transaction, with the student row locked

The caller owns the commit, except in mark_expired_blocks which commits
per batch.
"""
from collections import namedtuple
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

import requests
from sqlalchemy import func, update
from sqlalchemy.orm import Session

import config
from exceptions import ConflictError, ExternalServiceError, NotFoundError, ValidationError
from logging_config import get_logger
from models import BlockStatus, ConcessionBlock, Student, Transaction
from models.transaction import PAYMENT_METHODS
from services.retry import retry_call
from utils import ids
from utils.dates import utcnow
from utils.email import send_low_balance_email

log = get_logger(__name__)

# Anything with an id and a name can stand in for a package
PackageRef = namedtuple("PackageRef", ["id", "name"])


def get_student(db: Session, student_id: str, include_deleted: bool = False) -> Student:
     """Load a student or raise NotFoundError."""
     student = db.get(Student, student_id)
     if student is None or (student.deleted and not include_deleted):
          raise NotFoundError(f"Student with ID {student_id} not found")
     return student


def get_block(db: Session, block_id: str) -> ConcessionBlock:
     block = db.get(ConcessionBlock, block_id)
     if block is None:
          raise NotFoundError(f"Concession block {block_id} not found")
     return block


def validate_payment_method(payment_method: str) -> None:
     if payment_method not in PAYMENT_METHODS:
          raise ValidationError(
               f"Invalid payment method '{payment_method}'",
               details={"allowed": list(PAYMENT_METHODS)},
          )


def _status_for_expiry(expiry_date: Optional[datetime], now: Optional[datetime] = None) -> BlockStatus:
     now = now or utcnow()
     if expiry_date is not None and expiry_date < now:
          return BlockStatus.EXPIRED
     return BlockStatus.ACTIVE


def _unique_block_id(db: Session, student: Student, purchase_date: datetime) -> str:
     candidate = ids.block_id(student.first_name, student.last_name, purchase_date, ids.now_ms())
     while db.get(ConcessionBlock, candidate) is not None:
          candidate = f"{candidate}-{ids.random_suffix(4)}"
     return candidate


# ---------------------------------------------------------------------------
# Balance
# ---------------------------------------------------------------------------

def update_student_balance(db: Session, student_id: str) -> Tuple[int, int]:
     """
     Recompute the student's derived counters from their blocks.

     - concession_balance: remaining entries on active, unlocked blocks
     - expired_concessions: remaining entries on expired, unlocked blocks

     The student row is locked (SELECT ... FOR UPDATE where the backend
     supports it) so two recomputes cannot interleave their writes.

     Returns:
          (concession_balance, expired_concessions)
     """
     student = (
          db.query(Student)
          .filter(Student.id == student_id)
          .with_for_update()
          .first()
     )
     if student is None:
          raise NotFoundError(f"Student with ID {student_id} not found")

     db.flush()
     rows = (
          db.query(ConcessionBlock.status, func.coalesce(func.sum(ConcessionBlock.remaining_quantity), 0))
          .filter(
               ConcessionBlock.student_id == student_id,
               ConcessionBlock.is_locked == False,  # noqa: E712
               ConcessionBlock.remaining_quantity > 0,
          )
          .group_by(ConcessionBlock.status)
          .all()
     )
     totals = {BlockStatus(status): int(total) for status, total in rows}
     balance = totals.get(BlockStatus.ACTIVE, 0)
     expired = totals.get(BlockStatus.EXPIRED, 0)

     student.concession_balance = balance
     student.expired_concessions = expired
     db.flush()
     return balance, expired


def _notify_if_low_balance(student: Student) -> None:
     """Best-effort low balance email; never blocks a check-in."""
     if not config.LOW_BALANCE_EMAILS_ENABLED or not student.email:
          return
     if student.concession_balance != config.LOW_BALANCE_THRESHOLD:
          return
     try:
          send_low_balance_email(student.email, student.first_name, student.concession_balance)
          log.info("low_balance_email_sent", student_id=student.id)
     except (ExternalServiceError, requests.RequestException) as e:
          log.warning("low_balance_email_failed", student_id=student.id, error=str(e))


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

def create_block(
     db: Session,
     student_id: str,
     package,
     quantity: int,
     price: Decimal,
     payment_method: str,
     expiry_date: Optional[datetime],
     purchase_date: Optional[datetime] = None,
     notes: str = "",
     transaction_id: Optional[str] = None,
     created_by: Optional[str] = None,
) -> ConcessionBlock:
     """
     Create a concession block for a student and refresh their balance.

     remaining_quantity starts equal to original_quantity. A block whose
     expiry date is already in the past is created as expired. There is no
     idempotency key: calling twice creates two blocks.

     Raises:
          NotFoundError: student missing
          ValidationError: non-positive quantity, negative price, unknown payment method
     """
     if quantity is None or quantity <= 0:
          raise ValidationError("Quantity must be a positive number of classes")
     price = Decimal(str(price if price is not None else 0))
     if price < 0:
          raise ValidationError("Price cannot be negative")
     validate_payment_method(payment_method)

     student = get_student(db, student_id)
     purchase_date = purchase_date or utcnow()

     block = ConcessionBlock(
          id=_unique_block_id(db, student, purchase_date),
          student_id=student.id,
          student_name=student.full_name,
          package_id=package.id if package is not None else None,
          package_name=package.name if package is not None else None,
          original_quantity=quantity,
          remaining_quantity=quantity,
          purchase_date=purchase_date,
          expiry_date=expiry_date,
          status=_status_for_expiry(expiry_date),
          is_locked=False,
          price=price,
          payment_method=payment_method,
          transaction_id=transaction_id,
          notes=notes or "",
          created_by=created_by,
     )
     db.add(block)
     db.flush()

     update_student_balance(db, student.id)
     log.info(
          "concession_block_created",
          block_id=block.id,
          student_id=student.id,
          quantity=quantity,
          status=block.status.value,
     )
     return block


def restore_block_from_snapshot(db: Session, snapshot: dict) -> ConcessionBlock:
     """Recreate a deleted block under its original id from snapshot()."""
     block_id = snapshot["block_id"]
     if db.get(ConcessionBlock, block_id) is not None:
          raise ConflictError(f"Concession block {block_id} already exists")

     block = ConcessionBlock(
          id=block_id,
          student_id=snapshot["student_id"],
          student_name=snapshot.get("student_name"),
          package_id=snapshot.get("package_id"),
          package_name=snapshot.get("package_name"),
          original_quantity=snapshot["original_quantity"],
          remaining_quantity=snapshot["remaining_quantity"],
          purchase_date=datetime.fromisoformat(snapshot["purchase_date"]),
          expiry_date=datetime.fromisoformat(snapshot["expiry_date"]) if snapshot.get("expiry_date") else None,
          status=BlockStatus(snapshot["status"]),
          is_locked=snapshot.get("is_locked", False),
          lock_notes=snapshot.get("lock_notes"),
          price=Decimal(snapshot.get("price") or "0"),
          payment_method=snapshot["payment_method"],
          transaction_id=snapshot.get("transaction_id"),
          notes=snapshot.get("notes"),
          created_by=snapshot.get("created_by"),
     )
     db.add(block)
     db.flush()
     update_student_balance(db, block.student_id)
     log.info("concession_block_restored", block_id=block.id, student_id=block.student_id)
     return block


def remove_block_with_snapshot(db: Session, block: ConcessionBlock) -> dict:
     """Delete a block and return the snapshot needed to bring it back."""
     snapshot = block.snapshot()
     student_id = block.student_id
     db.delete(block)
     db.flush()
     update_student_balance(db, student_id)
     log.info("concession_block_removed", block_id=snapshot["block_id"], student_id=student_id)
     return snapshot


# ---------------------------------------------------------------------------
# Consumption
# ---------------------------------------------------------------------------

def get_next_available_block(
     db: Session,
     student_id: str,
     allow_expired: bool = False
) -> Optional[ConcessionBlock]:
     """
     FIFO selection of the block the next check-in should draw from.

     Only unlocked blocks with entries left are considered. Active blocks
     come before expired ones (expired only when allow_expired), then the
     oldest purchase_date wins; equal purchase dates fall back to block id.
     """
     statuses = [BlockStatus.ACTIVE, BlockStatus.EXPIRED] if allow_expired else [BlockStatus.ACTIVE]
     blocks = (
          db.query(ConcessionBlock)
          .filter(
               ConcessionBlock.student_id == student_id,
               ConcessionBlock.remaining_quantity > 0,
               ConcessionBlock.is_locked == False,  # noqa: E712
               ConcessionBlock.status.in_(statuses),
          )
          .all()
     )
     if not blocks:
          return None

     blocks.sort(key=lambda b: (0 if b.status == BlockStatus.ACTIVE else 1, b.purchase_date, b.id))
     return blocks[0]


def use_block_entry(db: Session, block_id: str) -> ConcessionBlock:
     """
     Consume one entry from a block.

     The decrement is a single conditional UPDATE (remaining_quantity > 0,
     not locked), so concurrent check-ins against the last entry cannot
     both succeed. The block becomes depleted when it reaches zero.

     Raises:
          NotFoundError: block no longer exists
          ConflictError: block is empty, locked, or was drained concurrently
     """
     result = db.execute(
          update(ConcessionBlock)
          .where(
               ConcessionBlock.id == block_id,
               ConcessionBlock.remaining_quantity > 0,
               ConcessionBlock.is_locked == False,  # noqa: E712
          )
          .values(remaining_quantity=ConcessionBlock.remaining_quantity - 1)
          .execution_options(synchronize_session=False)
     )
     if result.rowcount != 1:
          block = db.get(ConcessionBlock, block_id)
          if block is None:
               raise NotFoundError(f"Concession block {block_id} not found")
          raise ConflictError(
               f"Concession block {block_id} has no usable entries",
               details={"remaining_quantity": block.remaining_quantity, "is_locked": block.is_locked},
          )

     db.execute(
          update(ConcessionBlock)
          .where(ConcessionBlock.id == block_id, ConcessionBlock.remaining_quantity == 0)
          .values(status=BlockStatus.DEPLETED)
          .execution_options(synchronize_session=False)
     )

     block = db.get(ConcessionBlock, block_id)
     db.refresh(block)
     update_student_balance(db, block.student_id)
     log.info(
          "concession_entry_used",
          block_id=block.id,
          student_id=block.student_id,
          remaining=block.remaining_quantity,
     )
     _notify_if_low_balance(db.get(Student, block.student_id))
     return block


def restore_block_entry(db: Session, block_id: str) -> ConcessionBlock:
     """
     Give one entry back to a block (check-in reversed or changed type).

     A depleted block returns to expired or active depending on its expiry
     date.

     Raises:
          NotFoundError: block no longer exists
          ConflictError: block is already full
     """
     result = db.execute(
          update(ConcessionBlock)
          .where(
               ConcessionBlock.id == block_id,
               ConcessionBlock.remaining_quantity < ConcessionBlock.original_quantity,
          )
          .values(remaining_quantity=ConcessionBlock.remaining_quantity + 1)
          .execution_options(synchronize_session=False)
     )
     if result.rowcount != 1:
          block = db.get(ConcessionBlock, block_id)
          if block is None:
               raise NotFoundError(f"Concession block {block_id} not found")
          raise ConflictError(f"Concession block {block_id} has no used entries to restore")

     block = db.get(ConcessionBlock, block_id)
     db.refresh(block)
     if block.status == BlockStatus.DEPLETED:
          block.status = _status_for_expiry(block.expiry_date)

     update_student_balance(db, block.student_id)
     log.info(
          "concession_entry_restored",
          block_id=block.id,
          student_id=block.student_id,
          remaining=block.remaining_quantity,
     )
     return block


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------

def mark_expired_blocks(
     db: Session,
     now: Optional[datetime] = None,
     batch_size: int = config.MAX_BATCH_SIZE
) -> int:
     """
     Move every active block whose expiry date has passed to expired.

     Runs in batches of at most batch_size rows, each committed on its own,
     then recomputes the balance of every affected student. Safe to run
     repeatedly: a second run finds nothing to do and returns 0.

     Returns:
          Number of blocks marked expired
     """
     now = now or utcnow()
     batch_size = min(batch_size, config.MAX_BATCH_SIZE)
     total = 0
     affected_students = set()

     while True:
          rows = retry_call(
               lambda: (
                    db.query(ConcessionBlock.id, ConcessionBlock.student_id)
                    .filter(
                         ConcessionBlock.status == BlockStatus.ACTIVE,
                         ConcessionBlock.expiry_date.isnot(None),
                         ConcessionBlock.expiry_date <= now,
                    )
                    .order_by(ConcessionBlock.id)
                    .limit(batch_size)
                    .all()
               ),
               on_retry=db.rollback,
          )
          if not rows:
               break

          block_ids = [row.id for row in rows]
          db.execute(
               update(ConcessionBlock)
               .where(ConcessionBlock.id.in_(block_ids), ConcessionBlock.status == BlockStatus.ACTIVE)
               .values(status=BlockStatus.EXPIRED)
               .execution_options(synchronize_session=False)
          )
          db.commit()
          db.expire_all()
          total += len(block_ids)
          affected_students.update(row.student_id for row in rows)
          log.info("expiry_batch_committed", blocks=len(block_ids))

     for student_id in sorted(affected_students):
          retry_call(lambda sid=student_id: update_student_balance(db, sid), on_retry=db.rollback)
          db.commit()

     log.info("expiry_sweep_finished", blocks_expired=total, students=len(affected_students))
     return total


# ---------------------------------------------------------------------------
# Locking, notes, deletion
# ---------------------------------------------------------------------------

def lock_block(
     db: Session,
     block_id: str,
     locked_by: Optional[str] = None,
     notes: Optional[str] = None
) -> ConcessionBlock:
     """Lock a block so it is neither consumed nor counted. Notes are kept when omitted."""
     block = get_block(db, block_id)
     block.is_locked = True
     block.locked_at = utcnow()
     block.locked_by = locked_by or "unknown"
     block.unlocked_at = None
     block.unlocked_by = None
     if notes is not None:
          block.lock_notes = notes
     db.flush()
     update_student_balance(db, block.student_id)
     log.info("concession_block_locked", block_id=block.id, locked_by=block.locked_by)
     return block


def unlock_block(
     db: Session,
     block_id: str,
     unlocked_by: Optional[str] = None,
     notes: Optional[str] = None
) -> ConcessionBlock:
     block = get_block(db, block_id)
     block.is_locked = False
     block.unlocked_at = utcnow()
     block.unlocked_by = unlocked_by or "unknown"
     block.locked_at = None
     block.locked_by = None
     if notes is not None:
          block.lock_notes = notes
     db.flush()
     update_student_balance(db, block.student_id)
     log.info("concession_block_unlocked", block_id=block.id, unlocked_by=block.unlocked_by)
     return block


def update_block_notes(db: Session, block_id: str, notes: Optional[str]) -> ConcessionBlock:
     block = get_block(db, block_id)
     block.lock_notes = notes or ""
     db.flush()
     return block


def lock_all_expired_blocks(db: Session, student_id: str, locked_by: Optional[str] = None) -> int:
     """
     Lock every unlocked block of a student whose expiry date has passed.

     Returns:
          Number of blocks locked
     """
     get_student(db, student_id)
     now = utcnow()
     blocks = (
          db.query(ConcessionBlock)
          .filter(
               ConcessionBlock.student_id == student_id,
               ConcessionBlock.is_locked == False,  # noqa: E712
               ConcessionBlock.expiry_date.isnot(None),
               ConcessionBlock.expiry_date < now,
          )
          .all()
     )
     for block in blocks:
          block.is_locked = True
          block.locked_at = now
          block.locked_by = locked_by or "unknown"

     if blocks:
          db.flush()
          update_student_balance(db, student_id)
     log.info("expired_blocks_locked", student_id=student_id, count=len(blocks))
     return len(blocks)


def delete_block(db: Session, block_id: str) -> None:
     """
     Delete an unused, unlocked block (admin correction).

     The transaction that created it is soft-reversed, never deleted.

     Raises:
          NotFoundError: block missing
          ValidationError: block is locked or has been used
     """
     block = get_block(db, block_id)
     if block.is_locked:
          raise ValidationError("Cannot delete a locked concession block. Unlock it first.")
     if block.is_used:
          raise ValidationError("Only unused concession blocks can be deleted")

     if block.transaction_id:
          transaction = db.get(Transaction, block.transaction_id)
          if transaction is not None and not transaction.reversed:
               transaction.reversed = True
               transaction.reversed_at = utcnow()

     student_id = block.student_id
     db.delete(block)
     db.flush()
     update_student_balance(db, student_id)
     log.info("concession_block_deleted", block_id=block_id, student_id=student_id)


def get_student_blocks(db: Session, student_id: str) -> List[ConcessionBlock]:
     """All blocks for a student, newest purchase first."""
     return (
          db.query(ConcessionBlock)
          .filter(ConcessionBlock.student_id == student_id)
          .order_by(ConcessionBlock.purchase_date.desc(), ConcessionBlock.id.desc())
          .all()
     )
