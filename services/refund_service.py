# services/refund_service.py
"""
Refund Service - full and partial refunds, and their reversal.

The parent transaction's refund totals are always re-derived from its
non-reversed refund history rows, never incremented in place. All database
writes of a refund happen in the caller's transaction with the parent row
locked; the Stripe refund (when there is one) is made first and keyed by an
idempotency key so a retried request cannot refund twice.
"""
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

import config
from exceptions import ExternalServiceError, NotFoundError, ValidationError, ConflictError
from logging_config import get_logger
from models import ConcessionBlock, RefundHistoryEntry, Transaction
from models.transaction import ONLINE_PAYMENT_METHODS, RefundMethod, RefundStatus, TransactionType
from services import ledger_service
from utils import ids
from utils.dates import studio_today, utcnow

log = get_logger(__name__)

SYSTEM_REFUND_LOCK = "system-refund"
ZERO = Decimal("0")


def check_refund_eligibility(transaction: Transaction) -> Tuple[bool, Optional[str]]:
     """
     Whether a transaction can be refunded, and why not when it can't.

     Returns:
          (can_refund, reason)
     """
     if transaction.reversed:
          return False, "Cannot refund reversed transactions"
     if transaction.refunded == RefundStatus.FULL:
          return False, "Transaction has already been fully refunded"
     if transaction.type == TransactionType.CONCESSION_GIFT:
          return False, "Concession gifts cannot be refunded (non-financial transaction)"
     if transaction.type == TransactionType.REFUND:
          return False, "Refund transactions cannot be refunded"
     return True, None


def derive_refund_status(total_refunded: Decimal, original_amount: Decimal) -> RefundStatus:
     total_refunded = Decimal(str(total_refunded or 0))
     original_amount = Decimal(str(original_amount or 0))
     if total_refunded <= ZERO:
          return RefundStatus.NONE
     if total_refunded >= original_amount - config.REFUND_EPSILON:
          return RefundStatus.FULL
     return RefundStatus.PARTIAL


def _recompute_refund_totals(parent: Transaction) -> None:
     live = [entry for entry in parent.refund_history if not entry.reversed]
     total = sum((Decimal(str(entry.amount)) for entry in live), ZERO)
     parent.total_refunded = total
     parent.refund_count = len(live)
     parent.refunded = derive_refund_status(total, parent.amount_paid)
     parent.last_refund_date = max((entry.date for entry in live), default=None)


def _lock_parent(db: Session, transaction_id: str) -> Transaction:
     parent = (
          db.query(Transaction)
          .filter(Transaction.id == transaction_id)
          .with_for_update()
          .populate_existing()
          .first()
     )
     if parent is None:
          raise NotFoundError(f"Transaction {transaction_id} not found")
     return parent


def _handle_concession_block(db: Session, parent: Transaction, amount: Decimal, reason: Optional[str]) -> None:
     """
     A refunded concession purchase gives up its block: a used block is
     locked with a note, an unused one is removed (snapshot kept on the
     parent for reversal).
     """
     block = None
     if parent.concession_block_id:
          block = db.get(ConcessionBlock, parent.concession_block_id)
     if block is None:
          block = db.query(ConcessionBlock).filter(ConcessionBlock.transaction_id == parent.id).first()
     if block is None:
          log.info("refund_no_block_found", transaction_id=parent.id)
          return

     if block.is_used:
          note = f"Refund of ${amount:.2f} issued on {studio_today().strftime('%d/%m/%Y')}. Original transaction refunded."
          if reason:
               note = f"{note} Reason: {reason}"
          ledger_service.lock_block(db, block.id, locked_by=SYSTEM_REFUND_LOCK, notes=note)
     else:
          parent.deleted_block_data = ledger_service.remove_block_with_snapshot(db, block)


def _undo_concession_block(db: Session, parent: Transaction) -> None:
     if parent.reversed:
          log.info("refund_block_undo_skipped", transaction_id=parent.id, reason="parent_reversed")
          return
     if parent.deleted_block_data:
          ledger_service.restore_block_from_snapshot(db, parent.deleted_block_data)
          parent.deleted_block_data = None
          return

     block_id = parent.concession_block_id
     block = db.get(ConcessionBlock, block_id) if block_id else None
     if block is not None and block.is_locked and block.locked_by == SYSTEM_REFUND_LOCK:
          ledger_service.unlock_block(db, block.id, unlocked_by=SYSTEM_REFUND_LOCK, notes="")


def perform_refund(
     db: Session,
     transaction_id: str,
     amount: Decimal,
     payment_method: Optional[str],
     reason: Optional[str],
     refunded_by: Optional[str],
     is_full_refund: bool = False,
     gateway=None,
     idempotency_key: Optional[str] = None,
) -> Transaction:
     """
     Refund part or all of a transaction.

     Online payments with a payment intent are refunded through the gateway
     (refund_method=stripe); anything else is recorded as a manual refund
     paid out by payment_method.

     Returns:
          The refund transaction (type=refund)

     Raises:
          NotFoundError: transaction missing
          ValidationError: not eligible, bad amount, missing payment method
          ConflictError: idempotency key already used for another transaction
          ExternalServiceError / PaymentDeclinedError: gateway failure
     """
     if idempotency_key:
          existing = db.query(Transaction).filter(Transaction.idempotency_key == idempotency_key).first()
          if existing is not None:
               if existing.type == TransactionType.REFUND and existing.parent_transaction_id == transaction_id:
                    log.info("refund_replayed", refund_transaction_id=existing.id)
                    return existing
               raise ConflictError("Idempotency key already used for a different request")

     parent = _lock_parent(db, transaction_id)
     can_refund, why_not = check_refund_eligibility(parent)
     if not can_refund:
          raise ValidationError(why_not)

     amount = Decimal(str(amount))
     if amount <= ZERO:
          raise ValidationError("Refund amount must be greater than zero")

     original_amount = Decimal(str(parent.amount_paid or 0))
     already_refunded = Decimal(str(parent.total_refunded or 0))
     available = original_amount - already_refunded
     if amount > available + config.REFUND_EPSILON:
          raise ValidationError(
               f"Refund amount exceeds the remaining refundable amount of ${available:.2f}",
               details={"available": str(available)},
          )
     if is_full_refund and amount < available - config.REFUND_EPSILON:
          raise ValidationError(f"A full refund must cover the remaining ${available:.2f}")

     stripe_refund_id = None
     if parent.payment_method in ONLINE_PAYMENT_METHODS and parent.payment_intent_id:
          if gateway is None:
               raise ExternalServiceError("Payment gateway is not configured")
          stripe_refund_id = gateway.refund(
               parent.payment_intent_id,
               amount,
               idempotency_key=idempotency_key,
               reason=reason,
          )
          refund_method = RefundMethod.STRIPE
          payment_method = "stripe"
     else:
          if not payment_method:
               raise ValidationError("A payment method is required for manual refunds")
          ledger_service.validate_payment_method(payment_method)
          refund_method = RefundMethod.MANUAL

     now = utcnow()
     refund_id = ids.refund_transaction_id(parent.student_id, ids.now_ms())
     if db.get(Transaction, refund_id) is not None:
          refund_id = f"{refund_id}-{ids.random_suffix()}"

     refund = Transaction(
          id=refund_id,
          student_id=parent.student_id,
          student_name=parent.student_name,
          type=TransactionType.REFUND,
          amount_paid=ZERO,
          payment_method=payment_method,
          transaction_date=now,
          parent_transaction_id=parent.id,
          amount_refunded=amount,
          original_amount=original_amount,
          refund_method=refund_method,
          stripe_refund_id=stripe_refund_id,
          stripe_customer_id=parent.stripe_customer_id,
          reason=reason or "",
          refunded_by=refunded_by,
          remaining_refundable=max(available - amount, ZERO),
          idempotency_key=idempotency_key,
          created_by=refunded_by,
     )
     db.add(refund)

     parent.refund_history.append(
          RefundHistoryEntry(
               refund_transaction_id=refund.id,
               amount=amount,
               date=now,
               refunded_by=refunded_by,
               reason=reason or "",
               reversed=False,
          )
     )
     _recompute_refund_totals(parent)

     if parent.type == TransactionType.CONCESSION_PURCHASE:
          _handle_concession_block(db, parent, amount, reason)

     db.flush()
     log.info(
          "refund_processed",
          refund_transaction_id=refund.id,
          transaction_id=parent.id,
          amount=str(amount),
          refund_method=refund_method.value,
          refunded=RefundStatus(parent.refunded).value,
     )
     return refund


def reverse_refund(db: Session, refund_transaction_id: str, reversed_by: Optional[str] = None) -> Transaction:
     """
     Undo a manual refund.

     Stripe refunds moved real money and cannot be reversed here. When the
     parent drops back to no refund at all, the block handling done by the
     refund is undone too.
     """
     refund = db.get(Transaction, refund_transaction_id)
     if refund is None or refund.type != TransactionType.REFUND:
          raise NotFoundError(f"Refund transaction {refund_transaction_id} not found")
     if refund.refund_method == RefundMethod.STRIPE:
          raise ValidationError("Stripe refunds cannot be reversed")
     if refund.reversed:
          raise ValidationError("Refund has already been reversed")

     parent = _lock_parent(db, refund.parent_transaction_id)
     now = utcnow()
     refund.reversed = True
     refund.reversed_at = now

     for entry in parent.refund_history:
          if entry.refund_transaction_id == refund.id:
               entry.reversed = True
               entry.reversed_at = now
     _recompute_refund_totals(parent)

     if parent.type == TransactionType.CONCESSION_PURCHASE and parent.refunded == RefundStatus.NONE:
          _undo_concession_block(db, parent)

     db.flush()
     log.info(
          "refund_reversed",
          refund_transaction_id=refund.id,
          transaction_id=parent.id,
          reversed_by=reversed_by,
          refunded=RefundStatus(parent.refunded).value,
     )
     return refund


def get_refund_history(db: Session, transaction_id: str) -> List[RefundHistoryEntry]:
     transaction = db.get(Transaction, transaction_id)
     if transaction is None:
          raise NotFoundError(f"Transaction {transaction_id} not found")
     return list(transaction.refund_history)


def get_refund_transactions(db: Session, parent_transaction_id: str) -> List[Transaction]:
     return (
          db.query(Transaction)
          .filter(
               Transaction.type == TransactionType.REFUND,
               Transaction.parent_transaction_id == parent_transaction_id,
          )
          .order_by(Transaction.transaction_date, Transaction.id)
          .all()
     )
