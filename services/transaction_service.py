# services/transaction_service.py
"""
Transaction Service - purchases, gifts, prepaid casual classes and
transaction reversal.

Transactions are append-only. Reversal is a soft delete (reversed=True);
reversing a concession purchase or gift removes its block from the ledger
and keeps a snapshot so restore_transaction can bring it back unchanged.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Tuple, Union

from sqlalchemy.orm import Session

import config
from exceptions import ConflictError, NotFoundError, ValidationError
from logging_config import get_logger
from models import (
     CasualRate,
     ConcessionBlock,
     ConcessionPackage,
     RefundStatus,
     Student,
     Transaction,
     TransactionType,
)
from models.concession_package import GIFT_PACKAGE_ID, GIFT_PACKAGE_NAME
from models.transaction import ONLINE_PAYMENT_METHODS
from services import ledger_service
from utils import ids
from utils.dates import add_months, as_datetime, day_bounds, studio_now, studio_time_on, studio_today, utcnow

log = get_logger(__name__)

CONCESSION_TYPES = (TransactionType.CONCESSION_PURCHASE, TransactionType.CONCESSION_GIFT)
CASUAL_TYPES = (TransactionType.CASUAL, TransactionType.CASUAL_STUDENT)


def get_transaction(db: Session, transaction_id: str) -> Transaction:
     transaction = db.get(Transaction, transaction_id)
     if transaction is None:
          raise NotFoundError(f"Transaction {transaction_id} not found")
     return transaction


def find_by_idempotency_key(db: Session, idempotency_key: Optional[str]) -> Optional[Transaction]:
     if not idempotency_key:
          return None
     return db.query(Transaction).filter(Transaction.idempotency_key == idempotency_key).first()


def _unique_transaction_id(db: Session, candidate: str) -> str:
     while db.get(Transaction, candidate) is not None:
          candidate = f"{candidate}-{ids.random_suffix()}"
     return candidate


def create_purchase_transaction(
     db: Session,
     student: Student,
     type: TransactionType,
     amount_paid: Decimal,
     payment_method: str,
     transaction_date: Optional[datetime] = None,
     package_id: Optional[str] = None,
     package_name: Optional[str] = None,
     number_of_classes: Optional[int] = None,
     class_date: Optional[datetime] = None,
     payment_intent_id: Optional[str] = None,
     stripe_customer_id: Optional[str] = None,
     receipt_url: Optional[str] = None,
     notes: Optional[str] = None,
     created_by: Optional[str] = None,
     idempotency_key: Optional[str] = None,
     transaction_id: Optional[str] = None,
) -> Transaction:
     """
     Append a purchase-style transaction.

     The id is {first}-{last}-{package_id or type}-{ms} unless the caller
     supplies one (gifts and check-in payments use their own formats).
     """
     ledger_service.validate_payment_method(payment_method)
     type = TransactionType(type)
     amount_paid = Decimal(str(amount_paid or 0))
     if amount_paid < 0:
          raise ValidationError("Amount paid cannot be negative")

     if transaction_id is None:
          transaction_id = ids.purchase_transaction_id(
               student.first_name, student.last_name, package_id or type.value, ids.now_ms()
          )

     transaction = Transaction(
          id=_unique_transaction_id(db, transaction_id),
          student_id=student.id,
          student_name=student.full_name,
          type=type,
          amount_paid=amount_paid,
          payment_method=payment_method,
          transaction_date=transaction_date or utcnow(),
          package_id=package_id,
          package_name=package_name,
          number_of_classes=number_of_classes,
          class_date=class_date,
          used_for_checkin=False,
          refunded=RefundStatus.NONE,
          payment_intent_id=payment_intent_id,
          stripe_customer_id=stripe_customer_id,
          receipt_url=receipt_url,
          idempotency_key=idempotency_key,
          notes=notes,
          created_by=created_by,
     )
     db.add(transaction)
     db.flush()
     log.info(
          "transaction_created",
          transaction_id=transaction.id,
          student_id=student.id,
          type=type.value,
          amount=str(amount_paid),
     )
     return transaction


# ---------------------------------------------------------------------------
# Concessions
# ---------------------------------------------------------------------------

def purchase_concession(
     db: Session,
     student_id: str,
     package_id: str,
     payment_method: str,
     purchase_date: Optional[Union[date, datetime]] = None,
     amount_paid: Optional[Decimal] = None,
     notes: Optional[str] = None,
     created_by: Optional[str] = None,
     payment_intent_id: Optional[str] = None,
     stripe_customer_id: Optional[str] = None,
     receipt_url: Optional[str] = None,
     idempotency_key: Optional[str] = None,
) -> Tuple[Transaction, ConcessionBlock]:
     """
     Sell a concession package: one transaction, one linked block.

     Expiry is the purchase date plus the package's expiry_months. Both rows
     and the balance recompute land in the caller's database transaction.
     """
     student = ledger_service.get_student(db, student_id)
     package = db.get(ConcessionPackage, package_id)
     if package is None:
          raise NotFoundError(f"Concession package {package_id} not found")
     if not package.is_active:
          raise ValidationError(f"Concession package {package.name} is not available")

     purchase_date = as_datetime(purchase_date) or utcnow()
     expiry_date = add_months(purchase_date, package.expiry_months) if package.expiry_months else None
     price = package.price if amount_paid is None else Decimal(str(amount_paid))

     transaction = create_purchase_transaction(
          db,
          student,
          TransactionType.CONCESSION_PURCHASE,
          amount_paid=price,
          payment_method=payment_method,
          transaction_date=purchase_date,
          package_id=package.id,
          package_name=package.name,
          number_of_classes=package.number_of_classes,
          payment_intent_id=payment_intent_id,
          stripe_customer_id=stripe_customer_id,
          receipt_url=receipt_url,
          notes=notes,
          created_by=created_by,
          idempotency_key=idempotency_key,
     )
     block = ledger_service.create_block(
          db,
          student.id,
          package,
          quantity=package.number_of_classes,
          price=price,
          payment_method=payment_method,
          expiry_date=expiry_date,
          purchase_date=purchase_date,
          notes=notes or "",
          transaction_id=transaction.id,
          created_by=created_by,
     )
     transaction.concession_block_id = block.id
     db.flush()

     log.info("concession_purchased", transaction_id=transaction.id, block_id=block.id, package_id=package.id)
     return transaction, block


def gift_concessions(
     db: Session,
     student_id: str,
     quantity: int,
     expiry_date: Optional[Union[date, datetime]],
     gift_date: Optional[Union[date, datetime]] = None,
     notes: str = "",
     gifted_by: Optional[str] = None,
) -> Tuple[Transaction, ConcessionBlock]:
     """Gift free classes: a zero-value concession-gift transaction plus a block."""
     if quantity is None or quantity <= 0:
          raise ValidationError("Number of gifted classes must be positive")
     if expiry_date is None:
          raise ValidationError("An expiry date is required for gifted concessions")

     student = ledger_service.get_student(db, student_id)
     gift_date = as_datetime(gift_date) or utcnow()
     expiry_date = as_datetime(expiry_date)
     if expiry_date <= gift_date:
          raise ValidationError("Expiry date must be after the gift date")

     package = ledger_service.PackageRef(GIFT_PACKAGE_ID, GIFT_PACKAGE_NAME)
     transaction = create_purchase_transaction(
          db,
          student,
          TransactionType.CONCESSION_GIFT,
          amount_paid=Decimal("0"),
          payment_method="none",
          transaction_date=gift_date,
          package_id=package.id,
          package_name=package.name,
          number_of_classes=quantity,
          notes=notes,
          created_by=gifted_by,
          transaction_id=ids.gift_transaction_id(student.first_name, student.last_name, ids.now_ms()),
     )
     block = ledger_service.create_block(
          db,
          student.id,
          package,
          quantity=quantity,
          price=Decimal("0"),
          payment_method="none",
          expiry_date=expiry_date,
          purchase_date=gift_date,
          notes=notes,
          transaction_id=transaction.id,
          created_by=gifted_by,
     )
     transaction.concession_block_id = block.id
     db.flush()

     log.info("concessions_gifted", transaction_id=transaction.id, student_id=student.id, quantity=quantity)
     return transaction, block


# ---------------------------------------------------------------------------
# Online payments
# ---------------------------------------------------------------------------

def ensure_stripe_customer(db: Session, gateway, student: Student) -> str:
     """Reuse the student's Stripe customer or create one."""
     if student.stripe_customer_id:
          return student.stripe_customer_id
     student.stripe_customer_id = gateway.create_customer(student.email, student.full_name, student.id)
     db.flush()
     return student.stripe_customer_id


def process_online_concession_purchase(
     db: Session,
     gateway,
     student_id: str,
     package_id: str,
     payment_method_id: str,
     idempotency_key: Optional[str] = None,
) -> Tuple[Transaction, Optional[ConcessionBlock]]:
     """
     Charge a card for a concession package, then record the purchase.

     A repeated call with the same idempotency_key returns the purchase
     already recorded instead of charging again.
     """
     existing = find_by_idempotency_key(db, idempotency_key)
     if existing is not None:
          log.info("online_purchase_replayed", transaction_id=existing.id)
          block = db.get(ConcessionBlock, existing.concession_block_id) if existing.concession_block_id else None
          return existing, block

     student = ledger_service.get_student(db, student_id)
     package = db.get(ConcessionPackage, package_id)
     if package is None or not package.is_active:
          raise NotFoundError(f"Concession package {package_id} not found")

     customer_id = ensure_stripe_customer(db, gateway, student)
     payment = gateway.charge(
          amount=package.price,
          customer_id=customer_id,
          payment_method_id=payment_method_id,
          description=f"{package.name} - {student.full_name}",
          idempotency_key=idempotency_key,
          metadata={"student_id": student.id, "package_id": package.id},
     )

     return purchase_concession(
          db,
          student.id,
          package.id,
          payment_method="online",
          amount_paid=package.price,
          created_by=student.id,
          payment_intent_id=payment["payment_intent_id"],
          stripe_customer_id=customer_id,
          receipt_url=payment.get("receipt_url"),
          idempotency_key=idempotency_key,
     )


def _prepaid_casual_query(db: Session, class_day: date):
     start, end = day_bounds(class_day)
     return db.query(Transaction).filter(
          Transaction.type.in_(CASUAL_TYPES),
          Transaction.payment_method.in_(ONLINE_PAYMENT_METHODS),
          Transaction.reversed == False,  # noqa: E712
          Transaction.class_date >= start,
          Transaction.class_date <= end,
     )


def process_online_casual_payment(
     db: Session,
     gateway,
     student_id: str,
     rate_id: str,
     class_date: Union[date, datetime],
     payment_method_id: str,
     idempotency_key: Optional[str] = None,
) -> Transaction:
     """
     Prepay a single casual class for a given day.

     Only one live prepaid class per student per day; the transaction stays
     used_for_checkin=False until the student is checked in.
     """
     existing = find_by_idempotency_key(db, idempotency_key)
     if existing is not None:
          return existing

     student = ledger_service.get_student(db, student_id)
     rate = db.get(CasualRate, rate_id)
     if rate is None or not rate.is_active:
          raise NotFoundError(f"Casual rate {rate_id} not found")

     class_datetime = as_datetime(class_date)
     if class_datetime.date() < studio_today():
          raise ValidationError("Class date cannot be in the past")

     already_paid = (
          _prepaid_casual_query(db, class_datetime.date())
          .filter(Transaction.student_id == student.id)
          .first()
     )
     if already_paid is not None:
          raise ConflictError(
               "A class has already been prepaid for this date",
               details={"transaction_id": already_paid.id},
          )

     customer_id = ensure_stripe_customer(db, gateway, student)
     payment = gateway.charge(
          amount=rate.price,
          customer_id=customer_id,
          payment_method_id=payment_method_id,
          description=f"{rate.name} - {class_datetime.date().isoformat()} - {student.full_name}",
          idempotency_key=idempotency_key,
          metadata={"student_id": student.id, "rate_id": rate.id},
     )

     transaction = create_purchase_transaction(
          db,
          student,
          TransactionType.CASUAL_STUDENT if rate.is_student else TransactionType.CASUAL,
          amount_paid=rate.price,
          payment_method="online",
          package_id=rate.id,
          package_name=rate.name,
          class_date=class_datetime,
          payment_intent_id=payment["payment_intent_id"],
          stripe_customer_id=customer_id,
          receipt_url=payment.get("receipt_url"),
          created_by=student.id,
          idempotency_key=idempotency_key,
     )
     log.info("casual_class_prepaid", transaction_id=transaction.id, class_date=class_datetime.date().isoformat())
     return transaction


def update_class_date(db: Session, transaction_id: str, new_date: Union[date, datetime]) -> Transaction:
     """Move a prepaid casual class to another day, keeping the first date."""
     transaction = get_transaction(db, transaction_id)
     if transaction.reversed:
          raise ValidationError("Cannot change the class date of a reversed transaction")
     if transaction.used_for_checkin:
          raise ValidationError("Cannot change the class date after the class has been used for a check-in")
     if TransactionType(transaction.type) not in CASUAL_TYPES:
          raise ValidationError("Only casual class transactions have a class date")

     if transaction.class_date is not None:
          cutoff = studio_time_on(transaction.class_date.date(), config.CLASS_DATE_CUTOFF_HOUR)
          if studio_now() >= cutoff:
               raise ValidationError(
                    "Cannot change the class date after the cutoff on the class day",
                    details={"cutoff": cutoff.isoformat()},
               )

     new_datetime = as_datetime(new_date)
     if new_datetime.date() < studio_today():
          raise ValidationError("Class date cannot be in the past")

     if transaction.payment_method in ONLINE_PAYMENT_METHODS:
          clash = (
               _prepaid_casual_query(db, new_datetime.date())
               .filter(Transaction.student_id == transaction.student_id, Transaction.id != transaction.id)
               .first()
          )
          if clash is not None:
               raise ConflictError(
                    "A class has already been prepaid for this date",
                    details={"transaction_id": clash.id},
               )

     if transaction.original_class_date is None:
          transaction.original_class_date = transaction.class_date
     transaction.class_date = new_datetime
     db.flush()
     log.info("class_date_updated", transaction_id=transaction.id, class_date=transaction.class_date.isoformat())
     return transaction


# ---------------------------------------------------------------------------
# Reversal
# ---------------------------------------------------------------------------

def reverse_transaction(db: Session, transaction_id: str) -> Transaction:
     """
     Soft-delete a transaction.

     For concession purchases and gifts the linked block is snapshotted into
     deleted_block_data and removed, which takes its remaining entries off
     the student's balance.
     """
     transaction = get_transaction(db, transaction_id)
     if transaction.reversed:
          raise ValidationError("Transaction is already reversed")
     if transaction.is_refund:
          raise ValidationError("Refund transactions are reversed through refund reversal")
     if transaction.refunded != RefundStatus.NONE:
          raise ValidationError(
               "Refunded transactions cannot be reversed; reverse the refunds first",
               details={"refunded": RefundStatus(transaction.refunded).value},
          )

     if TransactionType(transaction.type) in CONCESSION_TYPES and transaction.concession_block_id:
          block = db.get(ConcessionBlock, transaction.concession_block_id)
          if block is not None:
               transaction.deleted_block_data = ledger_service.remove_block_with_snapshot(db, block)

     transaction.reversed = True
     transaction.reversed_at = utcnow()
     db.flush()
     log.info("transaction_reversed", transaction_id=transaction.id, type=TransactionType(transaction.type).value)
     return transaction


def restore_transaction(db: Session, transaction_id: str) -> Transaction:
     """Undo reverse_transaction, recreating the block under its original id."""
     transaction = get_transaction(db, transaction_id)
     if not transaction.reversed:
          raise ValidationError("Transaction is not reversed")
     if transaction.refunded != RefundStatus.NONE:
          raise ValidationError("Refunded transactions cannot be restored")

     if transaction.deleted_block_data:
          ledger_service.restore_block_from_snapshot(db, transaction.deleted_block_data)
          transaction.deleted_block_data = None

     transaction.reversed = False
     transaction.reversed_at = None
     db.flush()
     log.info("transaction_restored", transaction_id=transaction.id)
     return transaction


def reverse_checkin_transactions(db: Session, checkin_id: str, keep_transaction_id: Optional[str] = None) -> int:
     """
     Mark every live transaction linked to a check-in as reversed.
     keep_transaction_id (a prepaid class being released) is left alone.
     """
     query = db.query(Transaction).filter(
          Transaction.checkin_id == checkin_id,
          Transaction.reversed == False,  # noqa: E712
     )
     if keep_transaction_id:
          query = query.filter(Transaction.id != keep_transaction_id)
     transactions = query.all()
     now = utcnow()
     for transaction in transactions:
          transaction.reversed = True
          transaction.reversed_at = now
     db.flush()
     if transactions:
          log.info("checkin_transactions_reversed", checkin_id=checkin_id, count=len(transactions))
     return len(transactions)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def list_student_transactions(db: Session, student_id: str, include_reversed: bool = True) -> List[Transaction]:
     query = db.query(Transaction).filter(Transaction.student_id == student_id)
     if not include_reversed:
          query = query.filter(Transaction.reversed == False)  # noqa: E712
     return query.order_by(Transaction.transaction_date.desc(), Transaction.id.desc()).all()


def list_pending_online_transactions(db: Session, class_date: Union[date, datetime]) -> List[Transaction]:
     """Prepaid casual classes for a day that have not been checked in yet."""
     class_day = class_date.date() if isinstance(class_date, datetime) else class_date
     return (
          _prepaid_casual_query(db, class_day)
          .filter(Transaction.used_for_checkin == False)  # noqa: E712
          .order_by(Transaction.student_name, Transaction.id)
          .all()
     )
