# services/checkin_service.py
"""
Check-in Recorder - turns a class attendance into ledger and transaction
changes.

- concession: one entry from the oldest usable block (expired blocks too)
- casual / casual-student paid on the night: a casual transaction
- casual paid online beforehand: links the prepaid transaction
- free: nothing but the check-in itself
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Union

from sqlalchemy.orm import Session

from exceptions import ConflictError, NotFoundError, ValidationError
from logging_config import get_logger
from models import CasualRate, Checkin, ConcessionBlock, EntryType, Transaction, TransactionType
from services import ledger_service, transaction_service
from utils import ids
from utils.dates import as_datetime, day_bounds, studio_today, utcnow

log = get_logger(__name__)

ONLINE_PAYMENT_LINK = "online-payment"
CASUAL_ENTRIES = (EntryType.CASUAL, EntryType.CASUAL_STUDENT)


def build_checkin_id(checkin_date: Union[date, datetime], first_name: str, last_name: str) -> str:
     return ids.checkin_id(checkin_date, first_name, last_name)


def get_checkin(db: Session, checkin_id: str) -> Checkin:
     checkin = db.get(Checkin, checkin_id)
     if checkin is None:
          raise NotFoundError(f"Check-in {checkin_id} not found")
     return checkin


def _parse_entry_type(entry_type) -> EntryType:
     try:
          return EntryType(entry_type)
     except ValueError:
          raise ValidationError(f"Unknown entry type '{entry_type}'")


def _validate_entry(
     entry_type: EntryType,
     payment_method: Optional[str],
     free_entry_reason: Optional[str],
     online_transaction_id: Optional[str]
) -> None:
     if entry_type in CASUAL_ENTRIES:
          if not payment_method:
               raise ValidationError("Please select a payment method for casual entry")
          if payment_method == ONLINE_PAYMENT_LINK:
               if not online_transaction_id:
                    raise ValidationError("Select the prepaid online transaction to link")
          else:
               ledger_service.validate_payment_method(payment_method)
     if entry_type == EntryType.FREE and not free_entry_reason:
          raise ValidationError("Please select a reason for free entry")


def _casual_price(db: Session, entry_type: EntryType, amount: Optional[Decimal]) -> Decimal:
     if amount is not None:
          amount = Decimal(str(amount))
          if amount < 0:
               raise ValidationError("Amount paid cannot be negative")
          return amount
     rate = (
          db.query(CasualRate)
          .filter(
               CasualRate.is_active == True,  # noqa: E712
               CasualRate.is_student == (entry_type == EntryType.CASUAL_STUDENT),
          )
          .order_by(CasualRate.display_order, CasualRate.id)
          .first()
     )
     if rate is None:
          raise ValidationError(f"No active {entry_type.value} rate is configured")
     return Decimal(str(rate.price))


def _consume_concession(db: Session, student_id: str) -> str:
     block = ledger_service.get_next_available_block(db, student_id, allow_expired=True)
     if block is None:
          raise ValidationError("No concession entries available for this student")
     ledger_service.use_block_entry(db, block.id)
     return block.id


def _restore_concession(db: Session, block_id: Optional[str]) -> None:
     if not block_id:
          return
     if db.get(ConcessionBlock, block_id) is None:
          log.warning("checkin_block_missing", block_id=block_id)
          return
     ledger_service.restore_block_entry(db, block_id)


def _link_prepaid(db: Session, checkin: Checkin, transaction_id: str) -> Transaction:
     transaction = transaction_service.get_transaction(db, transaction_id)
     if transaction.student_id != checkin.student_id:
          raise ValidationError("Prepaid transaction belongs to another student")
     if transaction.reversed:
          raise ValidationError("Prepaid transaction has been reversed")
     if TransactionType(transaction.type) not in transaction_service.CASUAL_TYPES:
          raise ValidationError("Only casual class transactions can be linked to a check-in")
     if transaction.used_for_checkin and transaction.checkin_id != checkin.id:
          raise ConflictError(
               "Prepaid transaction is already used by another check-in",
               details={"checkin_id": transaction.checkin_id},
          )

     transaction.used_for_checkin = True
     transaction.checkin_id = checkin.id
     if transaction.class_date is None or transaction.class_date.date() != checkin.checkin_date.date():
          if transaction.original_class_date is None:
               transaction.original_class_date = transaction.class_date
          transaction.class_date = checkin.checkin_date
     return transaction


def _unlink_prepaid(db: Session, transaction_id: Optional[str]) -> None:
     if not transaction_id:
          return
     transaction = db.get(Transaction, transaction_id)
     if transaction is None:
          return
     transaction.used_for_checkin = False
     transaction.checkin_id = None
     if transaction.original_class_date is not None:
          transaction.class_date = transaction.original_class_date
          transaction.original_class_date = None
     db.flush()


def _create_casual_transaction(db: Session, checkin: Checkin, student, amount: Decimal) -> Transaction:
     transaction = transaction_service.create_purchase_transaction(
          db,
          student,
          TransactionType(checkin.entry_type.value),
          amount_paid=amount,
          payment_method=checkin.payment_method,
          transaction_date=checkin.checkin_date,
          class_date=checkin.checkin_date,
          created_by=checkin.created_by,
          transaction_id=ids.checkin_transaction_id(student.id, checkin.id, ids.now_ms()),
     )
     transaction.checkin_id = checkin.id
     transaction.used_for_checkin = True
     return transaction


def _is_paid_in_person(entry_type: EntryType, payment_method: Optional[str]) -> bool:
     return entry_type in CASUAL_ENTRIES and payment_method not in (None, ONLINE_PAYMENT_LINK)


def _apply_payment(
     db: Session,
     checkin: Checkin,
     student,
     amount: Optional[Decimal],
     online_transaction_id: Optional[str]
) -> None:
     """Payment side of a (re)recorded check-in: casual transaction or prepaid link."""
     checkin.online_transaction_id = None
     checkin.amount_paid = Decimal("0")
     if checkin.entry_type not in CASUAL_ENTRIES:
          return
     if checkin.payment_method == ONLINE_PAYMENT_LINK:
          transaction = _link_prepaid(db, checkin, online_transaction_id)
          checkin.online_transaction_id = transaction.id
          checkin.amount_paid = transaction.amount_paid
     else:
          price = _casual_price(db, checkin.entry_type, amount)
          checkin.amount_paid = price
          _create_casual_transaction(db, checkin, student, price)


def record_checkin(
     db: Session,
     student_id: str,
     entry_type: Union[EntryType, str],
     checkin_date: Optional[Union[date, datetime]] = None,
     payment_method: Optional[str] = None,
     free_entry_reason: Optional[str] = None,
     notes: Optional[str] = None,
     online_transaction_id: Optional[str] = None,
     amount: Optional[Decimal] = None,
     created_by: Optional[str] = None,
) -> Checkin:
     """
     Record a student's attendance for a class day.

     One check-in per student per day: a live one for the same day is a
     conflict, a reversed one is reactivated in place with the new details.

     Raises:
          NotFoundError: student (or linked transaction) missing
          ValidationError: missing payment method / free reason, no
               concession entries, no casual rate
          ConflictError: already checked in that day, or the prepaid
               transaction is used elsewhere
     """
     entry_type = _parse_entry_type(entry_type)
     _validate_entry(entry_type, payment_method, free_entry_reason, online_transaction_id)
     student = ledger_service.get_student(db, student_id)
     checkin_date = as_datetime(checkin_date or studio_today())

     checkin_id = build_checkin_id(checkin_date, student.first_name, student.last_name)
     checkin = db.get(Checkin, checkin_id)
     if checkin is not None and not checkin.reversed:
          raise ConflictError(
               f"{student.full_name} is already checked in on {checkin_date.date().isoformat()}",
               details={"checkin_id": checkin_id},
          )

     reactivated = checkin is not None
     if checkin is None:
          checkin = Checkin(id=checkin_id)
          db.add(checkin)

     checkin.student_id = student.id
     checkin.student_name = student.full_name
     checkin.checkin_date = checkin_date
     checkin.entry_type = entry_type
     checkin.payment_method = payment_method if entry_type in CASUAL_ENTRIES else None
     checkin.free_entry_reason = free_entry_reason if entry_type == EntryType.FREE else None
     checkin.notes = notes or ""
     checkin.concession_block_id = None
     checkin.reversed = False
     checkin.reversed_at = None
     checkin.created_by = created_by or "unknown"
     db.flush()

     if entry_type == EntryType.CONCESSION:
          checkin.concession_block_id = _consume_concession(db, student.id)
     _apply_payment(db, checkin, student, amount, online_transaction_id)
     db.flush()

     log.info(
          "checkin_recorded",
          checkin_id=checkin.id,
          student_id=student.id,
          entry_type=entry_type.value,
          reactivated=reactivated,
     )
     return checkin


def update_checkin(
     db: Session,
     checkin_id: str,
     entry_type: Union[EntryType, str],
     payment_method: Optional[str] = None,
     free_entry_reason: Optional[str] = None,
     notes: Optional[str] = None,
     online_transaction_id: Optional[str] = None,
     amount: Optional[Decimal] = None,
) -> Checkin:
     """
     Change how an existing check-in was paid for.

     concession -> other gives the block entry back, other -> concession
     takes one; a paid entry that changes payment reverses its casual
     transaction; a changed online link releases the old prepaid class.
     """
     checkin = get_checkin(db, checkin_id)
     if checkin.reversed:
          raise ValidationError("Reversed check-ins must be recorded again, not edited")

     new_type = _parse_entry_type(entry_type)
     _validate_entry(new_type, payment_method, free_entry_reason, online_transaction_id)
     student = ledger_service.get_student(db, checkin.student_id)
     old_type = EntryType(checkin.entry_type)
     new_method = payment_method if new_type in CASUAL_ENTRIES else None

     was_paid = _is_paid_in_person(old_type, checkin.payment_method)
     will_pay = _is_paid_in_person(new_type, new_method)
     same_payment = (
          was_paid and will_pay
          and old_type == new_type
          and checkin.payment_method == new_method
          and (amount is None or Decimal(str(amount)) == Decimal(str(checkin.amount_paid)))
     )
     same_link = (
          checkin.online_transaction_id is not None
          and new_method == ONLINE_PAYMENT_LINK
          and online_transaction_id == checkin.online_transaction_id
     )

     # Release the old payment first so the new one can be linked or created
     if checkin.online_transaction_id and not same_link:
          _unlink_prepaid(db, checkin.online_transaction_id)
     if was_paid and not same_payment:
          transaction_service.reverse_checkin_transactions(db, checkin.id)

     if old_type == EntryType.CONCESSION and new_type != EntryType.CONCESSION:
          _restore_concession(db, checkin.concession_block_id)
          checkin.concession_block_id = None
     elif old_type != EntryType.CONCESSION and new_type == EntryType.CONCESSION:
          checkin.concession_block_id = _consume_concession(db, student.id)

     checkin.entry_type = new_type
     checkin.payment_method = new_method
     checkin.free_entry_reason = free_entry_reason if new_type == EntryType.FREE else None
     if notes is not None:
          checkin.notes = notes

     if not same_payment and not same_link:
          _apply_payment(db, checkin, student, amount, online_transaction_id)
     db.flush()

     log.info(
          "checkin_updated",
          checkin_id=checkin.id,
          from_type=old_type.value,
          to_type=new_type.value,
     )
     return checkin


def reverse_checkin(db: Session, checkin_id: str) -> Checkin:
     """Undo a check-in: entry back to its block, payments reversed or released."""
     checkin = get_checkin(db, checkin_id)
     if checkin.reversed:
          raise ValidationError("Check-in has already been reversed")

     if checkin.entry_type == EntryType.CONCESSION:
          _restore_concession(db, checkin.concession_block_id)
     _unlink_prepaid(db, checkin.online_transaction_id)
     reversed_count = transaction_service.reverse_checkin_transactions(
          db, checkin.id, keep_transaction_id=checkin.online_transaction_id
     )

     checkin.reversed = True
     checkin.reversed_at = utcnow()
     db.flush()
     log.info("checkin_reversed", checkin_id=checkin.id, transactions_reversed=reversed_count)
     return checkin


def checkin_from_pending_transaction(
     db: Session,
     transaction_id: str,
     created_by: Optional[str] = None
) -> Checkin:
     """Check a student in from a prepaid casual class on its class date."""
     transaction = transaction_service.get_transaction(db, transaction_id)
     if transaction.used_for_checkin:
          raise ConflictError("This prepaid class has already been used for a check-in")
     if TransactionType(transaction.type) not in transaction_service.CASUAL_TYPES:
          raise ValidationError("Only prepaid casual classes can be checked in from a transaction")

     return record_checkin(
          db,
          transaction.student_id,
          EntryType(TransactionType(transaction.type).value),
          checkin_date=transaction.class_date or studio_today(),
          payment_method=ONLINE_PAYMENT_LINK,
          online_transaction_id=transaction.id,
          created_by=created_by,
     )


def list_checkins_for_date(db: Session, day: date, include_reversed: bool = False) -> List[Checkin]:
     start, end = day_bounds(day)
     query = db.query(Checkin).filter(Checkin.checkin_date >= start, Checkin.checkin_date <= end)
     if not include_reversed:
          query = query.filter(Checkin.reversed == False)  # noqa: E712
     return query.order_by(Checkin.student_name, Checkin.id).all()


def list_student_checkins(db: Session, student_id: str) -> List[Checkin]:
     return (
          db.query(Checkin)
          .filter(Checkin.student_id == student_id)
          .order_by(Checkin.checkin_date.desc())
          .all()
     )
