from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from exceptions import ConflictError, NotFoundError, ValidationError
from models import BlockStatus, ConcessionBlock, Transaction
from services import ledger_service, transaction_service
from utils.dates import utcnow


def test_create_block_sets_full_quantity_and_balance(db, student, make_block):
    block = make_block(student, quantity=5)

    assert block.original_quantity == 5
    assert block.remaining_quantity == 5
    assert block.status == BlockStatus.ACTIVE
    assert block.student_name == "Jane Doe"
    assert student.concession_balance == 5
    assert student.expired_concessions == 0


def test_create_block_with_past_expiry_is_expired(db, student, make_block):
    block = make_block(student, quantity=3, expiry_date=utcnow() - timedelta(days=1))

    assert block.status == BlockStatus.EXPIRED
    assert student.concession_balance == 0
    assert student.expired_concessions == 3


@pytest.mark.parametrize("quantity,price,method", [
    (0, Decimal("10"), "cash"),
    (5, Decimal("-1"), "cash"),
    (5, Decimal("10"), "cheque"),
])
def test_create_block_rejects_bad_input(db, student, quantity, price, method):
    with pytest.raises(ValidationError):
        ledger_service.create_block(
            db, student.id, None, quantity=quantity, price=price, payment_method=method, expiry_date=None
        )


def test_create_block_for_missing_student(db):
    with pytest.raises(NotFoundError):
        ledger_service.create_block(
            db, "nobody", None, quantity=1, price=Decimal("0"), payment_method="cash", expiry_date=None
        )


def test_five_class_block_used_until_depleted(db, student, package):
    transaction, block = transaction_service.purchase_concession(db, student.id, package.id, "cash")
    assert transaction.amount_paid == Decimal("55.00")
    assert student.concession_balance == 5

    for expected in (4, 3, 2, 1, 0):
        block = ledger_service.use_block_entry(db, block.id)
        assert block.remaining_quantity == expected

    assert block.status == BlockStatus.DEPLETED
    db.refresh(student)
    assert student.concession_balance == 0

    with pytest.raises(ConflictError):
        ledger_service.use_block_entry(db, block.id)
    db.refresh(block)
    assert block.remaining_quantity == 0


def test_next_block_is_oldest_purchase(db, student, make_block):
    newer = make_block(student, purchase_date=datetime(2026, 2, 1, 12))
    older = make_block(student, purchase_date=datetime(2026, 1, 1, 12))

    chosen = ledger_service.get_next_available_block(db, student.id)

    assert chosen.id == older.id
    assert chosen.id != newer.id


def test_next_block_same_purchase_date_breaks_tie_on_id(db, student, make_block):
    same_day = datetime(2026, 1, 5, 12)
    first = make_block(student, purchase_date=same_day)
    second = make_block(student, purchase_date=same_day)

    chosen = ledger_service.get_next_available_block(db, student.id)

    assert chosen.id == min(first.id, second.id)


def test_active_blocks_are_used_before_expired(db, student, make_block):
    expired = make_block(student, purchase_date=datetime(2025, 1, 1, 12), expiry_date=utcnow() - timedelta(days=10))
    active = make_block(student, purchase_date=datetime(2026, 1, 1, 12))

    assert ledger_service.get_next_available_block(db, student.id).id == active.id
    assert ledger_service.get_next_available_block(db, student.id, allow_expired=True).id == active.id

    ledger_service.lock_block(db, active.id, locked_by="admin")
    assert ledger_service.get_next_available_block(db, student.id) is None
    assert ledger_service.get_next_available_block(db, student.id, allow_expired=True).id == expired.id


def test_locked_block_is_skipped_and_not_counted(db, student, make_block):
    older = make_block(student, quantity=5, purchase_date=datetime(2026, 1, 1, 12))
    newer = make_block(student, quantity=3, purchase_date=datetime(2026, 2, 1, 12))
    assert student.concession_balance == 8

    ledger_service.lock_block(db, older.id, locked_by="admin", notes="Disputed payment")

    assert student.concession_balance == 3
    assert ledger_service.get_next_available_block(db, student.id).id == newer.id
    with pytest.raises(ConflictError):
        ledger_service.use_block_entry(db, older.id)

    unlocked = ledger_service.unlock_block(db, older.id, unlocked_by="admin")
    assert unlocked.is_locked is False
    assert unlocked.lock_notes == "Disputed payment"
    assert student.concession_balance == 8


def test_last_entry_cannot_be_used_twice(db, student, make_block):
    block = make_block(student, quantity=1)

    ledger_service.use_block_entry(db, block.id)
    with pytest.raises(ConflictError) as excinfo:
        ledger_service.use_block_entry(db, block.id)

    assert excinfo.value.details["remaining_quantity"] == 0
    db.refresh(block)
    assert block.remaining_quantity == 0
    assert block.status == BlockStatus.DEPLETED


def test_use_missing_block(db):
    with pytest.raises(NotFoundError):
        ledger_service.use_block_entry(db, "missing-block")


def test_restore_entry_brings_depleted_block_back(db, student, make_block):
    block = make_block(student, quantity=1)
    ledger_service.use_block_entry(db, block.id)

    block = ledger_service.restore_block_entry(db, block.id)

    assert block.remaining_quantity == 1
    assert block.status == BlockStatus.ACTIVE
    assert student.concession_balance == 1
    with pytest.raises(ConflictError):
        ledger_service.restore_block_entry(db, block.id)


def test_restore_entry_on_lapsed_block_returns_to_expired(db, student, make_block):
    block = make_block(student, quantity=1, expiry_date=utcnow() - timedelta(days=2))
    ledger_service.use_block_entry(db, block.id)

    block = ledger_service.restore_block_entry(db, block.id)

    assert block.status == BlockStatus.EXPIRED
    assert student.expired_concessions == 1


def test_expiry_sweep_is_idempotent(db, student, make_block):
    make_block(student, quantity=5, expiry_date=utcnow() + timedelta(days=30))
    make_block(student, quantity=2, expiry_date=utcnow() + timedelta(days=365))
    later = utcnow() + timedelta(days=31)

    assert ledger_service.mark_expired_blocks(db, now=later) == 1
    assert ledger_service.mark_expired_blocks(db, now=later) == 0

    db.refresh(student)
    assert student.concession_balance == 2
    assert student.expired_concessions == 5


def test_expiry_sweep_runs_in_batches(db, make_student, make_block):
    students = [make_student("Dancer", str(i)) for i in range(3)]
    for s in students:
        make_block(s, quantity=4, expiry_date=utcnow() + timedelta(days=1))

    expired = ledger_service.mark_expired_blocks(db, now=utcnow() + timedelta(days=2), batch_size=2)

    assert expired == 3
    statuses = {b.status for b in db.query(ConcessionBlock).all()}
    assert statuses == {BlockStatus.EXPIRED}
    for s in students:
        db.refresh(s)
        assert s.concession_balance == 0
        assert s.expired_concessions == 4


def test_lock_all_expired_blocks(db, student, make_block):
    make_block(student, quantity=2, expiry_date=utcnow() - timedelta(days=3))
    make_block(student, quantity=1, expiry_date=utcnow() - timedelta(days=1))
    make_block(student, quantity=5)

    locked = ledger_service.lock_all_expired_blocks(db, student.id, locked_by="admin")

    assert locked == 2
    assert student.expired_concessions == 0
    assert student.concession_balance == 5
    assert ledger_service.lock_all_expired_blocks(db, student.id) == 0


def test_update_block_notes(db, student, make_block):
    block = make_block(student)
    assert ledger_service.update_block_notes(db, block.id, "Paid by parent").lock_notes == "Paid by parent"
    assert ledger_service.update_block_notes(db, block.id, None).lock_notes == ""


def test_delete_unused_block_reverses_its_transaction(db, student, package):
    transaction, block = transaction_service.purchase_concession(db, student.id, package.id, "eftpos")

    ledger_service.delete_block(db, block.id)

    assert db.get(ConcessionBlock, block.id) is None
    assert db.get(Transaction, transaction.id).reversed is True
    assert student.concession_balance == 0


def test_delete_used_or_locked_block_is_refused(db, student, make_block):
    used = make_block(student)
    ledger_service.use_block_entry(db, used.id)
    with pytest.raises(ValidationError):
        ledger_service.delete_block(db, used.id)

    locked = make_block(student)
    ledger_service.lock_block(db, locked.id)
    with pytest.raises(ValidationError):
        ledger_service.delete_block(db, locked.id)


def test_student_blocks_newest_first(db, student, make_block):
    old = make_block(student, purchase_date=datetime(2025, 6, 1, 12))
    new = make_block(student, purchase_date=datetime(2026, 1, 1, 12))

    assert [b.id for b in ledger_service.get_student_blocks(db, student.id)] == [new.id, old.id]
