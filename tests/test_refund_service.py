from datetime import date, timedelta
from decimal import Decimal

import pytest

from exceptions import ConflictError, ValidationError
from models import ConcessionBlock, RefundMethod, RefundStatus, TransactionType
from services import ledger_service, refund_service, transaction_service
from services.refund_service import SYSTEM_REFUND_LOCK


@pytest.fixture
def purchase(db, student, package):
    return transaction_service.purchase_concession(db, student.id, package.id, "cash")


def test_partial_then_full_refund(db, student, purchase):
    parent, block = purchase

    first = refund_service.perform_refund(db, parent.id, Decimal("20"), "cash", "Moving away", "admin")

    assert first.type == TransactionType.REFUND
    assert first.id.startswith(f"{student.id}-refund-")
    assert first.amount_paid == Decimal("0")
    assert first.amount_refunded == Decimal("20")
    assert first.remaining_refundable == Decimal("35.00")
    assert first.refund_method == RefundMethod.MANUAL
    assert parent.refunded == RefundStatus.PARTIAL
    assert parent.total_refunded == Decimal("20")
    assert parent.refund_count == 1

    second = refund_service.perform_refund(db, parent.id, Decimal("35"), "cash", None, "admin")

    assert second.id != first.id
    assert second.remaining_refundable == Decimal("0")
    assert parent.refunded == RefundStatus.FULL
    assert parent.total_refunded == Decimal("55")
    assert parent.refund_count == 2
    assert [entry.amount for entry in refund_service.get_refund_history(db, parent.id)] == [Decimal("20"), Decimal("35")]
    assert [t.id for t in refund_service.get_refund_transactions(db, parent.id)] == [first.id, second.id]

    with pytest.raises(ValidationError):
        refund_service.perform_refund(db, parent.id, Decimal("1"), "cash", None, "admin")


def test_refund_cannot_exceed_remaining(db, purchase):
    parent, _ = purchase
    refund_service.perform_refund(db, parent.id, Decimal("50"), "cash", None, "admin")

    with pytest.raises(ValidationError) as excinfo:
        refund_service.perform_refund(db, parent.id, Decimal("10"), "cash", None, "admin")
    assert Decimal(excinfo.value.details["available"]) == Decimal("5")


def test_full_refund_must_cover_remaining(db, purchase):
    parent, _ = purchase
    with pytest.raises(ValidationError):
        refund_service.perform_refund(db, parent.id, Decimal("30"), "cash", None, "admin", is_full_refund=True)


def test_manual_refund_needs_payment_method(db, purchase):
    parent, _ = purchase
    with pytest.raises(ValidationError):
        refund_service.perform_refund(db, parent.id, Decimal("10"), None, None, "admin")
    with pytest.raises(ValidationError):
        refund_service.perform_refund(db, parent.id, Decimal("0"), "cash", None, "admin")


def test_gifts_are_not_refundable(db, student):
    gift, _ = transaction_service.gift_concessions(db, student.id, 1, expiry_date=date.today() + timedelta(days=30))
    can_refund, reason = refund_service.check_refund_eligibility(gift)
    assert can_refund is False
    assert "gift" in reason.lower()

    with pytest.raises(ValidationError):
        refund_service.perform_refund(db, gift.id, Decimal("1"), "cash", None, "admin")


def test_refund_of_unused_block_removes_it(db, student, purchase):
    parent, block = purchase
    block_id = block.id

    refund_service.perform_refund(db, parent.id, Decimal("20"), "cash", None, "admin")

    assert db.get(ConcessionBlock, block_id) is None
    assert parent.deleted_block_data["block_id"] == block_id
    assert student.concession_balance == 0


def test_refund_of_used_block_locks_it(db, student, purchase):
    parent, block = purchase
    ledger_service.use_block_entry(db, block.id)

    refund_service.perform_refund(db, parent.id, Decimal("44"), "eftpos", "Injury", "admin")

    block = db.get(ConcessionBlock, block.id)
    assert block.is_locked is True
    assert block.locked_by == SYSTEM_REFUND_LOCK
    assert "Refund of $44.00" in block.lock_notes
    assert "Reason: Injury" in block.lock_notes
    assert student.concession_balance == 0


def test_reversing_refund_restores_block_and_totals(db, student, purchase):
    parent, block = purchase
    block_id = block.id
    refund = refund_service.perform_refund(db, parent.id, Decimal("20"), "cash", None, "admin")

    reversed_refund = refund_service.reverse_refund(db, refund.id, reversed_by="admin")

    assert reversed_refund.reversed is True
    assert parent.refunded == RefundStatus.NONE
    assert parent.total_refunded == Decimal("0")
    assert parent.refund_count == 0
    assert parent.refund_history[0].reversed is True
    assert parent.deleted_block_data is None
    assert db.get(ConcessionBlock, block_id).remaining_quantity == 5
    assert student.concession_balance == 5

    with pytest.raises(ValidationError):
        refund_service.reverse_refund(db, refund.id)


def test_reversing_refund_unlocks_refund_locked_block(db, student, purchase):
    parent, block = purchase
    ledger_service.use_block_entry(db, block.id)
    refund = refund_service.perform_refund(db, parent.id, Decimal("44"), "cash", None, "admin")

    refund_service.reverse_refund(db, refund.id)

    assert db.get(ConcessionBlock, block.id).is_locked is False
    assert student.concession_balance == 4


def test_reversing_one_of_two_refunds_keeps_partial(db, purchase):
    parent, _ = purchase
    first = refund_service.perform_refund(db, parent.id, Decimal("20"), "cash", None, "admin")
    refund_service.perform_refund(db, parent.id, Decimal("35"), "cash", None, "admin")

    refund_service.reverse_refund(db, first.id)

    assert parent.refunded == RefundStatus.PARTIAL
    assert parent.total_refunded == Decimal("35")
    assert parent.refund_count == 1


def test_refund_idempotency_key_returns_same_refund(db, purchase):
    parent, _ = purchase

    first = refund_service.perform_refund(db, parent.id, Decimal("20"), "cash", None, "admin", idempotency_key="r-1")
    again = refund_service.perform_refund(db, parent.id, Decimal("20"), "cash", None, "admin", idempotency_key="r-1")

    assert again.id == first.id
    assert parent.refund_count == 1
    assert parent.total_refunded == Decimal("20")


def test_idempotency_key_reused_for_other_transaction(db, student, package, purchase):
    parent, _ = purchase
    other, _ = transaction_service.purchase_concession(db, student.id, package.id, "cash")
    refund_service.perform_refund(db, parent.id, Decimal("20"), "cash", None, "admin", idempotency_key="r-1")

    with pytest.raises(ConflictError):
        refund_service.perform_refund(db, other.id, Decimal("20"), "cash", None, "admin", idempotency_key="r-1")


def test_online_purchase_is_refunded_through_gateway(db, student, package, gateway):
    parent, _ = transaction_service.process_online_concession_purchase(
        db, gateway, student.id, package.id, "pm_card_visa", idempotency_key="buy-1"
    )

    refund = refund_service.perform_refund(
        db, parent.id, Decimal("55"), None, "Duplicate purchase", "admin", is_full_refund=True, gateway=gateway
    )

    assert refund.refund_method == RefundMethod.STRIPE
    assert refund.payment_method == "stripe"
    assert refund.stripe_refund_id == "re_1"
    assert gateway.refunds == [{"payment_intent_id": parent.payment_intent_id, "amount": Decimal("55")}]
    assert parent.refunded == RefundStatus.FULL

    with pytest.raises(ValidationError):
        refund_service.reverse_refund(db, refund.id)


def test_derive_refund_status_tolerates_rounding():
    assert refund_service.derive_refund_status(Decimal("0"), Decimal("55")) == RefundStatus.NONE
    assert refund_service.derive_refund_status(Decimal("54.995"), Decimal("55")) == RefundStatus.FULL
    assert refund_service.derive_refund_status(Decimal("54.50"), Decimal("55")) == RefundStatus.PARTIAL


def test_refunded_purchase_cannot_be_reversed(db, student, purchase):
    parent, _ = purchase
    refund = refund_service.perform_refund(db, parent.id, Decimal("55"), "cash", None, "admin", is_full_refund=True)

    with pytest.raises(ValidationError):
        transaction_service.reverse_transaction(db, parent.id)
    with pytest.raises(ValidationError):
        transaction_service.restore_transaction(db, parent.id)
    assert parent.reversed is False
    assert student.concession_balance == 0

    refund_service.reverse_refund(db, refund.id)
    assert student.concession_balance == 5
    transaction_service.reverse_transaction(db, parent.id)
    assert student.concession_balance == 0


def test_refund_reversal_leaves_reversed_purchase_without_block(db, student, purchase):
    parent, block = purchase
    block_id = block.id
    refund = refund_service.perform_refund(db, parent.id, Decimal("20"), "cash", None, "admin")
    parent.reversed = True
    db.flush()

    refund_service.reverse_refund(db, refund.id)

    assert parent.refunded == RefundStatus.NONE
    assert db.get(ConcessionBlock, block_id) is None
    assert student.concession_balance == 0


def test_reversed_purchase_with_refund_cannot_be_restored(db, student, purchase):
    parent, _ = purchase
    transaction_service.reverse_transaction(db, parent.id)
    parent.refunded = RefundStatus.FULL
    db.flush()

    with pytest.raises(ValidationError):
        transaction_service.restore_transaction(db, parent.id)
    assert student.concession_balance == 0
