from decimal import Decimal

import pytest

from exceptions import ExternalServiceError, ValidationError
from models import MergeOperation, MergeStep, PortalUser, Student, Transaction, TransactionType
from services import merge_service, transaction_service


@pytest.fixture
def duplicate_pair(db, make_student, package):
    """A (deprecated) owns two transactions and one block; B is the primary."""
    a = make_student("Jane", "Doe", email="jane.old@example.com", phone_number="021 555 0101")
    b = make_student("Jane", "Doe-Smith", email="jane@example.com")
    transaction_service.purchase_concession(db, a.id, package.id, "cash")
    transaction_service.create_purchase_transaction(
        db, a, TransactionType.CASUAL, amount_paid=Decimal("15"), payment_method="cash"
    )
    db.commit()
    return a, b


def test_related_document_counts(db, duplicate_pair):
    a, b = duplicate_pair
    assert merge_service.get_related_document_counts(db, a.id) == {
        "transactions": 2,
        "checkins": 0,
        "concession_blocks": 1,
    }
    assert merge_service.get_related_document_counts(db, b.id) == {
        "transactions": 0,
        "checkins": 0,
        "concession_blocks": 0,
    }


def test_merge_moves_everything_to_primary(db, duplicate_pair, auth_provider):
    a, b = duplicate_pair

    operation = merge_service.start_merge(
        db, b.id, a.id, {"email": "deprecated", "phone_number": "deprecated"}, auth_provider, performed_by="admin"
    )

    assert operation.current_step == MergeStep.COMPLETED
    assert operation.transactions_updated == 2
    assert operation.blocks_updated == 1
    assert operation.checkins_updated == 0
    assert operation.completed_at is not None
    assert operation.last_error is None

    primary = db.get(Student, b.id)
    deprecated = db.get(Student, a.id)
    assert primary.email == "jane.old@example.com"
    assert primary.phone_number == "021 555 0101"
    assert primary.last_name == "Doe-Smith"
    assert primary.merged_from == [a.id]
    assert primary.concession_balance == 5
    assert deprecated.deleted is True
    assert deprecated.merged_into == b.id
    assert deprecated.concession_balance == 0
    assert merge_service.get_related_document_counts(db, a.id) == {
        "transactions": 0,
        "checkins": 0,
        "concession_blocks": 0,
    }
    names = {t.student_name for t in db.query(Transaction).filter(Transaction.student_id == b.id)}
    assert names == {"Jane Doe-Smith"}


def test_repointing_twice_moves_nothing(db, duplicate_pair):
    a, b = duplicate_pair

    first = merge_service.repoint_student_documents(db, a.id, b.id, batch_size=1)
    second = merge_service.repoint_student_documents(db, a.id, b.id, batch_size=1)

    assert first == {"transactions": 2, "checkins": 0, "concession_blocks": 1}
    assert second == {"transactions": 0, "checkins": 0, "concession_blocks": 0}


def test_merge_rejects_same_student_and_bad_fields(db, duplicate_pair, auth_provider):
    a, b = duplicate_pair
    with pytest.raises(ValidationError):
        merge_service.start_merge(db, a.id, a.id, {}, auth_provider)
    with pytest.raises(ValidationError):
        merge_service.start_merge(db, b.id, a.id, {"concession_balance": "deprecated"}, auth_provider)
    with pytest.raises(ValidationError):
        merge_service.start_merge(db, b.id, a.id, {"email": "both"}, auth_provider)
    assert db.query(MergeOperation).count() == 0


def test_student_merged_elsewhere_cannot_be_merged_again(db, duplicate_pair, make_student, auth_provider):
    a, b = duplicate_pair
    merge_service.start_merge(db, b.id, a.id, {}, auth_provider)
    c = make_student("Janet", "Doe")
    db.commit()

    with pytest.raises(ValidationError):
        merge_service.start_merge(db, c.id, a.id, {}, auth_provider)


def test_stripe_customer_kept_when_only_deprecated_has_one(db, duplicate_pair, auth_provider):
    a, b = duplicate_pair
    a.stripe_customer_id = "cus_old"
    db.commit()

    merge_service.start_merge(db, b.id, a.id, {}, auth_provider)

    assert db.get(Student, b.id).stripe_customer_id == "cus_old"


def test_deprecated_portal_account_is_relinked(db, duplicate_pair, auth_provider):
    a, b = duplicate_pair
    uid = auth_provider.create_user(a.email, "secret1")
    db.add(PortalUser(id=uid, student_id=a.id, email=a.email))
    db.commit()

    merge_service.start_merge(db, b.id, a.id, {}, auth_provider)

    user = db.get(PortalUser, uid)
    assert user.student_id == b.id
    assert user.email == "jane@example.com"
    assert auth_provider.email_updates == [(uid, "jane@example.com")]


def test_both_portal_accounts_keep_the_primary(db, duplicate_pair, auth_provider):
    a, b = duplicate_pair
    old_uid = auth_provider.create_user(a.email, "secret1")
    new_uid = auth_provider.create_user(b.email, "secret2")
    db.add_all([
        PortalUser(id=old_uid, student_id=a.id, email=a.email),
        PortalUser(id=new_uid, student_id=b.id, email=b.email),
    ])
    db.commit()

    merge_service.start_merge(db, b.id, a.id, {"email": "deprecated"}, auth_provider)

    assert auth_provider.deleted == [old_uid]
    assert db.get(PortalUser, old_uid) is None
    primary_user = db.get(PortalUser, new_uid)
    assert primary_user.email == "jane.old@example.com"
    assert auth_provider.users[new_uid] == "jane.old@example.com"


def test_identity_already_deleted_does_not_stop_merge(db, duplicate_pair, auth_provider):
    a, b = duplicate_pair
    db.add_all([
        PortalUser(id="uid-gone", student_id=a.id, email=a.email),
        PortalUser(id=auth_provider.create_user(b.email, "secret2"), student_id=b.id, email=b.email),
    ])
    db.commit()

    operation = merge_service.start_merge(db, b.id, a.id, {}, auth_provider)

    assert operation.current_step == MergeStep.COMPLETED
    assert db.get(PortalUser, "uid-gone") is None


def test_failed_merge_resumes_from_last_step(db, duplicate_pair, auth_provider):
    a, b = duplicate_pair
    uid = auth_provider.create_user(a.email, "secret1")
    db.add(PortalUser(id=uid, student_id=a.id, email=a.email))
    db.commit()
    auth_provider.fail_updates = 1

    with pytest.raises(ExternalServiceError):
        merge_service.start_merge(db, b.id, a.id, {}, auth_provider)

    operation = db.query(MergeOperation).one()
    assert operation.current_step == MergeStep.DEPRECATED_DELETED
    assert "unreachable" in operation.last_error
    assert db.get(PortalUser, uid).student_id == a.id
    assert db.get(Student, a.id).deleted is True

    resumed = merge_service.resume_merge(db, operation.id, auth_provider)

    assert resumed.current_step == MergeStep.COMPLETED
    assert resumed.last_error is None
    assert resumed.transactions_updated == 2
    assert db.get(PortalUser, uid).student_id == b.id
    assert merge_service.resume_merge(db, operation.id, auth_provider).current_step == MergeStep.COMPLETED
