import pytest

from exceptions import ConflictError, ValidationError
from services.student_service import StudentService


def test_register_normalises_email(db):
    student = StudentService.create_student(db, " Mary ", "Jane", email=" Mary@Example.COM ")

    assert student.id
    assert student.first_name == "Mary"
    assert student.email == "mary@example.com"
    assert student.concession_balance == 0
    assert student.merged_from == []


def test_register_requires_names(db):
    with pytest.raises(ValidationError):
        StudentService.create_student(db, "", "Doe")


def test_balances_are_not_editable(db, student):
    StudentService.update_student(db, student.id, pronouns="she/her", email="JD@example.com")
    assert student.pronouns == "she/her"
    assert student.email == "jd@example.com"

    with pytest.raises(ValidationError):
        StudentService.update_student(db, student.id, concession_balance=10)


def test_search_hides_merged_students(db, make_student):
    kept = make_student("Amy", "Adams", email="amy@example.com")
    gone = make_student("Amy", "Archer")
    gone.deleted = True
    db.flush()

    assert [s.id for s in StudentService.list_students(db, search="amy")] == [kept.id]
    assert len(StudentService.list_students(db, search="amy", include_deleted=True)) == 2


def test_one_portal_account_per_student(db, student, auth_provider):
    user = StudentService.create_portal_account(db, auth_provider, student.id, "Jane@Example.com", "secret1")

    assert user.student_id == student.id
    assert auth_provider.users[user.id] == "jane@example.com"
    with pytest.raises(ConflictError):
        StudentService.create_portal_account(db, auth_provider, student.id, "jane@example.com", "secret1")


def test_portal_password_too_short(db, student, auth_provider):
    with pytest.raises(ValidationError):
        StudentService.create_portal_account(db, auth_provider, student.id, "jane@example.com", "123")
    assert auth_provider.users == {}
