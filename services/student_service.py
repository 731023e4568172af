# services/student_service.py
"""
Student Service - registration, profile edits and portal accounts.
"""
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from exceptions import ConflictError, ValidationError
from logging_config import get_logger
from models import PortalUser, Student
from services.auth_provider import AuthProvider
from services.ledger_service import get_student

log = get_logger(__name__)

EDITABLE_FIELDS = ("first_name", "last_name", "email", "phone_number", "pronouns")


class StudentService:
     """Service class for student records."""

     @staticmethod
     def create_student(
          db: Session,
          first_name: str,
          last_name: str,
          email: Optional[str] = None,
          phone_number: Optional[str] = None,
          pronouns: Optional[str] = None
     ) -> Student:
          """
          Register a student. Balances start at zero and are only ever
          written by the ledger.

          Raises:
               ValidationError: blank name
          """
          if not (first_name or "").strip() or not (last_name or "").strip():
               raise ValidationError("First and last name are required")

          student = Student(
               first_name=first_name.strip(),
               last_name=last_name.strip(),
               email=email.strip().lower() if email else None,
               phone_number=phone_number,
               pronouns=pronouns,
               concession_balance=0,
               expired_concessions=0,
               deleted=False,
               merged_from=[],
          )
          db.add(student)
          db.flush()
          log.info("student_registered", student_id=student.id)
          return student

     @staticmethod
     def update_student(db: Session, student_id: str, **changes) -> Student:
          """Edit profile fields. Ledger counters and merge links are not editable."""
          student = get_student(db, student_id)
          for field, value in changes.items():
               if field not in EDITABLE_FIELDS:
                    raise ValidationError(f"Field '{field}' cannot be edited")
               if field == "email" and value:
                    value = value.strip().lower()
               setattr(student, field, value)
          db.flush()
          return student

     @staticmethod
     def list_students(db: Session, search: Optional[str] = None, include_deleted: bool = False) -> List[Student]:
          query = db.query(Student)
          if not include_deleted:
               query = query.filter(Student.deleted == False)  # noqa: E712
          if search:
               pattern = f"%{search.strip()}%"
               query = query.filter(
                    or_(
                         Student.first_name.ilike(pattern),
                         Student.last_name.ilike(pattern),
                         Student.email.ilike(pattern),
                    )
               )
          return query.order_by(Student.first_name, Student.last_name).all()

     @staticmethod
     def create_portal_account(
          db: Session,
          auth_provider: AuthProvider,
          student_id: str,
          email: str,
          password: str,
          role: str = "student"
     ) -> PortalUser:
          """
          Create the student's login with the identity provider and link it.

          Raises:
               ConflictError: the student already has a portal account
               ExternalServiceError: identity provider rejected the sign-up
          """
          student = get_student(db, student_id)
          existing = db.query(PortalUser).filter(PortalUser.student_id == student.id).first()
          if existing is not None:
               raise ConflictError("Student already has a portal account", details={"uid": existing.id})
          if len(password or "") < 6:
               raise ValidationError("Password must be at least 6 characters")

          email = email.strip().lower()
          uid = auth_provider.create_user(email, password)
          user = PortalUser(id=uid, student_id=student.id, email=email, role=role)
          db.add(user)
          db.flush()
          log.info("portal_account_linked", uid=uid, student_id=student.id)
          return user
