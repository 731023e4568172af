# models/student.py
import uuid

from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, func
from sqlalchemy.orm import relationship
from .base import Base


def _new_student_id() -> str:
     return uuid.uuid4().hex


class Student(Base):
     """
     Student model - identity record for a dancer.

     concession_balance and expired_concessions are derived from the student's
     concession blocks and are only ever written by the ledger recompute.
     Merged-away students are soft-deleted (deleted=True, merged_into set).
     """
     __tablename__ = "students"

     id = Column(String(64), primary_key=True, default=_new_student_id)

     # Personal info
     first_name = Column(String(100), nullable=False)
     last_name = Column(String(100), nullable=False)
     email = Column(String(255), nullable=True, index=True)
     phone_number = Column(String(50), nullable=True)
     pronouns = Column(String(50), nullable=True)
     stripe_customer_id = Column(String(255), nullable=True)

     # Derived ledger counters
     concession_balance = Column(Integer, default=0, nullable=False)
     expired_concessions = Column(Integer, default=0, nullable=False)

     # Soft delete / merge links
     deleted = Column(Boolean, default=False, nullable=False, index=True)
     deleted_at = Column(DateTime, nullable=True)
     merged_into = Column(String(64), nullable=True)
     merged_from = Column(JSON, default=list, nullable=False)

     # Timestamps
     created_at = Column(DateTime, server_default=func.now(), nullable=False)
     updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

     # Relationships
     portal_user = relationship("PortalUser", back_populates="student", uselist=False)

     @property
     def full_name(self) -> str:
          name = f"{self.first_name or ''} {self.last_name or ''}".strip()
          return name or "Unknown"

     def __repr__(self):
          return f"<Student(id={self.id}, name='{self.full_name}', balance={self.concession_balance})>"
