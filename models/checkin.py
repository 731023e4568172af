# models/checkin.py
import enum
from sqlalchemy import Column, String, Numeric, Boolean, DateTime, Text, ForeignKey, Enum, func
from .base import Base


class EntryType(str, enum.Enum):
     """How a student paid for a class."""
     CONCESSION = "concession"
     CASUAL = "casual"
     CASUAL_STUDENT = "casual-student"
     FREE = "free"


class Checkin(Base):
     """
     Checkin model - attendance record for one student on one class day.

     The id is checkin-YYYY-MM-DD-firstname-lastname, so a second active
     check-in for the same student and day collides on the primary key.
     """
     __tablename__ = "checkins"

     id = Column(String(191), primary_key=True)
     student_id = Column(String(64), ForeignKey("students.id"), nullable=False, index=True)
     student_name = Column(String(255), nullable=True)
     checkin_date = Column(DateTime, nullable=False, index=True)

     entry_type = Column(
          Enum(EntryType, name="entry_type", create_constraint=True,
               values_callable=lambda e: [m.value for m in e]),
          nullable=False,
     )
     payment_method = Column(String(50), nullable=True)
     free_entry_reason = Column(String(255), nullable=True)
     amount_paid = Column(Numeric(10, 2), nullable=False, default=0)

     concession_block_id = Column(String(191), nullable=True)
     online_transaction_id = Column(String(191), nullable=True)
     notes = Column(Text, nullable=True)

     reversed = Column(Boolean, default=False, nullable=False)
     reversed_at = Column(DateTime, nullable=True)

     created_at = Column(DateTime, server_default=func.now(), nullable=False)
     created_by = Column(String(255), nullable=True)
     updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

     def __repr__(self):
          return f"<Checkin(id={self.id}, entry_type='{EntryType(self.entry_type).value}', reversed={self.reversed})>"
