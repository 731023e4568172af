# models/concession_block.py
import enum
from sqlalchemy import (
     Column, Integer, String, Numeric, Boolean, DateTime, Text, ForeignKey,
     CheckConstraint, Enum, func,
)
from .base import Base


class BlockStatus(str, enum.Enum):
     """Lifecycle of a concession block."""
     ACTIVE = "active"
     EXPIRED = "expired"
     DEPLETED = "depleted"


class ConcessionBlock(Base):
     """
     ConcessionBlock model - a purchased or gifted grant of class entries.

     remaining_quantity only moves through conditional UPDATEs in the ledger
     service, so it stays within 0..original_quantity under concurrent
     check-ins.
     """
     __tablename__ = "concession_blocks"
     __table_args__ = (
          CheckConstraint(
               "remaining_quantity >= 0 AND remaining_quantity <= original_quantity",
               name="ck_concession_blocks_remaining_range",
          ),
     )

     id = Column(String(191), primary_key=True)
     student_id = Column(String(64), ForeignKey("students.id"), nullable=False, index=True)
     student_name = Column(String(255), nullable=True)

     package_id = Column(String(100), nullable=True)
     package_name = Column(String(255), nullable=True)

     original_quantity = Column(Integer, nullable=False)
     remaining_quantity = Column(Integer, nullable=False)

     purchase_date = Column(DateTime, nullable=False, index=True)
     expiry_date = Column(DateTime, nullable=True, index=True)
     status = Column(
          Enum(BlockStatus, name="block_status", create_constraint=True,
               values_callable=lambda e: [m.value for m in e]),
          default=BlockStatus.ACTIVE,
          nullable=False,
          index=True,
     )

     # Manual override: a locked block is never consumed and never counted
     is_locked = Column(Boolean, default=False, nullable=False)
     locked_at = Column(DateTime, nullable=True)
     locked_by = Column(String(255), nullable=True)
     unlocked_at = Column(DateTime, nullable=True)
     unlocked_by = Column(String(255), nullable=True)
     lock_notes = Column(Text, nullable=True)

     price = Column(Numeric(10, 2), nullable=False, default=0)
     payment_method = Column(String(50), nullable=False)
     transaction_id = Column(String(191), nullable=True, index=True)
     notes = Column(Text, nullable=True)

     created_at = Column(DateTime, server_default=func.now(), nullable=False)
     created_by = Column(String(255), nullable=True)

     @property
     def is_used(self) -> bool:
          return self.remaining_quantity < self.original_quantity

     def snapshot(self) -> dict:
          """Serializable copy of the row, used to restore a deleted block."""
          return {
               "block_id": self.id,
               "student_id": self.student_id,
               "student_name": self.student_name,
               "package_id": self.package_id,
               "package_name": self.package_name,
               "original_quantity": self.original_quantity,
               "remaining_quantity": self.remaining_quantity,
               "purchase_date": self.purchase_date.isoformat() if self.purchase_date else None,
               "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
               "status": BlockStatus(self.status).value,
               "is_locked": self.is_locked,
               "lock_notes": self.lock_notes,
               "price": str(self.price),
               "payment_method": self.payment_method,
               "transaction_id": self.transaction_id,
               "notes": self.notes,
               "created_by": self.created_by,
          }

     def __repr__(self):
          return (
               f"<ConcessionBlock(id={self.id}, remaining={self.remaining_quantity}/"
               f"{self.original_quantity}, status='{BlockStatus(self.status).value}')>"
          )
