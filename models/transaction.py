# models/transaction.py
import enum
from sqlalchemy import (
     Column, Integer, String, Numeric, Boolean, DateTime, Text, JSON, ForeignKey, Enum, func,
)
from sqlalchemy.orm import relationship
from .base import Base


class TransactionType(str, enum.Enum):
     """What a transaction records."""
     CONCESSION_PURCHASE = "concession-purchase"
     CONCESSION_GIFT = "concession-gift"
     CASUAL = "casual"
     CASUAL_STUDENT = "casual-student"
     REFUND = "refund"
     PURCHASE = "purchase"


class RefundStatus(str, enum.Enum):
     """Refund progress of a transaction: none -> partial -> full."""
     NONE = "none"
     PARTIAL = "partial"
     FULL = "full"


class RefundMethod(str, enum.Enum):
     STRIPE = "stripe"
     MANUAL = "manual"


PAYMENT_METHODS = ("cash", "eftpos", "bank-transfer", "online", "stripe", "none")
ONLINE_PAYMENT_METHODS = ("online", "stripe")


def _enum(enum_cls, name):
     return Enum(enum_cls, name=name, create_constraint=True, values_callable=lambda e: [m.value for m in e])


class Transaction(Base):
     """
     Transaction model - a financial (or gift) event for a student.

     Transactions are never deleted: reversal sets reversed=True and refunds
     are recorded as separate type=refund rows pointing back through
     parent_transaction_id. The parent's refund totals are always re-derived
     from its refund_history rows.
     """
     __tablename__ = "transactions"

     id = Column(String(191), primary_key=True)
     student_id = Column(String(64), ForeignKey("students.id"), nullable=False, index=True)
     student_name = Column(String(255), nullable=True)

     type = Column(_enum(TransactionType, "transaction_type"), nullable=False, index=True)
     amount_paid = Column(Numeric(10, 2), nullable=False, default=0)
     payment_method = Column(String(50), nullable=False)
     transaction_date = Column(DateTime, nullable=False, index=True)

     # Package purchases / gifts
     package_id = Column(String(100), nullable=True)
     package_name = Column(String(255), nullable=True)
     number_of_classes = Column(Integer, nullable=True)
     concession_block_id = Column(String(191), nullable=True)

     # Casual classes (prepaid online or paid at check-in)
     class_date = Column(DateTime, nullable=True, index=True)
     original_class_date = Column(DateTime, nullable=True)
     checkin_id = Column(String(191), nullable=True, index=True)
     used_for_checkin = Column(Boolean, default=False, nullable=False)

     # Payment gateway references
     payment_intent_id = Column(String(255), nullable=True)
     stripe_customer_id = Column(String(255), nullable=True)
     receipt_url = Column(String(500), nullable=True)

     # Soft delete
     reversed = Column(Boolean, default=False, nullable=False, index=True)
     reversed_at = Column(DateTime, nullable=True)
     deleted_block_data = Column(JSON, nullable=True)

     # Refund tracking on the original transaction
     refunded = Column(_enum(RefundStatus, "refund_status"), default=RefundStatus.NONE, nullable=False)
     total_refunded = Column(Numeric(10, 2), default=0, nullable=False)
     refund_count = Column(Integer, default=0, nullable=False)
     last_refund_date = Column(DateTime, nullable=True)

     # Fields of a type=refund row
     parent_transaction_id = Column(String(191), ForeignKey("transactions.id"), nullable=True, index=True)
     amount_refunded = Column(Numeric(10, 2), nullable=True)
     original_amount = Column(Numeric(10, 2), nullable=True)
     refund_method = Column(_enum(RefundMethod, "refund_method"), nullable=True)
     stripe_refund_id = Column(String(255), nullable=True)
     reason = Column(Text, nullable=True)
     refunded_by = Column(String(255), nullable=True)
     remaining_refundable = Column(Numeric(10, 2), nullable=True)

     idempotency_key = Column(String(255), nullable=True, unique=True)
     notes = Column(Text, nullable=True)
     created_at = Column(DateTime, server_default=func.now(), nullable=False)
     created_by = Column(String(255), nullable=True)
     updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

     # Relationships
     refund_history = relationship(
          "RefundHistoryEntry",
          back_populates="transaction",
          cascade="all, delete-orphan",
          order_by="RefundHistoryEntry.id",
          foreign_keys="RefundHistoryEntry.transaction_id",
     )

     @property
     def is_refund(self) -> bool:
          return self.type == TransactionType.REFUND

     def __repr__(self):
          return (
               f"<Transaction(id={self.id}, type='{TransactionType(self.type).value}', "
               f"amount={self.amount_paid}, reversed={self.reversed})>"
          )


class RefundHistoryEntry(Base):
     """
     One refund applied to a transaction. The single source of truth for the
     parent's total_refunded / refund_count / refunded status.
     """
     __tablename__ = "refund_history_entries"

     id = Column(Integer, primary_key=True, autoincrement=True)
     transaction_id = Column(
          String(191),
          ForeignKey("transactions.id", ondelete="CASCADE"),
          nullable=False,
          index=True,
     )
     refund_transaction_id = Column(String(191), nullable=False, unique=True)
     amount = Column(Numeric(10, 2), nullable=False)
     date = Column(DateTime, nullable=False)
     refunded_by = Column(String(255), nullable=True)
     reason = Column(Text, nullable=True)
     reversed = Column(Boolean, default=False, nullable=False)
     reversed_at = Column(DateTime, nullable=True)

     transaction = relationship("Transaction", back_populates="refund_history", foreign_keys=[transaction_id])

     def __repr__(self):
          return f"<RefundHistoryEntry(refund={self.refund_transaction_id}, amount={self.amount}, reversed={self.reversed})>"
