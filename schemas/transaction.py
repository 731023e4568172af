# schemas/transaction.py
"""
Pydantic schemas for Transaction and Refund API request/response validation.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict

from models.transaction import RefundMethod, RefundStatus, TransactionType


class RefundHistoryEntryResponse(BaseModel):
     refund_transaction_id: str
     amount: Decimal
     date: datetime
     refunded_by: Optional[str] = None
     reason: Optional[str] = None
     reversed: bool
     reversed_at: Optional[datetime] = None

     model_config = ConfigDict(from_attributes=True)


class TransactionResponse(BaseModel):
     """Schema for transaction response."""
     id: str
     student_id: str
     student_name: Optional[str] = None
     type: TransactionType
     amount_paid: Decimal
     payment_method: str
     transaction_date: datetime

     package_id: Optional[str] = None
     package_name: Optional[str] = None
     number_of_classes: Optional[int] = None
     concession_block_id: Optional[str] = None

     class_date: Optional[datetime] = None
     original_class_date: Optional[datetime] = None
     checkin_id: Optional[str] = None
     used_for_checkin: bool = False

     payment_intent_id: Optional[str] = None
     receipt_url: Optional[str] = None

     reversed: bool
     reversed_at: Optional[datetime] = None

     refunded: RefundStatus = RefundStatus.NONE
     total_refunded: Decimal = Decimal("0")
     refund_count: int = 0
     last_refund_date: Optional[datetime] = None
     refund_history: List[RefundHistoryEntryResponse] = []

     parent_transaction_id: Optional[str] = None
     amount_refunded: Optional[Decimal] = None
     original_amount: Optional[Decimal] = None
     refund_method: Optional[RefundMethod] = None
     stripe_refund_id: Optional[str] = None
     reason: Optional[str] = None
     refunded_by: Optional[str] = None
     remaining_refundable: Optional[Decimal] = None

     notes: Optional[str] = None

     model_config = ConfigDict(from_attributes=True)


class CasualPaymentRequest(BaseModel):
     """Schema for prepaying a casual class online."""
     student_id: str
     rate_id: str
     class_date: date
     payment_method_id: str
     idempotency_key: Optional[str] = Field(None, max_length=255)

     model_config = ConfigDict(
          json_schema_extra={
               "example": {
                    "student_id": "4f7c0c8f0b3e4d8c9a1b2c3d4e5f6a7b",
                    "rate_id": "casual",
                    "class_date": "2026-03-05",
                    "payment_method_id": "pm_card_visa"
               }
          }
     )


class ClassDateUpdate(BaseModel):
     class_date: date


class RefundEligibilityResponse(BaseModel):
     transaction_id: str
     can_refund: bool
     reason: Optional[str] = None
     available: Decimal


class RefundRequest(BaseModel):
     """Schema for refunding part or all of a transaction."""
     amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
     payment_method: Optional[str] = Field(None, description="How a manual refund was paid out")
     reason: Optional[str] = None
     is_full_refund: bool = False
     idempotency_key: Optional[str] = Field(None, max_length=255)

     model_config = ConfigDict(
          json_schema_extra={
               "example": {
                    "amount": 20.00,
                    "payment_method": "bank-transfer",
                    "reason": "Injury - could not attend",
                    "is_full_refund": False
               }
          }
     )
