# schemas/checkin.py
"""
Pydantic schemas for Check-in API request/response validation.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict

from models.checkin import EntryType


class CheckinCreate(BaseModel):
     """Schema for checking a student in."""
     student_id: str
     entry_type: EntryType
     checkin_date: Optional[date] = Field(None, description="Class day, defaults to today in studio time")
     payment_method: Optional[str] = Field(None, description="cash, eftpos, bank-transfer or online-payment")
     free_entry_reason: Optional[str] = None
     online_transaction_id: Optional[str] = None
     amount: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
     notes: Optional[str] = None

     model_config = ConfigDict(
          json_schema_extra={
               "example": {
                    "student_id": "4f7c0c8f0b3e4d8c9a1b2c3d4e5f6a7b",
                    "entry_type": "concession",
                    "checkin_date": "2026-03-05"
               }
          }
     )


class CheckinUpdate(BaseModel):
     """Schema for changing how a check-in was paid for."""
     entry_type: EntryType
     payment_method: Optional[str] = None
     free_entry_reason: Optional[str] = None
     online_transaction_id: Optional[str] = None
     amount: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
     notes: Optional[str] = None


class CheckinFromPendingRequest(BaseModel):
     transaction_id: str


class CheckinResponse(BaseModel):
     """Schema for check-in response."""
     id: str
     student_id: str
     student_name: Optional[str] = None
     checkin_date: datetime
     entry_type: EntryType
     payment_method: Optional[str] = None
     free_entry_reason: Optional[str] = None
     amount_paid: Decimal
     concession_block_id: Optional[str] = None
     online_transaction_id: Optional[str] = None
     notes: Optional[str] = None
     reversed: bool
     reversed_at: Optional[datetime] = None
     created_by: Optional[str] = None

     model_config = ConfigDict(from_attributes=True)
