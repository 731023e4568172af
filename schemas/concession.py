# schemas/concession.py
"""
Pydantic schemas for concession packages, casual rates and blocks.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict

from models.concession_block import BlockStatus


class PackageCreate(BaseModel):
     """Schema for adding a sellable concession package."""
     id: str = Field(..., min_length=1, max_length=100, description="Slug, e.g. 5-class")
     name: str = Field(..., min_length=1, max_length=255)
     number_of_classes: int = Field(..., gt=0)
     price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
     expiry_months: int = Field(default=6, ge=0)
     is_active: bool = True
     display_order: int = 0

     model_config = ConfigDict(
          json_schema_extra={
               "example": {
                    "id": "5-class",
                    "name": "5 Class Concession",
                    "number_of_classes": 5,
                    "price": 55.00,
                    "expiry_months": 6
               }
          }
     )


class PackageResponse(BaseModel):
     id: str
     name: str
     number_of_classes: int
     price: Decimal
     expiry_months: int
     is_active: bool
     display_order: int

     model_config = ConfigDict(from_attributes=True)


class CasualRateCreate(BaseModel):
     id: str = Field(..., min_length=1, max_length=100)
     name: str = Field(..., min_length=1, max_length=255)
     price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
     is_student: bool = False
     is_active: bool = True
     display_order: int = 0


class CasualRateResponse(BaseModel):
     id: str
     name: str
     price: Decimal
     is_student: bool
     is_active: bool
     display_order: int

     model_config = ConfigDict(from_attributes=True)


class BlockResponse(BaseModel):
     """Schema for concession block response."""
     id: str
     student_id: str
     student_name: Optional[str] = None
     package_id: Optional[str] = None
     package_name: Optional[str] = None
     original_quantity: int
     remaining_quantity: int
     purchase_date: datetime
     expiry_date: Optional[datetime] = None
     status: BlockStatus
     is_locked: bool
     locked_at: Optional[datetime] = None
     locked_by: Optional[str] = None
     lock_notes: Optional[str] = None
     price: Decimal
     payment_method: str
     transaction_id: Optional[str] = None
     notes: Optional[str] = None

     model_config = ConfigDict(from_attributes=True)


class BlockLockRequest(BaseModel):
     """Lock / unlock body. Omitted notes leave existing notes untouched."""
     notes: Optional[str] = None


class BlockNotesRequest(BaseModel):
     notes: str = ""


class ConcessionPurchaseRequest(BaseModel):
     """Schema for an admin recording an in-person package sale."""
     student_id: str
     package_id: str
     payment_method: str = Field(..., description="cash, eftpos, bank-transfer, online, stripe")
     purchase_date: Optional[date] = None
     amount_paid: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
     notes: Optional[str] = None

     model_config = ConfigDict(
          json_schema_extra={
               "example": {
                    "student_id": "4f7c0c8f0b3e4d8c9a1b2c3d4e5f6a7b",
                    "package_id": "5-class",
                    "payment_method": "eftpos",
                    "purchase_date": "2026-03-02"
               }
          }
     )


class OnlinePurchaseRequest(BaseModel):
     """Schema for a card purchase of a package."""
     student_id: str
     package_id: str
     payment_method_id: str = Field(..., description="Tokenized card from the payment form")
     idempotency_key: Optional[str] = Field(None, max_length=255)


class GiftRequest(BaseModel):
     """Schema for gifting free classes."""
     student_id: str
     quantity: int = Field(..., gt=0)
     expiry_date: date
     gift_date: Optional[date] = None
     notes: str = ""


class PurchaseResponse(BaseModel):
     transaction_id: str
     block: Optional[BlockResponse] = None
     concession_balance: int


class ExpirySweepResponse(BaseModel):
     blocks_expired: int


class LockExpiredResponse(BaseModel):
     blocks_locked: int


class StudentBlocksResponse(BaseModel):
     student_id: str
     concession_balance: int
     expired_concessions: int
     blocks: List[BlockResponse]
