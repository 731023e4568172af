# schemas/student.py
"""
Pydantic schemas for Student API request/response validation.
"""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict


class StudentCreate(BaseModel):
     """Schema for registering a student."""
     first_name: str = Field(..., min_length=1, max_length=100)
     last_name: str = Field(..., min_length=1, max_length=100)
     email: Optional[str] = Field(None, max_length=255)
     phone_number: Optional[str] = Field(None, max_length=50)
     pronouns: Optional[str] = Field(None, max_length=50)

     model_config = ConfigDict(
          json_schema_extra={
               "example": {
                    "first_name": "Aroha",
                    "last_name": "Ngata",
                    "email": "aroha@example.com",
                    "phone_number": "021 555 0101",
                    "pronouns": "she/her"
               }
          }
     )


class StudentUpdate(BaseModel):
     """Schema for editing a student's profile. Only sent fields change."""
     first_name: Optional[str] = Field(None, min_length=1, max_length=100)
     last_name: Optional[str] = Field(None, min_length=1, max_length=100)
     email: Optional[str] = Field(None, max_length=255)
     phone_number: Optional[str] = Field(None, max_length=50)
     pronouns: Optional[str] = Field(None, max_length=50)


class StudentResponse(BaseModel):
     """Schema for student response."""
     id: str
     first_name: str
     last_name: str
     email: Optional[str] = None
     phone_number: Optional[str] = None
     pronouns: Optional[str] = None
     stripe_customer_id: Optional[str] = None
     concession_balance: int
     expired_concessions: int
     deleted: bool
     merged_into: Optional[str] = None
     merged_from: List[str] = []
     created_at: Optional[datetime] = None

     model_config = ConfigDict(from_attributes=True)


class PortalAccountCreate(BaseModel):
     """Schema for creating a student's portal login."""
     email: str = Field(..., max_length=255)
     password: str = Field(..., min_length=6)


class PortalAccountResponse(BaseModel):
     id: str
     student_id: str
     email: str
     role: str

     model_config = ConfigDict(from_attributes=True)
