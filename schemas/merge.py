# schemas/merge.py
"""
Pydantic schemas for the student merge tool.
"""
from datetime import datetime
from typing import Dict, Literal, Optional
from pydantic import BaseModel, Field, ConfigDict

from models.merge_operation import MergeStep


class MergePreviewResponse(BaseModel):
     """Document counts shown before a merge is confirmed."""
     primary_id: str
     deprecated_id: str
     primary_counts: Dict[str, int]
     deprecated_counts: Dict[str, int]


class MergeRequest(BaseModel):
     """Schema for merging a duplicate student into a primary one."""
     primary_id: str
     deprecated_id: str
     field_selections: Dict[str, Literal["primary", "deprecated"]] = Field(
          default_factory=dict,
          description="Which record each of email, first_name, last_name, phone_number, pronouns, stripe_customer_id comes from",
     )

     model_config = ConfigDict(
          json_schema_extra={
               "example": {
                    "primary_id": "4f7c0c8f0b3e4d8c9a1b2c3d4e5f6a7b",
                    "deprecated_id": "9a8b7c6d5e4f3a2b1c0d9e8f7a6b5c4d",
                    "field_selections": {"email": "deprecated", "phone_number": "primary"}
               }
          }
     )


class MergeOperationResponse(BaseModel):
     """Schema for merge progress."""
     id: int
     primary_id: str
     deprecated_id: str
     field_selections: Dict[str, str]
     current_step: MergeStep
     transactions_updated: int
     checkins_updated: int
     blocks_updated: int
     last_error: Optional[str] = None
     performed_by: Optional[str] = None
     started_at: Optional[datetime] = None
     completed_at: Optional[datetime] = None

     model_config = ConfigDict(from_attributes=True)
