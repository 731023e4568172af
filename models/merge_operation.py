# models/merge_operation.py
"""
MergeOperation model - persisted progress of a student merge.

A merge spans many independent commits (batched repointing, field
overrides, soft delete, portal account cleanup). current_step records the
last step that fully committed so an interrupted merge can be resumed
instead of being left half-applied.
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Enum, func
from .base import Base


class MergeStep(str, enum.Enum):
     PENDING = "pending"
     REPOINTED = "repointed"
     FIELDS_APPLIED = "fields_applied"
     DEPRECATED_DELETED = "deprecated_deleted"
     ACCOUNTS_CLEANED = "accounts_cleaned"
     COMPLETED = "completed"


MERGE_STEP_ORDER = [
     MergeStep.PENDING,
     MergeStep.REPOINTED,
     MergeStep.FIELDS_APPLIED,
     MergeStep.DEPRECATED_DELETED,
     MergeStep.ACCOUNTS_CLEANED,
     MergeStep.COMPLETED,
]


class MergeOperation(Base):
     __tablename__ = "merge_operations"

     id = Column(Integer, primary_key=True, autoincrement=True)
     primary_id = Column(String(64), nullable=False, index=True)
     deprecated_id = Column(String(64), nullable=False, index=True)
     field_selections = Column(JSON, default=dict, nullable=False)

     current_step = Column(
          Enum(MergeStep, name="merge_step", create_constraint=True,
               values_callable=lambda e: [m.value for m in e]),
          default=MergeStep.PENDING,
          nullable=False,
     )
     transactions_updated = Column(Integer, default=0, nullable=False)
     checkins_updated = Column(Integer, default=0, nullable=False)
     blocks_updated = Column(Integer, default=0, nullable=False)
     last_error = Column(Text, nullable=True)
     performed_by = Column(String(255), nullable=True)

     started_at = Column(DateTime, server_default=func.now(), nullable=False)
     completed_at = Column(DateTime, nullable=True)

     def has_reached(self, step: MergeStep) -> bool:
          return MERGE_STEP_ORDER.index(MergeStep(self.current_step)) >= MERGE_STEP_ORDER.index(step)

     def __repr__(self):
          return (
               f"<MergeOperation(id={self.id}, {self.deprecated_id} -> {self.primary_id}, "
               f"step='{MergeStep(self.current_step).value}')>"
          )
