# models/__init__.py
from .base import Base
from .student import Student
from .portal_user import PortalUser
from .concession_package import ConcessionPackage, CasualRate
from .concession_block import ConcessionBlock, BlockStatus
from .transaction import Transaction, RefundHistoryEntry, TransactionType, RefundStatus, RefundMethod
from .checkin import Checkin, EntryType
from .merge_operation import MergeOperation, MergeStep

__all__ = [
     "Base",
     "Student",
     "PortalUser",
     "ConcessionPackage",
     "CasualRate",
     "ConcessionBlock",
     "BlockStatus",
     "Transaction",
     "RefundHistoryEntry",
     "TransactionType",
     "RefundStatus",
     "RefundMethod",
     "Checkin",
     "EntryType",
     "MergeOperation",
     "MergeStep",
]
