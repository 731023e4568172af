# schemas/__init__.py
from .student import (
     StudentCreate,
     StudentUpdate,
     StudentResponse,
     PortalAccountCreate,
     PortalAccountResponse,
)
from .concession import (
     PackageCreate,
     PackageResponse,
     CasualRateCreate,
     CasualRateResponse,
     BlockResponse,
     BlockLockRequest,
     BlockNotesRequest,
     ConcessionPurchaseRequest,
     OnlinePurchaseRequest,
     GiftRequest,
     PurchaseResponse,
     ExpirySweepResponse,
     LockExpiredResponse,
     StudentBlocksResponse,
)
from .transaction import (
     TransactionResponse,
     RefundHistoryEntryResponse,
     CasualPaymentRequest,
     ClassDateUpdate,
     RefundEligibilityResponse,
     RefundRequest,
)
from .checkin import (
     CheckinCreate,
     CheckinUpdate,
     CheckinFromPendingRequest,
     CheckinResponse,
)
from .merge import (
     MergePreviewResponse,
     MergeRequest,
     MergeOperationResponse,
)

__all__ = [
     "StudentCreate",
     "StudentUpdate",
     "StudentResponse",
     "PortalAccountCreate",
     "PortalAccountResponse",
     "PackageCreate",
     "PackageResponse",
     "CasualRateCreate",
     "CasualRateResponse",
     "BlockResponse",
     "BlockLockRequest",
     "BlockNotesRequest",
     "ConcessionPurchaseRequest",
     "OnlinePurchaseRequest",
     "GiftRequest",
     "PurchaseResponse",
     "ExpirySweepResponse",
     "LockExpiredResponse",
     "StudentBlocksResponse",
     "TransactionResponse",
     "RefundHistoryEntryResponse",
     "CasualPaymentRequest",
     "ClassDateUpdate",
     "RefundEligibilityResponse",
     "RefundRequest",
     "CheckinCreate",
     "CheckinUpdate",
     "CheckinFromPendingRequest",
     "CheckinResponse",
     "MergePreviewResponse",
     "MergeRequest",
     "MergeOperationResponse",
]
