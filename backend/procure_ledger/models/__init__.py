from procure_ledger.models.user import User
from procure_ledger.models.vendor import Vendor
from procure_ledger.models.account import Account, AccountType, SystemAccountRole
from procure_ledger.models.purchase_order import PurchaseOrder, POLineItem, DeliveryStatus
from procure_ledger.models.goods_receipt import (
    GoodsReceipt, GRLineItem, GoodsReceiptStatus, OverallCondition, ItemCondition,
    BillClaim, BillClaimState,
)
from procure_ledger.models.transaction import (
    FinancialTransaction, BillLineItem, LedgerEntry, PaymentAllocation,
    TransactionType, TransactionStatus, PaymentStatus, GSTType,
)
from procure_ledger.models.matching import (
    ToleranceConfig, ThreeWayMatch, MatchLineItem, MatchDiscrepancy,
    MatchStatus, ApprovalStatus, LineStatus, DiscrepancyType, Severity, MatchType,
)
from procure_ledger.models.audit import AuditLog
from procure_ledger.models.task import TaskNotification, TaskType, TaskCategory
from procure_ledger.models.idempotency import IdempotencyRecord, IdempotencyStatus, DocumentSequence

__all__ = [
    "User",
    "Vendor",
    "Account", "AccountType", "SystemAccountRole",
    "PurchaseOrder", "POLineItem", "DeliveryStatus",
    "GoodsReceipt", "GRLineItem", "GoodsReceiptStatus", "OverallCondition", "ItemCondition",
    "BillClaim", "BillClaimState",
    "FinancialTransaction", "BillLineItem", "LedgerEntry", "PaymentAllocation",
    "TransactionType", "TransactionStatus", "PaymentStatus", "GSTType",
    "ToleranceConfig", "ThreeWayMatch", "MatchLineItem", "MatchDiscrepancy",
    "MatchStatus", "ApprovalStatus", "LineStatus", "DiscrepancyType", "Severity", "MatchType",
    "AuditLog",
    "TaskNotification", "TaskType", "TaskCategory",
    "IdempotencyRecord", "IdempotencyStatus", "DocumentSequence",
]
