from .access import AccessGate, Actor, RoleCapabilityGate
from .accounts import AccountService, OpenedAccount
from .catalog import PackageCatalog
from .ledger import LedgerEngine, MutationResult, TransactionFilters
from .otp import OtpGate, OtpNotifier
from .redemption import RedemptionController
from .topups import TopUpWorkflow

__all__ = [
    "AccessGate",
    "Actor",
    "RoleCapabilityGate",
    "AccountService",
    "OpenedAccount",
    "PackageCatalog",
    "LedgerEngine",
    "MutationResult",
    "TransactionFilters",
    "OtpGate",
    "OtpNotifier",
    "RedemptionController",
    "TopUpWorkflow",
]
