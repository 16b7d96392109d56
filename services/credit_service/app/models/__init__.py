from .account import Account
from .wallet import Wallet, WalletType
from .transaction import CreditTransaction, TransactionType, DEBIT_TYPES
from .catalog import CreditPackage, PaymentSetting, PaymentMethod
from .topup_request import TopUpRequest, TopUpStatus
from .otp import OtpRecord, OtpPurpose

__all__ = [
    "Account",
    "Wallet",
    "WalletType",
    "CreditTransaction",
    "TransactionType",
    "DEBIT_TYPES",
    "CreditPackage",
    "PaymentSetting",
    "PaymentMethod",
    "TopUpRequest",
    "TopUpStatus",
    "OtpRecord",
    "OtpPurpose",
]
