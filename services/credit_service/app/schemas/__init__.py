from .common import Pagination
from .wallet import (
    BalanceResponse,
    FundingWalletDetails,
    RedeemWalletDetails,
    SpendRequest,
    MutationResponse,
    RedemptionResponse,
    RedemptionStatusResponse,
)
from .transaction import TransactionResponse, TransactionListResponse, TransactionSummary, TypeTotalsResponse
from .topup import (
    PackageResponse,
    PaymentSettingResponse,
    TopUpOptionsResponse,
    TopUpCreate,
    TopUpResponse,
    TopUpCreatedResponse,
    TopUpApproveRequest,
    TopUpRejectRequest,
    TopUpApprovalResponse,
    TopUpStats,
    TopUpListResponse,
    PendingCountResponse,
)
from .admin import GrantRequest, AdjustRequest, OverviewResponse
from .otp import (
    OtpSendRequest,
    OtpSendResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
    RegisterRequest,
    AccountResponse,
)

__all__ = [
    "Pagination",
    "BalanceResponse",
    "FundingWalletDetails",
    "RedeemWalletDetails",
    "SpendRequest",
    "MutationResponse",
    "RedemptionResponse",
    "RedemptionStatusResponse",
    "TransactionResponse",
    "TransactionListResponse",
    "TransactionSummary",
    "TypeTotalsResponse",
    "PackageResponse",
    "PaymentSettingResponse",
    "TopUpOptionsResponse",
    "TopUpCreate",
    "TopUpResponse",
    "TopUpCreatedResponse",
    "TopUpApproveRequest",
    "TopUpRejectRequest",
    "TopUpApprovalResponse",
    "TopUpStats",
    "TopUpListResponse",
    "PendingCountResponse",
    "GrantRequest",
    "AdjustRequest",
    "OverviewResponse",
    "OtpSendRequest",
    "OtpSendResponse",
    "OtpVerifyRequest",
    "OtpVerifyResponse",
    "RegisterRequest",
    "AccountResponse",
]
