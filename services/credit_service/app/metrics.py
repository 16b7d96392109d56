"""Prometheus metrics for credit ledger flows."""

from __future__ import annotations

from prometheus_client import Counter

ledger_mutation_total = Counter(
    "credit_ledger_mutation_total",
    "Number of committed wallet mutations",
    ["wallet_type", "transaction_type"],
)

ledger_insufficient_balance_total = Counter(
    "credit_ledger_insufficient_balance_total",
    "Number of debits rejected because the wallet balance was too low",
    ["wallet_type"],
)

ledger_storage_failure_total = Counter(
    "credit_ledger_storage_failure_total",
    "Atomic units rolled back because of a storage error",
    ["operation"],
)

redemption_total = Counter(
    "credit_redemption_total",
    "Free credit redemption attempts grouped by outcome",
    ["outcome"],
)

topup_transition_total = Counter(
    "credit_topup_transition_total",
    "Top-up request state transitions grouped by resulting status",
    ["status"],
)

otp_issue_total = Counter(
    "credit_otp_issue_total",
    "Verification codes issued grouped by purpose and outcome",
    ["purpose", "outcome"],
)

otp_verify_total = Counter(
    "credit_otp_verify_total",
    "Verification code checks grouped by outcome",
    ["outcome"],
)

registration_total = Counter(
    "credit_registration_total",
    "Account openings grouped by outcome",
    ["outcome"],
)
