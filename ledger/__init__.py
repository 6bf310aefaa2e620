"""
Balances, referral commissions and withdrawals.

This module provides:
- Ledger accounts holding gift credits and referral balance
- Referral code application and commission on funded orders
- Withdrawals with fee calculation, encrypted bank details and admin review
- Coin stats and the earnings leaderboard
"""

from .models import (
    Account,
    Referral,
    ReferralStatus,
    Withdrawal,
    WithdrawalMethod,
    WithdrawalStatus,
)
from .service import LedgerService
from .withdrawals import WithdrawalService, quote_withdrawal

__all__ = [
    "Account",
    "Referral",
    "ReferralStatus",
    "Withdrawal",
    "WithdrawalMethod",
    "WithdrawalStatus",
    "LedgerService",
    "WithdrawalService",
    "quote_withdrawal",
]
