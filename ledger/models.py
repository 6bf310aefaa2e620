from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import ConfigDict, Field

from core.auth import Role
from core.schema import ApiModel, Money


class ReferralStatus(str, Enum):
    PENDING = "pending"
    ELIGIBLE = "eligible"
    PAID = "paid"
    REVERSED = "reversed"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WithdrawalMethod(str, Enum):
    BANK = "bank"
    MOBILE_MONEY = "mobile_money"


class Account(ApiModel):
    user_id: UUID
    role: Role = Role.USER
    gift_credits: Money
    referral_balance: Money
    total_earnings: Money
    withdrawn_amount: Money
    referred_by: Optional[UUID] = None
    referral_code: str
    created_at: datetime
    updated_at: datetime


class Referral(ApiModel):
    id: UUID
    referrer_id: UUID
    referee_id: UUID
    order_id: Optional[UUID] = None
    amount: Money
    status: ReferralStatus
    created_at: datetime
    updated_at: datetime

    def can_credit(self) -> bool:
        return self.status == ReferralStatus.PENDING


class ApplyReferralRequest(ApiModel):
    referral_code: str = Field(..., min_length=4, max_length=32)


class CreateWithdrawalRequest(ApiModel):
    account_number: str
    account_holder_name: str
    bank_name: Optional[str] = None
    method: WithdrawalMethod = WithdrawalMethod.BANK

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "accountNumber": "1000123456789",
            "accountHolderName": "Abebe Kebede",
            "bankName": "Commercial Bank",
            "method": "bank"
        }
    })


class ProcessWithdrawalRequest(ApiModel):
    status: WithdrawalStatus
    note: Optional[str] = Field(default=None, max_length=500)


class Withdrawal(ApiModel):
    id: UUID
    user_id: UUID
    amount: Money
    fee: Money
    gross_amount: Money
    gift_credits_deducted: Money
    referral_balance_deducted: Money
    method: WithdrawalMethod
    status: WithdrawalStatus
    bank_details: dict = Field(default_factory=dict, exclude=True)
    account_last4: str
    verified_by: Optional[UUID] = None
    verification_note: Optional[str] = None
    verified_at: Optional[datetime] = None
    created_at: datetime

    def can_process(self) -> bool:
        return self.status == WithdrawalStatus.PENDING


class WithdrawalReceipt(ApiModel):
    id: UUID
    amount: Money
    fee: Money
    net_amount: Money
    status: WithdrawalStatus
    estimated_processing: str = "3-5 business days"


class WithdrawalView(ApiModel):
    id: UUID
    user_id: UUID
    amount: Money
    fee: Money
    method: WithdrawalMethod
    status: WithdrawalStatus
    account_number: str
    verification_note: Optional[str] = None
    verified_at: Optional[datetime] = None
    created_at: datetime


class SecureBankDetails(ApiModel):
    account_number: str
    account_holder_name: str
    bank_name: Optional[str] = None


class ReferralStats(ApiModel):
    balance: Money
    total_earnings: Money
    withdrawn: Money
    referral_code: str
    recent_referrals: list[Referral]


class CoinStats(ApiModel):
    coins: Money
    gift_credits: Money
    referral_balance: Money
    total_earnings: Money
    withdrawn_amount: Money


class LeaderboardEntry(ApiModel):
    user_id: UUID
    total_earnings: Money
    gift_credits: Money
    withdrawn_amount: Money
