import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from core.audit import record_audit
from core.auth import Principal, require_admin
from core.config import EngineConfig
from core.crypto import BankDetailsCipher
from core.errors import InsufficientFunds, InvalidStateError, NotFoundError, ValidationError
from core.notify import LogNotifier, Notifier, notify
from core.schema import to_money
from core.storage import InMemoryStorage

from .models import (
    CreateWithdrawalRequest,
    ReferralStatus,
    SecureBankDetails,
    Withdrawal,
    WithdrawalReceipt,
    WithdrawalStatus,
    WithdrawalView,
)
from .service import account_key, adjust_balances


logger = structlog.get_logger(__name__)

ACCOUNT_NUMBER_PATTERN = re.compile(r"^\d{9,18}$")
MIN_HOLDER_NAME_LETTERS = 5


@dataclass(frozen=True)
class WithdrawalQuote:
    gift_credits_deducted: Decimal
    referral_balance_deducted: Decimal
    gross_amount: Decimal
    fee: Decimal
    net_amount: Decimal


def quote_withdrawal(gift_credits: Decimal, referral_balance: Decimal, fee_percentage: Decimal) -> WithdrawalQuote:
    """Gift credits pay out at half value, referral balance in full."""
    gift_part = to_money(Decimal(gift_credits) / 2)
    referral_part = to_money(referral_balance)
    gross = gift_part + referral_part
    fee = to_money(gross * Decimal(fee_percentage) / 100)
    return WithdrawalQuote(
        gift_credits_deducted=gift_part,
        referral_balance_deducted=referral_part,
        gross_amount=gross,
        fee=fee,
        net_amount=gross - fee,
    )


def validate_bank_details(request: CreateWithdrawalRequest) -> None:
    account_number = request.account_number.strip()
    if not ACCOUNT_NUMBER_PATTERN.match(account_number):
        raise ValidationError("Invalid account number format", {
            "field": "accountNumber",
            "requirement": "9-18 numeric characters",
        })

    name = request.account_holder_name.strip()
    letters = sum(1 for c in name if c.isalpha())
    if letters < MIN_HOLDER_NAME_LETTERS or any(not (c.isalpha() or c in " -") for c in name):
        raise ValidationError("Invalid account holder name", {
            "field": "accountHolderName",
            "requirement": "Minimum 5 letters; letters, spaces and hyphens only",
        })


def mask_account_number(last4: str) -> str:
    return f"••••{last4}"


class WithdrawalService:
    def __init__(
        self,
        storage: InMemoryStorage,
        cipher: BankDetailsCipher,
        config: Optional[EngineConfig] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.storage = storage
        self.cipher = cipher
        self.config = config or EngineConfig()
        self.notifier = notifier or LogNotifier()

    def create(self, user_id: UUID, request: CreateWithdrawalRequest) -> WithdrawalReceipt:
        with self.storage.transaction(account_key(user_id)) as txn:
            account = txn.get("accounts", user_id)
            if account is None:
                raise NotFoundError(f"Account {user_id} not found")

            quote = quote_withdrawal(account["gift_credits"], account["referral_balance"], self.config.fee_percentage)
            if quote.net_amount < self.config.min_withdrawal:
                raise InsufficientFunds(
                    f"Insufficient funds for withdrawal. Net amount: {quote.net_amount}",
                    {
                        "currentBalances": {
                            "giftCredits": float(account["gift_credits"]),
                            "referralBalance": float(account["referral_balance"]),
                        },
                        "withdrawalCalculation": {
                            "gross": float(quote.gross_amount),
                            "feePercentage": float(self.config.fee_percentage),
                            "fee": float(quote.fee),
                            "net": float(quote.net_amount),
                            "minimum": float(self.config.min_withdrawal),
                        },
                    },
                )

            validate_bank_details(request)

            account_number = request.account_number.strip()
            withdrawal = {
                "id": uuid4(),
                "user_id": user_id,
                "amount": quote.net_amount,
                "fee": quote.fee,
                "gross_amount": quote.gross_amount,
                "gift_credits_deducted": quote.gift_credits_deducted,
                "referral_balance_deducted": quote.referral_balance_deducted,
                "method": request.method,
                "status": WithdrawalStatus.PENDING,
                "bank_details": {
                    "account_number": self.cipher.encrypt(account_number),
                    "account_holder_name": self.cipher.encrypt(request.account_holder_name.strip()),
                    "bank_name": self.cipher.encrypt(request.bank_name.strip()) if request.bank_name else None,
                },
                "account_last4": account_number[-4:],
                "verified_by": None,
                "verification_note": None,
                "verified_at": None,
                "created_at": datetime.now(timezone.utc),
            }
            txn.insert("withdrawals", withdrawal["id"], withdrawal)
            adjust_balances(
                txn,
                user_id,
                gift_credits=-quote.gift_credits_deducted,
                referral_balance=-quote.referral_balance_deducted,
            )
            record_audit(txn, user_id, "WITHDRAWAL_CREATE", {
                "withdrawalId": str(withdrawal["id"]),
                "amount": str(quote.net_amount),
                "fee": str(quote.fee),
                "method": request.method.value,
                "accountLast4": withdrawal["account_last4"],
            })

        logger.info(
            "withdrawal_created",
            withdrawal_id=str(withdrawal["id"]),
            user_id=str(user_id),
            net_amount=str(quote.net_amount),
            fee=str(quote.fee),
        )
        return WithdrawalReceipt(
            id=withdrawal["id"],
            amount=quote.net_amount,
            fee=quote.fee,
            net_amount=quote.net_amount,
            status=WithdrawalStatus.PENDING,
        )

    def process(
        self,
        withdrawal_id: UUID,
        admin: Principal,
        decision: WithdrawalStatus,
        note: Optional[str] = None,
    ) -> Withdrawal:
        require_admin(admin)
        if decision not in (WithdrawalStatus.APPROVED, WithdrawalStatus.REJECTED):
            raise ValidationError("Decision must be 'approved' or 'rejected'")

        current = self.storage.get("withdrawals", withdrawal_id)
        if current is None:
            raise NotFoundError(f"Withdrawal {withdrawal_id} not found")
        user_id = current["user_id"]

        with self.storage.transaction(("withdrawals", withdrawal_id), account_key(user_id)) as txn:
            withdrawal = txn.get("withdrawals", withdrawal_id)
            if not Withdrawal(**withdrawal).can_process():
                raise InvalidStateError("Withdrawal already processed", {"status": withdrawal["status"].value})

            withdrawal.update({
                "status": decision,
                "verified_by": admin.user_id,
                "verification_note": note,
                "verified_at": datetime.now(timezone.utc),
            })
            txn.put("withdrawals", withdrawal_id, withdrawal)

            if decision == WithdrawalStatus.REJECTED:
                adjust_balances(
                    txn,
                    user_id,
                    gift_credits=withdrawal["gift_credits_deducted"],
                    referral_balance=withdrawal["referral_balance_deducted"],
                )
            else:
                adjust_balances(txn, user_id, withdrawn_amount=withdrawal["amount"])
                if withdrawal["referral_balance_deducted"] > 0:
                    self._mark_referrals_paid(txn, user_id, withdrawal["created_at"])

            record_audit(txn, admin.user_id, f"WITHDRAWAL_{decision.value.upper()}", {
                "withdrawalId": str(withdrawal_id),
                "previousStatus": WithdrawalStatus.PENDING.value,
                "newStatus": decision.value,
                "note": note,
            })

        logger.info(
            "withdrawal_processed",
            withdrawal_id=str(withdrawal_id),
            admin_id=str(admin.user_id),
            decision=decision.value,
        )
        notify(
            self.notifier,
            user_id,
            f"Withdrawal {decision.value}",
            f"Your withdrawal of {withdrawal['amount']} was {decision.value}.",
        )
        return Withdrawal(**withdrawal)

    def get(self, withdrawal_id: UUID) -> Withdrawal:
        withdrawal = self.storage.get("withdrawals", withdrawal_id)
        if withdrawal is None:
            raise NotFoundError(f"Withdrawal {withdrawal_id} not found")
        return Withdrawal(**withdrawal)

    def list_for_user(self, user_id: UUID) -> list[WithdrawalView]:
        rows = [w for w in self.storage.snapshot("withdrawals") if w["user_id"] == user_id]
        return self._views(rows)

    def list_pending(self) -> list[WithdrawalView]:
        rows = [w for w in self.storage.snapshot("withdrawals") if w["status"] == WithdrawalStatus.PENDING]
        return self._views(rows)

    def secure_details(self, withdrawal_id: UUID, admin: Principal) -> SecureBankDetails:
        require_admin(admin)
        withdrawal = self.get(withdrawal_id)
        if withdrawal.status != WithdrawalStatus.PENDING:
            raise InvalidStateError("Details only available for pending withdrawals")
        details = withdrawal.bank_details
        logger.info("withdrawal_details_viewed", withdrawal_id=str(withdrawal_id), admin_id=str(admin.user_id))
        return SecureBankDetails(
            account_number=self.cipher.decrypt(details["account_number"]),
            account_holder_name=self.cipher.decrypt(details["account_holder_name"]),
            bank_name=self.cipher.decrypt(details["bank_name"]) if details.get("bank_name") else None,
        )

    def _mark_referrals_paid(self, txn, referrer_id: UUID, cutoff: datetime) -> None:
        """Referral credits that were part of the withdrawn balance become paid."""
        now = datetime.now(timezone.utc)
        for referral in self.storage.snapshot("referrals"):
            if (
                referral["referrer_id"] == referrer_id
                and referral["status"] == ReferralStatus.ELIGIBLE
                and referral["updated_at"] <= cutoff
            ):
                referral.update({"status": ReferralStatus.PAID, "updated_at": now})
                txn.put("referrals", referral["id"], referral)

    def _views(self, rows: list[dict]) -> list[WithdrawalView]:
        rows.sort(key=lambda w: w["created_at"], reverse=True)
        return [
            WithdrawalView(**w, account_number=mask_account_number(w["account_last4"]))
            for w in rows
        ]
