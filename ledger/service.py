import secrets
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Protocol
from uuid import UUID, uuid4

import structlog

from core.auth import Role
from core.config import EngineConfig
from core.errors import Conflict, InternalError, InvariantViolation, NotFoundError, ValidationError
from core.schema import to_money
from core.storage import DuplicateKeyError, InMemoryStorage, Transaction

from .models import (
    Account,
    CoinStats,
    LeaderboardEntry,
    Referral,
    ReferralStats,
    ReferralStatus,
)


logger = structlog.get_logger(__name__)

ZERO = Decimal("0.00")
BALANCE_FIELDS = ("gift_credits", "referral_balance", "total_earnings", "withdrawn_amount")
REFERRAL_CODE_ATTEMPTS = 5


class FundedOrder(Protocol):
    id: UUID
    owner_id: UUID
    amount_paid: int


def account_key(user_id: UUID) -> tuple[str, UUID]:
    return ("accounts", user_id)


def adjust_balances(txn: Transaction, user_id: UUID, **deltas: Decimal) -> dict:
    """Apply signed deltas to an account inside ``txn``; no balance may go negative."""
    account = txn.get("accounts", user_id)
    if account is None:
        raise NotFoundError(f"Account {user_id} not found")
    for field, delta in deltas.items():
        if field not in BALANCE_FIELDS:
            raise KeyError(field)
        new_value = to_money(account[field] + Decimal(str(delta)))
        if new_value < ZERO:
            raise InvariantViolation(f"{field} cannot become negative", {"userId": str(user_id), "field": field})
        account[field] = new_value
    account["updated_at"] = datetime.now(timezone.utc)
    txn.put("accounts", user_id, account)
    return account


class LedgerService:
    def __init__(self, storage: Optional[InMemoryStorage] = None, config: Optional[EngineConfig] = None):
        self.storage = storage or InMemoryStorage()
        self.config = config or EngineConfig()

    def open_account(self, user_id: UUID, role: Role = Role.USER) -> Account:
        existing = self.storage.get("accounts", user_id)
        if existing:
            return Account(**existing)

        for _ in range(REFERRAL_CODE_ATTEMPTS):
            code = self._new_referral_code()
            try:
                account, opened = self._insert_account(user_id, role, code)
            except DuplicateKeyError:
                # another account claimed the code between the lookup and the lock
                logger.warning("referral_code_collision", user_id=str(user_id))
                continue
            if opened:
                logger.info("account_opened", user_id=str(user_id), role=role.value)
            return Account(**account)
        raise InternalError("Could not allocate a referral code")

    def _insert_account(self, user_id: UUID, role: Role, code: str) -> tuple[dict, bool]:
        with self.storage.transaction(account_key(user_id), ("referral_code_index", code)) as txn:
            current = txn.get("accounts", user_id)
            if current:
                return current, False
            now = datetime.now(timezone.utc)
            account = {
                "user_id": user_id,
                "role": role,
                "gift_credits": ZERO,
                "referral_balance": ZERO,
                "total_earnings": ZERO,
                "withdrawn_amount": ZERO,
                "referred_by": None,
                "referral_code": code,
                "created_at": now,
                "updated_at": now,
            }
            txn.insert("referral_code_index", code, user_id)
            txn.insert("accounts", user_id, account)
        return account, True

    def get_account(self, user_id: UUID) -> Account:
        account = self.storage.get("accounts", user_id)
        if not account:
            raise NotFoundError(f"Account {user_id} not found")
        return Account(**account)

    def credit_gift(self, txn: Transaction, user_id: UUID, amount: Optional[Decimal] = None) -> Account:
        """Credit the subscription reward inside the caller's transaction."""
        reward = to_money(self.config.gift_reward if amount is None else amount)
        account = adjust_balances(txn, user_id, gift_credits=reward, total_earnings=reward)
        return Account(**account)

    def apply_referral_code(self, user_id: UUID, referral_code: str) -> Referral:
        code = referral_code.strip().upper()
        referrer_id = self.storage.get("referral_code_index", code)
        if referrer_id is None:
            raise ValidationError("Invalid referral code")
        if referrer_id == user_id:
            raise ValidationError("Cannot refer yourself")

        with self.storage.transaction(account_key(user_id)) as txn:
            account = txn.get("accounts", user_id)
            if account is None:
                raise NotFoundError(f"Account {user_id} not found")
            if account["referred_by"] is not None or txn.exists("referral_index", user_id):
                raise Conflict("Referral code already applied")

            now = datetime.now(timezone.utc)
            referral = {
                "id": uuid4(),
                "referrer_id": referrer_id,
                "referee_id": user_id,
                "order_id": None,
                "amount": ZERO,
                "status": ReferralStatus.PENDING,
                "created_at": now,
                "updated_at": now,
            }
            account["referred_by"] = referrer_id
            account["updated_at"] = now
            txn.put("accounts", user_id, account)
            txn.insert("referrals", referral["id"], referral)
            txn.insert("referral_index", user_id, referral["id"])

        logger.info("referral_applied", referrer_id=str(referrer_id), referee_id=str(user_id))
        return Referral(**referral)

    def process_commission(self, order: FundedOrder) -> Optional[Referral]:
        owner = self.storage.get("accounts", order.owner_id)
        if not owner or owner["referred_by"] is None:
            return None

        amount_paid = Decimal(str(order.amount_paid))
        if amount_paid < self.config.min_order_amount:
            logger.info("commission_skipped_below_minimum", order_id=str(order.id), amount_paid=str(amount_paid))
            return None

        referrer_id = owner["referred_by"]
        with self.storage.transaction(account_key(order.owner_id), account_key(referrer_id)) as txn:
            referral_id = txn.get("referral_index", order.owner_id)
            referral = txn.get("referrals", referral_id) if referral_id else None

            if referral and referral["order_id"] == order.id:
                logger.info("commission_already_processed", order_id=str(order.id), referral_id=str(referral_id))
                return Referral(**referral)
            if referral and not Referral(**referral).can_credit():
                logger.info(
                    "commission_not_applicable",
                    order_id=str(order.id),
                    referral_id=str(referral_id),
                    status=referral["status"].value,
                )
                return None

            commission = to_money(amount_paid * self.config.commission_rate)
            now = datetime.now(timezone.utc)
            if referral is None:
                referral = {
                    "id": uuid4(),
                    "referrer_id": referrer_id,
                    "referee_id": order.owner_id,
                    "created_at": now,
                }
                txn.insert("referral_index", order.owner_id, referral["id"])
            referral.update({
                "order_id": order.id,
                "amount": commission,
                "status": ReferralStatus.ELIGIBLE,
                "updated_at": now,
            })
            txn.put("referrals", referral["id"], referral)
            adjust_balances(txn, referrer_id, referral_balance=commission, total_earnings=commission)

        logger.info(
            "commission_credited",
            order_id=str(order.id),
            referrer_id=str(referrer_id),
            amount=str(commission),
        )
        return Referral(**referral)

    def get_referral(self, referee_id: UUID) -> Optional[Referral]:
        referral_id = self.storage.get("referral_index", referee_id)
        if referral_id is None:
            return None
        return Referral(**self.storage.get("referrals", referral_id))

    def referral_stats(self, user_id: UUID, limit: int = 10) -> ReferralStats:
        account = self.get_account(user_id)
        referrals = [
            Referral(**r) for r in self.storage.snapshot("referrals")
            if r["referrer_id"] == user_id
        ]
        referrals.sort(key=lambda r: r.created_at, reverse=True)
        return ReferralStats(
            balance=account.referral_balance,
            total_earnings=account.total_earnings,
            withdrawn=account.withdrawn_amount,
            referral_code=account.referral_code,
            recent_referrals=referrals[:limit],
        )

    def coin_stats(self, user_id: UUID) -> CoinStats:
        account = self.get_account(user_id)
        return CoinStats(
            coins=account.gift_credits + account.referral_balance,
            gift_credits=account.gift_credits,
            referral_balance=account.referral_balance,
            total_earnings=account.total_earnings,
            withdrawn_amount=account.withdrawn_amount,
        )

    def leaderboard(self, limit: int = 20) -> list[LeaderboardEntry]:
        accounts = [a for a in self.storage.snapshot("accounts") if a["role"] == Role.USER]
        accounts.sort(key=lambda a: a["total_earnings"], reverse=True)
        return [LeaderboardEntry(**a) for a in accounts[:limit]]

    def _new_referral_code(self) -> str:
        while True:
            code = secrets.token_hex(4).upper()
            if self.storage.get("referral_code_index", code) is None:
                return code
