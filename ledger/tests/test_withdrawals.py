"""
Unit Tests for withdrawals

Tests cover:
1. Fee and net amount calculation
2. Insufficient funds with balance breakdown
3. Bank details validation and encryption at rest
4. Admin approval and rejection
5. Concurrent requests on one account
"""

import threading
from decimal import Decimal
from uuid import uuid4

import pytest

from core.audit import audit_trail
from core.config import EngineConfig
from core.errors import Forbidden, InsufficientFunds, InvalidStateError, NotFoundError, ValidationError
from ledger.models import CreateWithdrawalRequest, ReferralStatus, WithdrawalStatus
from ledger.service import adjust_balances
from ledger.withdrawals import quote_withdrawal


ACCOUNT_NUMBER = "1000123456789"


@pytest.fixture
def config():
    return EngineConfig(min_withdrawal=Decimal("100"))


@pytest.fixture
def user(make_user, set_balances):
    principal = make_user()
    set_balances(principal.user_id, gift_credits="200", referral_balance="50")
    return principal


def bank_request(**overrides) -> CreateWithdrawalRequest:
    fields = {
        "account_number": ACCOUNT_NUMBER,
        "account_holder_name": "Abebe Kebede",
        "bank_name": "Commercial Bank",
    }
    fields.update(overrides)
    return CreateWithdrawalRequest(**fields)


class TestQuote:
    """Tests for withdrawal amount calculation."""

    def test_gift_credits_count_half(self):
        """200 gift credits and 50 referral balance make 150 gross."""
        quote = quote_withdrawal(Decimal("200"), Decimal("50"), Decimal("2.5"))

        assert quote.gross_amount == Decimal("150.00")
        assert quote.fee == Decimal("3.75")
        assert quote.net_amount == Decimal("146.25")
        assert quote.gift_credits_deducted == Decimal("100.00")
        assert quote.referral_balance_deducted == Decimal("50.00")

    def test_fee_rounds_half_up(self):
        quote = quote_withdrawal(Decimal("0"), Decimal("10.10"), Decimal("2.5"))

        assert quote.fee == Decimal("0.25")
        assert quote.net_amount == Decimal("9.85")


class TestCreateWithdrawal:
    """Tests for withdrawal requests."""

    def test_create_debits_balances(self, withdrawals, ledger, user):
        """Net 146.25 is paid out; half the gift credits and all referral balance are deducted."""
        receipt = withdrawals.create(user.user_id, bank_request())

        assert receipt.net_amount == Decimal("146.25")
        assert receipt.fee == Decimal("3.75")
        assert receipt.status == WithdrawalStatus.PENDING

        account = ledger.get_account(user.user_id)
        assert account.gift_credits == Decimal("100.00")
        assert account.referral_balance == Decimal("0.00")

    def test_insufficient_funds_leaves_balances(self, withdrawals, ledger, make_user, set_balances):
        """10 gift credits net under the minimum; nothing changes."""
        poor = make_user()
        set_balances(poor.user_id, gift_credits="10", referral_balance="0")

        with pytest.raises(InsufficientFunds) as exc_info:
            withdrawals.create(poor.user_id, bank_request())

        calculation = exc_info.value.details["withdrawalCalculation"]
        assert calculation["gross"] == 5.0
        assert calculation["minimum"] == 100.0
        assert exc_info.value.details["currentBalances"]["giftCredits"] == 10.0
        assert ledger.get_account(poor.user_id).gift_credits == Decimal("10.00")
        assert withdrawals.list_for_user(poor.user_id) == []

    def test_invalid_account_number(self, withdrawals, ledger, user):
        with pytest.raises(ValidationError) as exc_info:
            withdrawals.create(user.user_id, bank_request(account_number="12-34"))

        assert exc_info.value.details["field"] == "accountNumber"
        assert ledger.get_account(user.user_id).gift_credits == Decimal("200.00")

    def test_invalid_holder_name(self, withdrawals, user):
        with pytest.raises(ValidationError):
            withdrawals.create(user.user_id, bank_request(account_holder_name="Bob1"))

    def test_bank_details_encrypted_at_rest(self, withdrawals, storage, user):
        """Stored record never holds the plain account number."""
        receipt = withdrawals.create(user.user_id, bank_request())

        record = storage.get("withdrawals", receipt.id)
        assert record["bank_details"]["account_number"] != ACCOUNT_NUMBER
        assert record["account_last4"] == "6789"

    def test_user_view_is_masked(self, withdrawals, user):
        withdrawals.create(user.user_id, bank_request())

        [view] = withdrawals.list_for_user(user.user_id)
        assert view.account_number.endswith("6789")
        assert ACCOUNT_NUMBER not in view.account_number

    def test_audit_entry_has_no_bank_details(self, withdrawals, storage, user):
        withdrawals.create(user.user_id, bank_request())

        [entry] = audit_trail(storage, "WITHDRAWAL_CREATE")
        assert entry.metadata["accountLast4"] == "6789"
        assert ACCOUNT_NUMBER not in str(entry.metadata)

    def test_concurrent_requests_debit_once(self, withdrawals, ledger, storage, user):
        """Two simultaneous requests on one account cannot both spend the same balance."""
        barrier = threading.Barrier(2)
        results = []

        def request():
            barrier.wait(5)
            try:
                results.append(withdrawals.create(user.user_id, bank_request()))
            except InsufficientFunds as exc:
                results.append(exc)

        threads = [threading.Thread(target=request) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(isinstance(r, InsufficientFunds) for r in results) == 1
        account = ledger.get_account(user.user_id)
        assert account.gift_credits == Decimal("100.00")
        assert account.referral_balance == Decimal("0.00")
        assert len(storage.snapshot("withdrawals")) == 1


class TestProcessWithdrawal:
    """Tests for admin review."""

    def test_secure_details_decrypts(self, withdrawals, user, admin):
        receipt = withdrawals.create(user.user_id, bank_request())

        details = withdrawals.secure_details(receipt.id, admin)

        assert details.account_number == ACCOUNT_NUMBER
        assert details.account_holder_name == "Abebe Kebede"
        assert details.bank_name == "Commercial Bank"

    def test_secure_details_requires_admin(self, withdrawals, user):
        receipt = withdrawals.create(user.user_id, bank_request())

        with pytest.raises(Forbidden):
            withdrawals.secure_details(receipt.id, user)

    def test_rejection_restores_exact_deductions(self, withdrawals, ledger, user, admin, notifier):
        """Rejected withdrawals give back exactly what was taken."""
        receipt = withdrawals.create(user.user_id, bank_request())

        result = withdrawals.process(receipt.id, admin, WithdrawalStatus.REJECTED, "Name mismatch")

        account = ledger.get_account(user.user_id)
        assert result.status == WithdrawalStatus.REJECTED
        assert result.verification_note == "Name mismatch"
        assert account.gift_credits == Decimal("200.00")
        assert account.referral_balance == Decimal("50.00")
        assert account.withdrawn_amount == Decimal("0.00")
        assert notifier.sent[-1][0] == user.user_id

    def test_rejection_after_new_earnings_adds_back_deductions(self, withdrawals, ledger, storage, user, admin):
        """Credits earned while the withdrawal was pending are kept alongside the refund."""
        receipt = withdrawals.create(user.user_id, bank_request())
        with storage.transaction(("accounts", user.user_id)) as txn:
            ledger.credit_gift(txn, user.user_id, Decimal("30"))
            adjust_balances(txn, user.user_id, referral_balance=Decimal("5"))

        withdrawals.process(receipt.id, admin, WithdrawalStatus.REJECTED)

        account = ledger.get_account(user.user_id)
        assert account.gift_credits == Decimal("230.00")
        assert account.referral_balance == Decimal("55.00")

    def test_approval_records_withdrawn_amount(self, withdrawals, ledger, storage, user, admin):
        receipt = withdrawals.create(user.user_id, bank_request())

        withdrawals.process(receipt.id, admin, WithdrawalStatus.APPROVED)

        account = ledger.get_account(user.user_id)
        assert account.withdrawn_amount == Decimal("146.25")
        assert account.gift_credits == Decimal("100.00")
        assert [e.action for e in audit_trail(storage, "WITHDRAWAL_APPROVED")] == ["WITHDRAWAL_APPROVED"]

    def test_approval_marks_referrals_paid(self, withdrawals, ledger, make_user, set_balances, admin):
        """Eligible referral credits included in the payout become paid."""
        referrer, referee = make_user(), make_user()
        ledger.apply_referral_code(referee.user_id, ledger.get_account(referrer.user_id).referral_code)
        order = type("Funded", (), {"id": uuid4(), "owner_id": referee.user_id, "amount_paid": 10000})()
        ledger.process_commission(order)
        set_balances(referrer.user_id, gift_credits="400", referral_balance="100")

        receipt = withdrawals.create(referrer.user_id, bank_request())
        withdrawals.process(receipt.id, admin, WithdrawalStatus.APPROVED)

        assert ledger.get_referral(referee.user_id).status == ReferralStatus.PAID

    def test_cannot_process_twice(self, withdrawals, user, admin):
        receipt = withdrawals.create(user.user_id, bank_request())
        withdrawals.process(receipt.id, admin, WithdrawalStatus.APPROVED)

        with pytest.raises(InvalidStateError):
            withdrawals.process(receipt.id, admin, WithdrawalStatus.REJECTED)

    def test_pending_is_not_a_decision(self, withdrawals, user, admin):
        receipt = withdrawals.create(user.user_id, bank_request())

        with pytest.raises(ValidationError):
            withdrawals.process(receipt.id, admin, WithdrawalStatus.PENDING)

    def test_non_admin_cannot_process(self, withdrawals, user):
        receipt = withdrawals.create(user.user_id, bank_request())

        with pytest.raises(Forbidden):
            withdrawals.process(receipt.id, user, WithdrawalStatus.APPROVED)

    def test_unknown_withdrawal(self, withdrawals, admin):
        with pytest.raises(NotFoundError):
            withdrawals.process(uuid4(), admin, WithdrawalStatus.APPROVED)

    def test_pending_queue(self, withdrawals, user, admin):
        receipt = withdrawals.create(user.user_id, bank_request())

        assert [w.id for w in withdrawals.list_pending()] == [receipt.id]

        withdrawals.process(receipt.id, admin, WithdrawalStatus.APPROVED)
        assert withdrawals.list_pending() == []
