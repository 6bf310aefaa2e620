import os
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

os.environ.setdefault("ENCRYPTION_SECRET", "test-encryption-secret")
os.environ.setdefault("ENCRYPTION_SALT", "test-encryption-salt")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_JSON", "false")

from core.auth import Principal, Role
from core.config import EngineConfig
from core.crypto import BankDetailsCipher
from core.images import ImageRef
from core.storage import InMemoryStorage
from ledger.service import LedgerService
from ledger.withdrawals import WithdrawalService
from orders.service import OrderService
from orders.subscriptions import SubscriptionService
from verification import VerificationEngine


CHANNEL_LINK = "https://www.youtube.com/@TechChannel"
PROOF_IMAGE = b"\x89PNG fake screenshot bytes"


class StubExtractor:
    """OCR stand-in returning canned text."""

    def __init__(self, text: str = "TechChannel Subscribed"):
        self.text = text
        self.calls = 0

    async def extract_text(self, image: bytes) -> str:
        self.calls += 1
        return self.text


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send(self, user_id: UUID, subject: str, body: str) -> None:
        self.sent.append((user_id, subject, body))


def proof_ref(name: str = "proof") -> ImageRef:
    return ImageRef(url=f"/uploads/{name}.png", handle=f"{name}.png")


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def ledger(storage, config):
    return LedgerService(storage, config)


@pytest.fixture(scope="session")
def cipher():
    return BankDetailsCipher("test-encryption-secret", "test-encryption-salt")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def withdrawals(storage, cipher, config, notifier):
    return WithdrawalService(storage, cipher, config, notifier)


@pytest.fixture
def orders(storage, ledger, config, notifier):
    return OrderService(storage, ledger, config, notifier)


@pytest.fixture
def extractor():
    return StubExtractor()


@pytest.fixture
def subscriptions(orders, ledger, extractor, notifier):
    return SubscriptionService(orders, ledger, VerificationEngine(extractor, timeout_seconds=1), notifier)


@pytest.fixture
def admin(ledger):
    principal = Principal(user_id=uuid4(), role=Role.ADMIN)
    ledger.open_account(principal.user_id, principal.role)
    return principal


@pytest.fixture
def make_user(ledger):
    def _make() -> Principal:
        principal = Principal(user_id=uuid4(), role=Role.USER)
        ledger.open_account(principal.user_id, principal.role)
        return principal
    return _make


@pytest.fixture
def owner(make_user):
    return make_user()


@pytest.fixture
def set_balances(storage):
    def _set(user_id: UUID, gift_credits="0", referral_balance="0"):
        with storage.transaction(("accounts", user_id)) as txn:
            account = txn.get("accounts", user_id)
            account["gift_credits"] = Decimal(gift_credits).quantize(Decimal("0.01"))
            account["referral_balance"] = Decimal(referral_balance).quantize(Decimal("0.01"))
            txn.put("accounts", user_id, account)
    return _set


@pytest.fixture
def active_order(orders, owner, admin):
    def _create(amount_paid: int = 1000, link: str = CHANNEL_LINK, order_owner: Principal = None):
        order = orders.create(
            (order_owner or owner).user_id,
            link,
            None,
            amount_paid,
            proof_ref("funding"),
            None,
            "Grow my tech channel audience",
        )
        return orders.verify_funding(order.id, admin)
    return _create
