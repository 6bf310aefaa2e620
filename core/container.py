from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Depends, Request

from core.auth import Principal, get_principal, require_admin, require_super_admin
from core.config import Settings
from core.crypto import BankDetailsCipher
from core.images import ImageStore, LocalImageStore
from core.notify import LogNotifier, Notifier
from core.storage import InMemoryStorage
from ledger.service import LedgerService
from ledger.withdrawals import WithdrawalService
from orders.service import OrderService
from orders.subscriptions import SubscriptionService
from verification import TesseractExtractor, TextExtractor, VerificationEngine


logger = structlog.get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    storage: InMemoryStorage
    images: ImageStore
    ledger: LedgerService
    withdrawals: WithdrawalService
    orders: OrderService
    subscriptions: SubscriptionService


def build_services(
    settings: Settings,
    extractor: Optional[TextExtractor] = None,
    images: Optional[ImageStore] = None,
    notifier: Optional[Notifier] = None,
) -> Services:
    config = settings.engine_config()
    storage = InMemoryStorage()
    notifier = notifier or LogNotifier()
    if extractor is None:
        extractor = TesseractExtractor(settings.ocr_language, settings.ocr_timeout_seconds)
        if not extractor.is_available:
            logger.warning("tesseract_not_found", language=settings.ocr_language)

    ledger = LedgerService(storage, config)
    orders = OrderService(storage, ledger, config, notifier)
    return Services(
        settings=settings,
        storage=storage,
        images=images or LocalImageStore(settings.upload_dir, settings.upload_base_url),
        ledger=ledger,
        withdrawals=WithdrawalService(
            storage,
            BankDetailsCipher(settings.encryption_secret, settings.encryption_salt),
            config,
            notifier,
        ),
        orders=orders,
        subscriptions=SubscriptionService(
            orders,
            ledger,
            VerificationEngine(extractor, config.ocr_timeout_seconds),
            notifier,
        ),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_current_user(
    principal: Principal = Depends(get_principal),
    services: Services = Depends(get_services),
) -> Principal:
    """Resolve the caller and make sure they hold a ledger account."""
    services.ledger.open_account(principal.user_id, principal.role)
    return principal


def get_current_admin(principal: Principal = Depends(get_current_user)) -> Principal:
    return require_admin(principal)


def get_current_super_admin(principal: Principal = Depends(get_current_user)) -> Principal:
    return require_super_admin(principal)
