import asyncio
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

import structlog

from core.audit import record_audit
from core.auth import Principal, require_admin
from core.errors import (
    AlreadyVerified,
    Conflict,
    Forbidden,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from core.images import ImageRef
from core.notify import LogNotifier, Notifier, notify
from core.storage import Transaction
from ledger.service import LedgerService, account_key
from verification import VerificationEngine

from .models import OrderStatus, SubmissionResult, SubmissionStatus, Subscription
from .service import OrderService, order_key


logger = structlog.get_logger(__name__)

VERIFIED_MESSAGE = "Subscription verified! Gift credits added to your account."
PENDING_MESSAGE = "Verification failed. Admin will review your submission."


class SubscriptionService:
    """Records subscription claims and credits the subscriber once a claim is verified."""

    def __init__(
        self,
        orders: OrderService,
        ledger: LedgerService,
        engine: VerificationEngine,
        notifier: Optional[Notifier] = None,
    ):
        self.orders = orders
        self.ledger = ledger
        self.engine = engine
        self.storage = orders.storage
        self.notifier = notifier or LogNotifier()

    async def submit(
        self,
        subscriber_id: UUID,
        order_id: UUID,
        image: Optional[bytes],
        proof: Optional[ImageRef],
    ) -> SubmissionResult:
        if not image or proof is None:
            raise ValidationError("Proof screenshot is required")

        order = self.orders.get(order_id)
        claim = self.storage.get("subscription_index", (subscriber_id, order_id))
        self._check_claim(order.model_dump(), subscriber_id, claim)

        # OCR runs without holding any lock; the claim is re-checked in _record.
        verified = await self.engine.verify_link(image, order.link)
        subscription = await asyncio.to_thread(self._record, subscriber_id, order_id, proof, verified)

        logger.info(
            "subscription_submitted",
            subscription_id=str(subscription["id"]),
            order_id=str(order_id),
            subscriber_id=str(subscriber_id),
            verified=verified,
        )
        return SubmissionResult(
            subscription=Subscription(**subscription),
            status=SubmissionStatus.VERIFIED if verified else SubmissionStatus.PENDING_REVIEW,
            message=VERIFIED_MESSAGE if verified else PENDING_MESSAGE,
        )

    def _record(self, subscriber_id: UUID, order_id: UUID, proof: ImageRef, verified: bool) -> dict:
        now = datetime.now(timezone.utc)
        with self.storage.transaction(order_key(order_id), account_key(subscriber_id)) as txn:
            current = txn.get("orders", order_id)
            if current is None:
                raise NotFoundError(f"Order {order_id} not found")
            self._check_claim(current, subscriber_id, txn.get("subscription_index", (subscriber_id, order_id)))

            subscription = {
                "id": uuid4(),
                "subscriber_id": subscriber_id,
                "order_id": order_id,
                "proof": proof,
                "verified": verified,
                "verified_by": None,
                "verified_at": now if verified else None,
                "created_at": now,
            }
            txn.insert("subscription_index", (subscriber_id, order_id), subscription["id"])
            txn.insert("subscriptions", subscription["id"], subscription)
            if verified:
                self._reward(txn, order_id, subscriber_id)
        return subscription

    def manual_verify(self, subscription_id: UUID, admin: Principal) -> Subscription:
        require_admin(admin)
        existing = self.storage.get("subscriptions", subscription_id)
        if existing is None:
            raise NotFoundError(f"Subscription {subscription_id} not found")

        order_id = existing["order_id"]
        subscriber_id = existing["subscriber_id"]
        keys = (("subscriptions", subscription_id), order_key(order_id), account_key(subscriber_id))
        with self.storage.transaction(*keys) as txn:
            subscription = txn.get("subscriptions", subscription_id)
            if subscription["verified"]:
                raise AlreadyVerified("Subscription already verified")
            order = txn.get("orders", order_id)
            if order is None or order["status"] != OrderStatus.ACTIVE:
                raise InvalidStateError("Order is not accepting subscribers")

            subscription.update({
                "verified": True,
                "verified_by": admin.user_id,
                "verified_at": datetime.now(timezone.utc),
            })
            txn.put("subscriptions", subscription_id, subscription)
            self._reward(txn, order_id, subscriber_id)
            record_audit(txn, admin.user_id, "SUBSCRIPTION_MANUAL_VERIFY", {
                "subscriptionId": str(subscription_id),
                "orderId": str(order_id),
                "subscriberId": str(subscriber_id),
            })

        logger.info("subscription_manually_verified", subscription_id=str(subscription_id), admin_id=str(admin.user_id))
        notify(self.notifier, subscriber_id, "Subscription verified", "Your subscription proof was approved.")
        return Subscription(**subscription)

    def list_for(self, subscriber_id: UUID) -> list[Subscription]:
        return self._list(lambda s: s["subscriber_id"] == subscriber_id)

    def list_pending(self) -> list[Subscription]:
        return self._list(lambda s: not s["verified"])

    def _list(self, predicate) -> list[Subscription]:
        rows = [Subscription(**s) for s in self.storage.snapshot("subscriptions") if predicate(s)]
        rows.sort(key=lambda s: s.created_at, reverse=True)
        return rows

    def _check_claim(self, order: dict, subscriber_id: UUID, existing_claim) -> None:
        if order["status"] != OrderStatus.ACTIVE:
            raise InvalidStateError("order is not active", {"status": OrderStatus(order["status"]).value})
        if order["owner_id"] == subscriber_id:
            raise Forbidden("Cannot subscribe to your own order")
        if existing_claim is not None:
            raise Conflict("Already subscribed to this order")

    def _reward(self, txn: Transaction, order_id: UUID, subscriber_id: UUID) -> None:
        self.orders.record_subscriber_progress(txn, order_id)
        self.ledger.credit_gift(txn, subscriber_id)
