from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

import structlog

from core.audit import record_audit
from core.auth import Principal, require_admin
from core.config import EngineConfig
from core.errors import (
    Forbidden,
    InvalidStateError,
    InvariantViolation,
    MissingProofError,
    NotFoundError,
    ValidationError,
)
from core.images import ImageRef
from core.notify import LogNotifier, Notifier, notify
from core.storage import InMemoryStorage, Transaction
from ledger.service import LedgerService
from verification import extract_handle, is_channel_link

from .models import EDITABLE_STATUSES, TERMINAL_STATUSES, Order, OrderStatus, OrderUpdate


logger = structlog.get_logger(__name__)

DESCRIPTION_MIN_LENGTH = 10
DESCRIPTION_MAX_LENGTH = 500


def order_key(order_id: UUID) -> tuple[str, UUID]:
    return ("orders", order_id)


def subscriber_target_for(amount_paid: int, config: EngineConfig) -> int:
    if amount_paid not in config.funding_tiers:
        raise ValidationError(
            f"Funding amount {amount_paid} is not an allowed tier",
            {"allowedTiers": list(config.funding_tiers)},
        )
    target = amount_paid // 10
    if target < config.min_subscriber_target:
        raise ValidationError(f"Subscriber target must be at least {config.min_subscriber_target}")
    return target


def validate_link(link: str) -> str:
    link = (link or "").strip()
    if not is_channel_link(link):
        raise ValidationError(f"{link!r} is not a valid YouTube link")
    extract_handle(link)
    return link


def validate_description(description: str) -> str:
    description = (description or "").strip()
    if not DESCRIPTION_MIN_LENGTH <= len(description) <= DESCRIPTION_MAX_LENGTH:
        raise ValidationError(
            f"Description must be between {DESCRIPTION_MIN_LENGTH} and {DESCRIPTION_MAX_LENGTH} characters"
        )
    return description


def build_order(
    owner_id: UUID,
    link: str,
    channel_id: Optional[str],
    amount_paid: int,
    funding_proof: Optional[ImageRef],
    thumbnail: Optional[ImageRef],
    description: str,
    config: EngineConfig,
) -> dict:
    """Validate a new order and compute its derived fields."""
    link = validate_link(link)
    description = validate_description(description)
    if funding_proof is None:
        raise ValidationError("Funding proof image is required")
    now = datetime.now(timezone.utc)
    return {
        "id": uuid4(),
        "owner_id": owner_id,
        "channel_id": (channel_id or "").strip() or f"@{extract_handle(link)}",
        "link": link,
        "amount_paid": amount_paid,
        "subscriber_target": subscriber_target_for(amount_paid, config),
        "subscriber_count": 0,
        "status": OrderStatus.PENDING,
        "funding_proof": funding_proof,
        "thumbnail": thumbnail,
        "description": description,
        "verified_by": None,
        "verified_at": None,
        "created_at": now,
        "updated_at": now,
    }


def replaced_media(before: Order, after: Order) -> list[ImageRef]:
    return [
        old for old, new in ((before.funding_proof, after.funding_proof), (before.thumbnail, after.thumbnail))
        if old is not None and old != new
    ]


class OrderService:
    def __init__(
        self,
        storage: InMemoryStorage,
        ledger: LedgerService,
        config: Optional[EngineConfig] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.storage = storage
        self.ledger = ledger
        self.config = config or EngineConfig()
        self.notifier = notifier or LogNotifier()

    def create(
        self,
        owner_id: UUID,
        link: str,
        channel_id: Optional[str],
        amount_paid: int,
        funding_proof: Optional[ImageRef],
        thumbnail: Optional[ImageRef],
        description: str,
    ) -> Order:
        order = build_order(owner_id, link, channel_id, amount_paid, funding_proof, thumbnail, description, self.config)
        with self.storage.transaction(order_key(order["id"])) as txn:
            txn.insert("orders", order["id"], order)

        logger.info(
            "order_created",
            order_id=str(order["id"]),
            owner_id=str(owner_id),
            amount_paid=amount_paid,
            subscriber_target=order["subscriber_target"],
        )
        return Order(**order)

    def get(self, order_id: UUID, principal: Optional[Principal] = None) -> Order:
        record = self.storage.get("orders", order_id)
        if record is None:
            raise NotFoundError(f"Order {order_id} not found")
        order = Order(**record)
        if principal is not None and not self._can_view(order, principal):
            raise Forbidden("Not allowed to view this order")
        return order

    def list_for(self, principal: Principal) -> list[Order]:
        orders = [Order(**o) for o in self.storage.snapshot("orders")]
        if not principal.is_admin:
            orders = [o for o in orders if self._can_view(o, principal)]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders

    def verify_funding(self, order_id: UUID, admin: Principal) -> Order:
        require_admin(admin)
        with self.storage.transaction(order_key(order_id)) as txn:
            order = self._load(txn, order_id)
            if order["status"] != OrderStatus.PENDING:
                raise InvalidStateError(
                    f"Cannot verify order in {order['status'].value} state",
                    {"status": order["status"].value},
                )
            if order["funding_proof"] is None:
                raise MissingProofError("No funding proof on file")

            now = datetime.now(timezone.utc)
            order.update({
                "status": OrderStatus.ACTIVE,
                "verified_by": admin.user_id,
                "verified_at": now,
                "updated_at": now,
            })
            txn.put("orders", order_id, order)
            record_audit(txn, admin.user_id, "ORDER_VERIFIED", {"orderId": str(order_id)})

        verified = Order(**order)
        logger.info("order_funding_verified", order_id=str(order_id), admin_id=str(admin.user_id))

        try:
            self.ledger.process_commission(verified)
        except Exception:
            logger.exception("referral_commission_failed", order_id=str(order_id), owner_id=str(verified.owner_id))

        notify(self.notifier, verified.owner_id, "Order verified", f"Your order {order_id} is now active.")
        return verified

    def record_subscriber_progress(self, txn: Transaction, order_id: UUID, delta: int = 1) -> dict:
        """Count verified subscribers; the caller must hold the order lock."""
        if order_key(order_id) not in txn.locked:
            raise RuntimeError("record_subscriber_progress requires the order lock")
        order = self._load(txn, order_id)
        if order["status"] != OrderStatus.ACTIVE:
            raise InvalidStateError("order is not active", {"status": order["status"].value})

        new_count = order["subscriber_count"] + delta
        if new_count > order["subscriber_target"]:
            raise InvariantViolation(
                "Subscribed count cannot exceed needed subscribers",
                {"subscriberCount": new_count, "subscriberTarget": order["subscriber_target"]},
            )
        order["subscriber_count"] = new_count
        order["updated_at"] = datetime.now(timezone.utc)
        if new_count >= order["subscriber_target"]:
            order["status"] = OrderStatus.COMPLETED
            logger.info("order_completed", order_id=str(order_id), subscriber_count=new_count)
        txn.put("orders", order_id, order)
        return order

    def cancel(self, order_id: UUID, actor: Principal) -> Order:
        with self.storage.transaction(order_key(order_id)) as txn:
            order = self._load(txn, order_id)
            if order["owner_id"] != actor.user_id and not actor.is_admin:
                raise Forbidden("Only the owner or an administrator can cancel this order")
            if order["status"] in TERMINAL_STATUSES:
                raise InvalidStateError(f"Cannot cancel a {order['status'].value} order")

            previous = order["status"]
            order["status"] = OrderStatus.CANCELED
            order["updated_at"] = datetime.now(timezone.utc)
            txn.put("orders", order_id, order)
            record_audit(txn, actor.user_id, "ORDER_CANCELED", {
                "orderId": str(order_id),
                "previousStatus": previous.value,
            })

        logger.info("order_canceled", order_id=str(order_id), actor_id=str(actor.user_id))
        return Order(**order)

    def update(self, order_id: UUID, owner: Principal, fields: OrderUpdate) -> Order:
        changes = fields.model_dump(exclude_unset=True, exclude_none=True)
        with self.storage.transaction(order_key(order_id)) as txn:
            order = self._load(txn, order_id)
            if order["owner_id"] != owner.user_id:
                raise Forbidden("Only the owner can edit this order")
            if order["status"] not in EDITABLE_STATUSES:
                raise InvalidStateError(f"Cannot edit a {order['status'].value} order")

            if "link" in changes:
                order["link"] = validate_link(changes["link"])
                if "channel_id" not in changes:
                    order["channel_id"] = f"@{extract_handle(order['link'])}"
            if "channel_id" in changes:
                order["channel_id"] = changes["channel_id"].strip()
            if "description" in changes:
                order["description"] = validate_description(changes["description"])
            for media in ("funding_proof", "thumbnail"):
                if media in changes:
                    order[media] = getattr(fields, media)
            if "amount_paid" in changes:
                target = subscriber_target_for(changes["amount_paid"], self.config)
                if order["subscriber_count"] > target:
                    raise InvariantViolation(
                        "New funding tier is below the subscribers already recorded",
                        {"subscriberCount": order["subscriber_count"], "subscriberTarget": target},
                    )
                order["amount_paid"] = changes["amount_paid"]
                order["subscriber_target"] = target
                if order["status"] == OrderStatus.ACTIVE and order["subscriber_count"] >= target:
                    order["status"] = OrderStatus.COMPLETED

            order["updated_at"] = datetime.now(timezone.utc)
            txn.put("orders", order_id, order)

        logger.info("order_updated", order_id=str(order_id), fields=sorted(changes))
        return Order(**order)

    def _load(self, txn: Transaction, order_id: UUID) -> dict:
        order = txn.get("orders", order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def _can_view(self, order: Order, principal: Principal) -> bool:
        return principal.is_admin or order.owner_id == principal.user_id or order.status == OrderStatus.ACTIVE
