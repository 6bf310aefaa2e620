from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import computed_field

from core.images import ImageRef
from core.schema import ApiModel


class OrderStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELED = "canceled"


TERMINAL_STATUSES = (OrderStatus.COMPLETED, OrderStatus.CANCELED)
EDITABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.ACTIVE)


class SubmissionStatus(str, Enum):
    VERIFIED = "verified"
    PENDING_REVIEW = "pending_review"


class Order(ApiModel):
    id: UUID
    owner_id: UUID
    channel_id: str
    link: str
    amount_paid: int
    subscriber_target: int
    subscriber_count: int = 0
    status: OrderStatus = OrderStatus.PENDING
    funding_proof: Optional[ImageRef] = None
    thumbnail: Optional[ImageRef] = None
    description: str
    verified_by: Optional[UUID] = None
    verified_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def remaining_subscribers(self) -> int:
        return self.subscriber_target - self.subscriber_count

    @computed_field
    @property
    def progress(self) -> float:
        if not self.subscriber_target:
            return 0.0
        pct = Decimal(self.subscriber_count * 100) / Decimal(self.subscriber_target)
        return float(pct.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


class OrderUpdate(ApiModel):
    link: Optional[str] = None
    channel_id: Optional[str] = None
    amount_paid: Optional[int] = None
    description: Optional[str] = None
    funding_proof: Optional[ImageRef] = None
    thumbnail: Optional[ImageRef] = None


class Subscription(ApiModel):
    id: UUID
    subscriber_id: UUID
    order_id: UUID
    proof: ImageRef
    verified: bool = False
    verified_by: Optional[UUID] = None
    verified_at: Optional[datetime] = None
    created_at: datetime


class SubmissionResult(ApiModel):
    subscription: Subscription
    status: SubmissionStatus
    message: str
