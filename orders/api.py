from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.concurrency import run_in_threadpool

from core.auth import Principal
from core.container import Services, get_current_admin, get_current_user, get_services
from core.images import ImageRef, ImageStore

from .models import Order, OrderUpdate, SubmissionResult, Subscription
from .service import replaced_media


router = APIRouter()


async def store_upload(images: ImageStore, upload: Optional[UploadFile]) -> Optional[ImageRef]:
    if upload is None:
        return None
    content = await upload.read()
    if not content:
        return None
    return await images.store(upload.filename, content)


async def discard(images: ImageStore, refs: list[Optional[ImageRef]]) -> None:
    for ref in refs:
        if ref is not None:
            await images.delete(ref)


@router.post("/orders", response_model=Order, status_code=status.HTTP_201_CREATED, tags=["Orders"])
async def create_order(
    link: str = Form(...),
    amount_paid: int = Form(..., alias="amountPaid"),
    description: str = Form(...),
    channel_id: Optional[str] = Form(default=None, alias="channelId"),
    funding_proof: Optional[UploadFile] = File(default=None, alias="fundingProof"),
    thumbnail: Optional[UploadFile] = File(default=None),
    principal: Principal = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Order:
    proof_ref = await store_upload(services.images, funding_proof)
    thumb_ref = await store_upload(services.images, thumbnail)
    try:
        return await run_in_threadpool(
            services.orders.create,
            principal.user_id, link, channel_id, amount_paid, proof_ref, thumb_ref, description,
        )
    except Exception:
        await discard(services.images, [proof_ref, thumb_ref])
        raise


@router.get("/orders", response_model=list[Order], tags=["Orders"])
def list_orders(
    principal: Principal = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[Order]:
    return services.orders.list_for(principal)


@router.get("/orders/{order_id}", response_model=Order, tags=["Orders"])
def get_order(
    order_id: UUID,
    principal: Principal = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Order:
    return services.orders.get(order_id, principal)


@router.patch("/orders/{order_id}/verify", response_model=Order, tags=["Orders"])
def verify_order(
    order_id: UUID,
    admin: Principal = Depends(get_current_admin),
    services: Services = Depends(get_services),
) -> Order:
    return services.orders.verify_funding(order_id, admin)


@router.patch("/orders/{order_id}", response_model=Order, tags=["Orders"])
async def update_order(
    order_id: UUID,
    link: Optional[str] = Form(default=None),
    amount_paid: Optional[int] = Form(default=None, alias="amountPaid"),
    description: Optional[str] = Form(default=None),
    channel_id: Optional[str] = Form(default=None, alias="channelId"),
    funding_proof: Optional[UploadFile] = File(default=None, alias="fundingProof"),
    thumbnail: Optional[UploadFile] = File(default=None),
    principal: Principal = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Order:
    before = await run_in_threadpool(services.orders.get, order_id)
    proof_ref = await store_upload(services.images, funding_proof)
    thumb_ref = await store_upload(services.images, thumbnail)
    fields = OrderUpdate(
        link=link,
        amount_paid=amount_paid,
        description=description,
        channel_id=channel_id,
        funding_proof=proof_ref,
        thumbnail=thumb_ref,
    )
    try:
        after = await run_in_threadpool(services.orders.update, order_id, principal, fields)
    except Exception:
        await discard(services.images, [proof_ref, thumb_ref])
        raise
    await discard(services.images, replaced_media(before, after))
    return after


@router.delete("/orders/{order_id}", response_model=Order, tags=["Orders"])
def cancel_order(
    order_id: UUID,
    principal: Principal = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Order:
    return services.orders.cancel(order_id, principal)


@router.post(
    "/subscriptions/subscribe",
    response_model=SubmissionResult,
    status_code=status.HTTP_201_CREATED,
    tags=["Subscriptions"],
)
async def subscribe(
    order_id: UUID = Form(..., alias="orderId"),
    screenshot: Optional[UploadFile] = File(default=None),
    principal: Principal = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> SubmissionResult:
    content = await screenshot.read() if screenshot is not None else b""
    proof = await services.images.store(screenshot.filename, content) if content else None
    try:
        return await services.subscriptions.submit(principal.user_id, order_id, content, proof)
    except Exception:
        await discard(services.images, [proof])
        raise


@router.get("/subscriptions", response_model=list[Subscription], tags=["Subscriptions"])
def list_subscriptions(
    principal: Principal = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[Subscription]:
    return services.subscriptions.list_for(principal.user_id)


@router.get("/subscriptions/pending", response_model=list[Subscription], tags=["Subscriptions"])
def pending_subscriptions(
    admin: Principal = Depends(get_current_admin),
    services: Services = Depends(get_services),
) -> list[Subscription]:
    return services.subscriptions.list_pending()


@router.post("/subscriptions/{subscription_id}/verify", response_model=Subscription, tags=["Subscriptions"])
def verify_subscription(
    subscription_id: UUID,
    admin: Principal = Depends(get_current_admin),
    services: Services = Depends(get_services),
) -> Subscription:
    return services.subscriptions.manual_verify(subscription_id, admin)
