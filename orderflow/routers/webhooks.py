from fastapi import APIRouter, BackgroundTasks, Depends, Request

from orderflow.core.exceptions import ok_response
from orderflow.core.security import PRINT, QIKINK, RAZORPAY, SHOPIFY
from orderflow.deps import Services, get_services

router = APIRouter()


async def _ingest(provider: str, request: Request, background: BackgroundTasks, services: Services) -> dict:
    # raw bytes first: the signature covers exactly what was sent
    body = await request.body()
    transition = await services.reconciler.ingest(provider, body, request.headers)
    if transition.side_effects:
        background.add_task(services.dispatcher.dispatch, transition.side_effects)
    return ok_response(transition.as_dict(), message="Webhook processed")


@router.post("/shopify")
async def shopify_webhook(
    request: Request,
    background: BackgroundTasks,
    services: Services = Depends(get_services),
):
    """Shopify order topics (X-Shopify-Topic), signed with X-Shopify-Hmac-Sha256."""
    return await _ingest(SHOPIFY, request, background, services)


@router.post("/qikink")
async def qikink_webhook(
    request: Request,
    background: BackgroundTasks,
    services: Services = Depends(get_services),
):
    """Qikink fulfillment progress, signed with X-Qikink-Signature."""
    return await _ingest(QIKINK, request, background, services)


@router.post("/payment")
async def payment_webhook(
    request: Request,
    background: BackgroundTasks,
    services: Services = Depends(get_services),
):
    """Legacy Razorpay payment events. A bad signature is acknowledged and ignored."""
    return await _ingest(RAZORPAY, request, background, services)


@router.post("/print")
async def print_webhook(
    request: Request,
    background: BackgroundTasks,
    services: Services = Depends(get_services),
):
    return await _ingest(PRINT, request, background, services)
