from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel

from orderflow.core.exceptions import ok_response
from orderflow.deps import Services, get_services
from orderflow.models.enums import PaymentProvider
from orderflow.services import payments as payments_service

router = APIRouter()


class InitiatePaymentRequest(BaseModel):
    order_id: str
    provider: PaymentProvider = PaymentProvider.RAZORPAY


class VerifyPaymentRequest(BaseModel):
    order_id: str
    payment_id: str
    signature: str | None = None


@router.post("/initiate")
async def initiate_payment(body: InitiatePaymentRequest, services: Services = Depends(get_services)):
    """Create the payment for an order; the frontend opens checkout with provider_order_id."""
    data = await payments_service.initiate_payment(
        services.repository,
        body.order_id,
        body.provider,
        razorpay=services.razorpay,
        key_id=services.settings.razorpay_key_id,
    )
    return ok_response(data, message="Payment initiated")


@router.post("/verify")
async def verify_payment(
    body: VerifyPaymentRequest,
    background: BackgroundTasks,
    services: Services = Depends(get_services),
):
    """Checkout handler callback: HMAC of "order_id|payment_id" with the key secret."""
    transition = await payments_service.verify_payment(
        services.repository,
        services.reconciler,
        body.order_id,
        body.payment_id,
        body.signature,
        settings=services.settings,
    )
    if transition.side_effects:
        background.add_task(services.dispatcher.dispatch, transition.side_effects)
    return ok_response(transition.as_dict(), message="Payment verified successfully")
