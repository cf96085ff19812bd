from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from orderflow.core.exceptions import NotFoundError, ok_response
from orderflow.deps import Services, get_services
from orderflow.models.records import OrderRecord
from orderflow.services import payments as payments_service
from orderflow.services.order_state import status_summary

router = APIRouter()


class CreateOrderRequest(BaseModel):
    user_id: str
    product_id: str
    qr_code_id: str
    unit_price: float = Field(gt=0)
    quantity: int = Field(default=1, ge=1)
    customer_email: str | None = None


def _order_out(order: OrderRecord) -> dict:
    return {
        "id": order.id,
        "user_id": order.user_id,
        "product_id": order.product_id,
        "qr_code_id": order.qr_code_id,
        "amount": order.amount,
        "quantity": order.quantity,
        "shopify_order_id": order.shopify_order_id,
        "qikink_order_id": order.qikink_order_id,
        "qikink_sync_status": order.qikink_sync_status.value,
        "tracking_number": order.tracking_number,
        "tracking_url": order.tracking_url,
        "shipping_carrier": order.shipping_carrier,
        "estimated_delivery_date": order.estimated_delivery_date,
        "created_at": order.created_at.isoformat(),
        "updated_at": order.updated_at.isoformat(),
        **status_summary(order),
    }


@router.post("")
async def create_order(body: CreateOrderRequest, services: Services = Depends(get_services)):
    order = await payments_service.create_order(
        services.repository,
        user_id=body.user_id,
        product_id=body.product_id,
        qr_code_id=body.qr_code_id,
        unit_price=body.unit_price,
        quantity=body.quantity,
        customer_email=body.customer_email,
    )
    return ok_response(_order_out(order), message="Order created")


@router.get("/{order_id}")
async def get_order(order_id: str, services: Services = Depends(get_services)):
    """Order with its customer-facing status view."""
    order = await services.repository.get_order(order_id)
    if not order:
        raise NotFoundError("Order not found")
    return ok_response(_order_out(order))
