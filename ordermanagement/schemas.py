from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ordermanagement.models import Order


class CreateOrderReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer_name: Optional[str] = Field(None, alias="customerName", max_length=100)
    product_name: Optional[str] = Field(None, alias="productName", max_length=100)
    quantity: int = 0


class UpdateOrderReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer_name: Optional[str] = Field(None, alias="customerName", max_length=100)
    product_name: Optional[str] = Field(None, alias="productName", max_length=100)
    quantity: Optional[int] = None
    status: Optional[str] = None


def order_to_dict(order: Order) -> dict:
    return {
        "id": order.id,
        "customerName": order.customer_name,
        "productName": order.product_name,
        "quantity": order.quantity,
        "status": order.status.value,
        "createdAt": order.created_at.isoformat() if order.created_at else None,
        "processedAt": order.processed_at.isoformat() if order.processed_at else None,
    }
