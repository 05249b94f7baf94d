from fastapi import APIRouter, Depends, Response

from ordermanagement.config import RECOVERY_GRACE_SECONDS
from ordermanagement.deps import get_order_service
from ordermanagement.errors import NotFoundError
from ordermanagement.schemas import CreateOrderReq, UpdateOrderReq, order_to_dict
from ordermanagement.service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", status_code=201)
def create_order(req: CreateOrderReq, service: OrderService = Depends(get_order_service)):
    order = service.create(req.customer_name, req.product_name, req.quantity)
    return order_to_dict(order)


@router.get("")
def list_orders(service: OrderService = Depends(get_order_service)):
    return [order_to_dict(o) for o in service.list()]


@router.post("/requeue-pending")
def requeue_pending(
    older_than_seconds: float = RECOVERY_GRACE_SECONDS,
    service: OrderService = Depends(get_order_service),
):
    return {"requeued": service.requeue_pending(older_than_seconds)}


@router.get("/{order_id}")
def get_order(order_id: int, service: OrderService = Depends(get_order_service)):
    return order_to_dict(service.get(order_id))


@router.put("/{order_id}")
def update_order(order_id: int, req: UpdateOrderReq, service: OrderService = Depends(get_order_service)):
    order = service.update(
        order_id,
        customer_name=req.customer_name,
        product_name=req.product_name,
        quantity=req.quantity,
        status=req.status,
    )
    return order_to_dict(order)


@router.delete("/{order_id}", status_code=204)
def delete_order(order_id: int, service: OrderService = Depends(get_order_service)):
    if not service.delete(order_id):
        raise NotFoundError(order_id)
    return Response(status_code=204)
