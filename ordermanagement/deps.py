from fastapi import HTTPException, Request

from ordermanagement.service import OrderService


def get_order_service(request: Request) -> OrderService:
    service = getattr(request.app.state, "order_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Order service not initialised")
    return service
