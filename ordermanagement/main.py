import logging
import threading
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ordermanagement.bootstrap import build_queue, build_service, build_store, configure_logging
from ordermanagement.config import API_HOST, API_PORT
from ordermanagement.errors import NotFoundError, TransientInfrastructureError, ValidationError
from ordermanagement.messaging.memory import InMemoryOrderQueue
from ordermanagement.routers.orders import router as orders_router
from ordermanagement.service import OrderService
from ordermanagement.worker import OrderProcessingWorker

logger = logging.getLogger(__name__)


def create_app(service: Optional[OrderService] = None) -> FastAPI:
    app = FastAPI(title="Order Management API")
    app.include_router(orders_router)
    app.state.order_service = service
    app.state.local_consumer = None

    @app.exception_handler(ValidationError)
    async def on_validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def on_request_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "Invalid order request", "details": jsonable_encoder(exc.errors())})

    @app.exception_handler(NotFoundError)
    async def on_not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(TransientInfrastructureError)
    async def on_unavailable(request: Request, exc: TransientInfrastructureError):
        logger.error(f"infrastructure unavailable path={request.url.path} err={exc}")
        return JSONResponse(status_code=503, content={"error": "Service temporarily unavailable"})

    @app.on_event("startup")
    def startup():
        if app.state.order_service is not None:
            return
        configure_logging()
        store = build_store()
        queue = build_queue()
        app.state.order_service = build_service(store, queue)

        # Without a broker nothing else can consume the in-memory queue.
        if isinstance(queue, InMemoryOrderQueue):
            consumer = queue.consumer(app.state.order_service.destination, OrderProcessingWorker(store).dispatch)
            threading.Thread(target=consumer.start, name="local-worker", daemon=True).start()
            app.state.local_consumer = consumer

    @app.on_event("shutdown")
    def shutdown():
        if app.state.local_consumer is not None:
            app.state.local_consumer.stop()

    @app.get("/health")
    def health():
        return {"ok": True}

    return app


app = create_app()


def run():
    uvicorn.run("ordermanagement.main:app", host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    run()
