"""Florist order composition API entrypoint."""

from fastapi import FastAPI

from services.api.app.db.init_db import init_db
from services.api.app.log import configure_logging
from services.api.app.routers.cart import router as cart_router
from services.api.app.routers.order import router as order_router

app = FastAPI(title="Florist Order API")

app.include_router(cart_router)
app.include_router(order_router)


@app.on_event("startup")
def _startup() -> None:
    configure_logging()
    init_db()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
