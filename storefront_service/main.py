import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import make_asgi_app

from . import api, models
from .database import engine
from .payment_gateway import get_payment_gateway

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.info("Storefront starting up... Creating database tables.")
    models.Base.metadata.create_all(bind=engine)
    logging.info("Startup complete.")
    yield
    logging.info("Storefront shutting down...")
    get_payment_gateway().close()


app = FastAPI(
    title="Storefront Service",
    description="Catalog, session cart, checkout with payment reconciliation, and order history.",
    lifespan=lifespan,
)

app.include_router(api.catalog_router)
app.include_router(api.cart_router)
app.include_router(api.wishlist_router)
app.include_router(api.checkout_router)
app.include_router(api.order_router)
app.include_router(api.monitoring_router)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)
