"""Read-only product catalog backed by a static JSON file."""

import json
import logging
from functools import lru_cache
from pathlib import Path

from .config import get_settings
from .exceptions import CheckoutValidationError, ProductNotFound
from .schema import CartItemCreate, CartLine, Product

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).parent / "data" / "products.json"


@lru_cache
def load_products() -> tuple[Product, ...]:
    path = Path(get_settings().CATALOG_PATH or DEFAULT_CATALOG_PATH)
    with path.open(encoding="utf-8") as fh:
        raw = json.load(fh)
    products = tuple(Product.model_validate(item) for item in raw)
    logger.info("Loaded %d products from %s", len(products), path)
    return products


def list_products() -> list[Product]:
    return list(load_products())


def get_product(product_id: str) -> Product:
    for product in load_products():
        if product.id == product_id:
            return product
    raise ProductNotFound(f"Product {product_id} not found.")


def price_line(item: CartItemCreate) -> CartLine:
    """Build a cart line from the catalog entry, never from client-supplied prices."""
    product = get_product(item.product_ref)
    if product.sizes and item.size not in product.sizes:
        raise CheckoutValidationError(f"Size '{item.size}' is not available for {product.id}.")
    if product.colors and item.color not in product.colors:
        raise CheckoutValidationError(f"Color '{item.color}' is not available for {product.id}.")

    return CartLine(
        product_ref=product.id,
        title=product.title,
        unit_price=product.price,
        quantity=item.quantity,
        size=item.size,
        color=item.color,
        display_image=product.background_image,
    )
