"""Session-scoped cart, wishlist and staged order draft.

A `SessionState` is built per request for the signed-in identity and keeps its
data in Redis under ``session:<identity>:*`` keys. Every write refreshes the
key's TTL, so an abandoned session (and any draft staged in it) expires on its
own after ``SESSION_TTL_SECONDS``.
"""

import json
import logging
from decimal import Decimal

import redis

from .exceptions import CheckoutValidationError
from .schema import Cart, CartLine, CartLineKey, OrderDraft

logger = logging.getLogger(__name__)


class SessionState:
    def __init__(self, redis_client: redis.Redis, session_id: str, ttl_seconds: int) -> None:
        self.redis = redis_client
        self.session_id = session_id
        self.ttl_seconds = ttl_seconds

    def _key(self, name: str) -> str:
        return f"session:{self.session_id}:{name}"

    # --- Cart ---
    def get_lines(self) -> list[CartLine]:
        cached = self.redis.get(self._key("cart"))
        if not cached:
            return []
        return [CartLine.model_validate(item) for item in json.loads(cached)]

    def _save_lines(self, lines: list[CartLine]) -> None:
        payload = json.dumps([line.model_dump(mode="json") for line in lines])
        self.redis.setex(self._key("cart"), self.ttl_seconds, payload)

    def get_cart(self) -> Cart:
        lines = self.get_lines()
        total = sum((line.subtotal for line in lines), Decimal("0.00"))
        return Cart(lines=lines, total_amount=total)

    def add_line(self, new_line: CartLine) -> Cart:
        lines = self.get_lines()
        for line in lines:
            if line.matches(new_line):
                line.quantity += new_line.quantity
                break
        else:
            lines.append(new_line)
        self._save_lines(lines)
        logger.info("Session %s: added %s x%d to cart", self.session_id, new_line.product_ref, new_line.quantity)
        return self.get_cart()

    def update_quantity(self, key: CartLineKey, quantity: int) -> Cart:
        lines = self.get_lines()
        for line in lines:
            if line.matches(key):
                line.quantity = quantity
                break
        else:
            raise CheckoutValidationError(f"Item {key.product_ref} is not in the cart.")
        self._save_lines(lines)
        return self.get_cart()

    def remove_line(self, key: CartLineKey) -> Cart:
        lines = [line for line in self.get_lines() if not line.matches(key)]
        self._save_lines(lines)
        return self.get_cart()

    def clear_cart(self) -> None:
        self.redis.delete(self._key("cart"))
        logger.info("Session %s: cart cleared", self.session_id)

    # --- Wishlist ---
    def get_wishlist(self) -> list[str]:
        cached = self.redis.get(self._key("wishlist"))
        return json.loads(cached) if cached else []

    def toggle_wishlist(self, product_ref: str) -> list[str]:
        refs = self.get_wishlist()
        if product_ref in refs:
            refs.remove(product_ref)
        else:
            refs.append(product_ref)
        self.redis.setex(self._key("wishlist"), self.ttl_seconds, json.dumps(refs))
        return refs

    # --- Staged order draft ---
    def stage_draft(self, draft: OrderDraft) -> None:
        # One draft per session; a newer checkout simply replaces an older one.
        self.redis.setex(self._key("draft"), self.ttl_seconds, draft.model_dump_json())
        logger.info("Session %s: staged order draft (total %s)", self.session_id, draft.total_amount)

    def load_draft(self) -> OrderDraft | None:
        cached = self.redis.get(self._key("draft"))
        if not cached:
            return None
        return OrderDraft.model_validate_json(cached)

    def clear_draft(self) -> None:
        self.redis.delete(self._key("draft"))
