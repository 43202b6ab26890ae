import logging
from decimal import Decimal

from prometheus_client import Counter
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schema
from .exceptions import DuplicatePayment

ORDERS_CREATED_TOTAL = Counter(
    "storefront_orders_created_total",
    "Total number of orders recorded",
)
DUPLICATE_PAYMENTS_TOTAL = Counter(
    "storefront_duplicate_payments_total",
    "Total number of order inserts rejected because the payment was already recorded",
)

logger = logging.getLogger(__name__)


# --- COMMANDS (Write Operations) ---
def create_order(
    db: Session,
    owner_id: str,
    lines: list[schema.CartLine],
    total_amount: Decimal,
    currency: str,
    shipping_address: schema.ShippingAddress,
    payment_authorization_id: str,
) -> models.Order:
    """Insert an order in a single transaction.

    No lookup happens before the insert: the unique constraint on
    ``payment_authorization_id`` decides which of two concurrent submissions
    wins, and the loser gets `DuplicatePayment`.
    """
    db_order = models.Order(
        owner_id=owner_id,
        total_amount=total_amount,
        currency=currency,
        shipping_address=shipping_address.model_dump(),
        payment_authorization_id=payment_authorization_id,
        lines=[
            models.OrderLine(
                product_ref=line.product_ref,
                title=line.title,
                unit_price=line.unit_price,
                quantity=line.quantity,
                size=line.size,
                color=line.color,
                display_image=line.display_image,
            )
            for line in lines
        ],
    )
    db.add(db_order)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        DUPLICATE_PAYMENTS_TOTAL.inc()
        logger.warning("Payment %s has already been recorded, rejecting order", payment_authorization_id)
        raise DuplicatePayment(payment_authorization_id) from e

    db.refresh(db_order)
    ORDERS_CREATED_TOTAL.inc()
    logger.info(
        "Created order %s for owner %s (payment %s, total %s %s)",
        db_order.id,
        owner_id,
        payment_authorization_id,
        total_amount,
        currency,
    )
    return db_order


# --- QUERIES (Read Operations) ---
def get_order(db: Session, order_id: int) -> models.Order | None:
    return db.query(models.Order).filter(models.Order.id == order_id).first()


def get_order_by_payment_authorization(db: Session, payment_authorization_id: str) -> models.Order | None:
    return (
        db.query(models.Order)
        .filter(models.Order.payment_authorization_id == payment_authorization_id)
        .first()
    )


def get_orders_by_owner(db: Session, owner_id: str, skip: int = 0, limit: int = 100) -> list[models.Order]:
    return (
        db.query(models.Order)
        .filter(models.Order.owner_id == owner_id)
        .order_by(models.Order.created_at.desc(), models.Order.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
