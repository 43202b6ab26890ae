import enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class OrderStatusEnum(str, enum.Enum):
    SUCCEEDED = "succeeded"


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String, nullable=False, index=True)
    status = Column(
        SQLAlchemyEnum(OrderStatusEnum, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=OrderStatusEnum.SUCCEEDED,
    )
    total_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    shipping_address = Column(JSON, nullable=False)
    # The unique index is the only guard against recording a payment twice.
    payment_authorization_id = Column(String, nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    lines = relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
    )


class OrderLine(Base):
    __tablename__ = "order_lines"
    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    product_ref = Column(String, nullable=False)
    title = Column(String, nullable=False, default="")
    unit_price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    size = Column(String, nullable=False, default="")
    color = Column(String, nullable=False, default="")
    display_image = Column(String, nullable=False, default="")
    order = relationship("Order", back_populates="lines")
