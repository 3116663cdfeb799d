import enum
from sqlalchemy import BigInteger, Column, Date, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from billing.core.database import Base


class OrderStatus(str, enum.Enum):
    draft = "draft"
    confirmed = "confirmed"
    fulfilled = "fulfilled"
    cancelled = "cancelled"


TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.fulfilled, OrderStatus.cancelled})


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(20), unique=True, nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="RESTRICT"), nullable=False, index=True)
    status = Column(Enum(OrderStatus, name="order_status"), nullable=False, default=OrderStatus.draft)
    notes = Column(Text, nullable=True)

    discount_percent = Column(Integer, nullable=False, default=0)
    tax_percent = Column(Integer, nullable=False, default=0)

    # Derived from the items; rewritten on every item or percentage change
    subtotal_cents = Column(BigInteger, nullable=False, default=0)
    discount_cents = Column(BigInteger, nullable=False, default=0)
    tax_cents = Column(BigInteger, nullable=False, default=0)
    total_cents = Column(BigInteger, nullable=False, default=0)

    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)
    client_debt_snapshot_cents = Column(BigInteger, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    client = relationship("Client", back_populates="orders")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    invoice = relationship("Invoice", back_populates="order", uselist=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES

    def __repr__(self):
        return f"<Order(order_number='{self.order_number}', status='{self.status.value}')>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)

    name_snapshot = Column(String(255), nullable=False)
    sku_snapshot = Column(String(64), nullable=True)
    qty = Column(Integer, nullable=False)
    unit_price_cents = Column(BigInteger, nullable=False)
    discount_percent = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False)
    total_cents = Column(BigInteger, nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
