import enum
from sqlalchemy import BigInteger, Column, Date, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import backref, relationship
from sqlalchemy.sql import func

from billing.core.database import Base
from billing.utils.timeutils import utcnow_naive


class InvoiceStatus(str, enum.Enum):
    draft = "draft"
    issued = "issued"
    partially_paid = "partially_paid"
    paid = "paid"
    void = "void"


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    CARD = "CARD"
    TRANSFER = "TRANSFER"
    OTHER = "OTHER"


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_number = Column(String(20), unique=True, nullable=False, index=True)
    # unique: an order generates at most one invoice
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="RESTRICT"), unique=True, nullable=True)
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="RESTRICT"), nullable=False, index=True)
    status = Column(Enum(InvoiceStatus, name="invoice_status"), nullable=False, default=InvoiceStatus.draft)

    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)

    subtotal_cents = Column(BigInteger, nullable=False, default=0)
    discount_percent = Column(Integer, nullable=False, default=0)
    tax_percent = Column(Integer, nullable=False, default=0)
    total_cents = Column(BigInteger, nullable=False, default=0)
    currency = Column(String(3), nullable=False)

    # Recomputed from the payment rows after every payment-ledger mutation
    paid_cents = Column(BigInteger, nullable=False, default=0)
    balance_cents = Column(BigInteger, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    client = relationship("Client", back_populates="invoices")
    order = relationship("Order", back_populates="invoice")
    items = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )
    payments = relationship("Payment", back_populates="invoice", order_by="Payment.id")

    @property
    def is_standalone(self) -> bool:
        return self.order_id is None

    def __repr__(self):
        return f"<Invoice(invoice_number='{self.invoice_number}', status='{self.status.value}')>"


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)

    name_snapshot = Column(String(255), nullable=False)
    sku_snapshot = Column(String(64), nullable=True)
    qty = Column(Integer, nullable=False)
    unit_price_cents = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False)
    total_cents = Column(BigInteger, nullable=False)

    invoice = relationship("Invoice", back_populates="items")


class Payment(Base):
    """Immutable once written; corrections are new rows pointing at ``reversal_of_id``."""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="RESTRICT"), nullable=False, index=True)
    amount_cents = Column(BigInteger, nullable=False)
    method = Column(Enum(PaymentMethod, name="payment_method"), nullable=False)
    reference = Column(String(100), nullable=True)
    paid_at = Column(DateTime, nullable=False, default=utcnow_naive, index=True)
    notes = Column(Text, nullable=True)
    reversal_of_id = Column(Integer, ForeignKey("payments.id", ondelete="RESTRICT"), unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    invoice = relationship("Invoice", back_populates="payments")
    reversal_of = relationship("Payment", remote_side=[id], backref=backref("reversed_by", uselist=False))

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None
