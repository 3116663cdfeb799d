import enum
from sqlalchemy import BigInteger, Column, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from billing.core.database import Base


class DebtAdjustmentType(str, enum.Enum):
    opening_balance = "opening_balance"
    order_charge = "order_charge"
    order_revision = "order_revision"
    order_cancellation = "order_cancellation"
    invoice_charge = "invoice_charge"
    invoice_void = "invoice_void"
    payment_credit = "payment_credit"
    payment_reversal = "payment_reversal"
    overpayment_credit = "overpayment_credit"
    manual_adjustment = "manual_adjustment"


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, index=True)
    phone = Column(String(30), nullable=True)
    address = Column(String(500), nullable=True)

    # Cache of the latest DebtAdjustment.new_debt_cents; written only by the debt ledger
    debt_cents = Column(BigInteger, nullable=False, default=0, server_default="0")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    orders = relationship("Order", back_populates="client")
    invoices = relationship("Invoice", back_populates="client")
    debt_adjustments = relationship(
        "DebtAdjustment",
        back_populates="client",
        order_by="DebtAdjustment.id",
    )

    def __repr__(self):
        return f"<Client(id={self.id}, name='{self.name}', debt_cents={self.debt_cents})>"


class DebtAdjustment(Base):
    """Append-only row of a client's debt history; never updated or deleted."""
    __tablename__ = "debt_payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="RESTRICT"), nullable=False, index=True)

    previous_debt_cents = Column(BigInteger, nullable=False)
    new_debt_cents = Column(BigInteger, nullable=False)
    adjustment_cents = Column(BigInteger, nullable=False)
    type = Column(Enum(DebtAdjustmentType, name="debt_adjustment_type"), nullable=False)

    ref_type = Column(String(20), nullable=True)   # ORDER / INVOICE / PAYMENT
    ref_id = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    client = relationship("Client", back_populates="debt_adjustments")

    def __repr__(self):
        return (
            f"<DebtAdjustment(client_id={self.client_id}, "
            f"{self.previous_debt_cents} -> {self.new_debt_cents}, type='{self.type.value}')>"
        )
