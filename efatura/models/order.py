from datetime import datetime

from sqlalchemy import Integer, Column, String, Boolean, DateTime, ForeignKey, Numeric
from sqlalchemy.orm import relationship

from efatura.database import Base


class Order(Base):
    __tablename__ = "orders"

    id_order = Column(Integer, primary_key=True, index=True)
    id_business = Column(Integer, ForeignKey("businesses.id_business"), nullable=False, index=True)
    id_customer = Column(Integer, ForeignKey("customers.id_customer"), nullable=False, index=True)
    order_number = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default="PENDING")
    payment_status = Column(String(20), nullable=False, default="PENDING")
    requires_invoice = Column(Boolean, default=True, nullable=False)
    customer_vkn_tckn = Column(String(11), nullable=True)
    subtotal = Column(Numeric(12, 2), default=0)
    tax_amount = Column(Numeric(12, 2), default=0)
    total_amount = Column(Numeric(12, 2), default=0)
    date_add = Column(DateTime, default=datetime.utcnow)

    # Relazioni
    business = relationship("Business", back_populates="orders")
    customer = relationship("Customer", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id_order_item")
    e_invoice = relationship("EInvoice", back_populates="order", uselist=False)
