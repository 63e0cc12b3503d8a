from sqlalchemy import Integer, Column, String, Text, ForeignKey, Numeric
from sqlalchemy.orm import relationship

from efatura.database import Base


class EInvoiceItem(Base):
    __tablename__ = "e_invoice_items"

    id_e_invoice_item = Column(Integer, primary_key=True, index=True)
    id_e_invoice = Column(Integer, ForeignKey("e_invoices.id_e_invoice"), nullable=False, index=True)
    id_order_item = Column(Integer, ForeignKey("order_items.id_order_item"), nullable=True, index=True)
    line_number = Column(Integer, nullable=False)
    item_name = Column(String(255), nullable=False)
    item_description = Column(Text, nullable=True)
    quantity = Column(Numeric(12, 3), nullable=False)
    unit_code = Column(String(3), nullable=False, default="C62")
    unit_price = Column(Numeric(12, 4), nullable=False)
    line_amount = Column(Numeric(12, 2), nullable=False)
    vat_rate = Column(Numeric(5, 2), nullable=False)
    vat_amount = Column(Numeric(12, 2), nullable=False)
    line_total = Column(Numeric(12, 2), nullable=False)

    e_invoice = relationship("EInvoice", back_populates="items")
