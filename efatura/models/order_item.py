from sqlalchemy import Integer, Column, ForeignKey, Numeric, Text
from sqlalchemy.orm import relationship

from efatura.database import Base


class OrderItem(Base):
    __tablename__ = "order_items"

    id_order_item = Column(Integer, primary_key=True, index=True)
    id_order = Column(Integer, ForeignKey("orders.id_order"), nullable=False, index=True)
    id_service = Column(Integer, ForeignKey("services.id_service"), nullable=False, index=True)
    quantity = Column(Numeric(12, 3), nullable=False, default=1)
    unit_price = Column(Numeric(12, 4), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=True)
    notes = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")
    service = relationship("Service")
