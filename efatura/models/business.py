from datetime import datetime

from sqlalchemy import Integer, Column, String, DateTime
from sqlalchemy.orm import relationship

from efatura.database import Base


class Business(Base):
    __tablename__ = "businesses"

    id_business = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=True)
    district = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    postal_code = Column(String(10), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    website = Column(String(255), nullable=True)
    date_add = Column(DateTime, default=datetime.utcnow)

    # Relazioni
    e_invoice_settings = relationship("EInvoiceSettings", back_populates="business", uselist=False)
    orders = relationship("Order", back_populates="business")
