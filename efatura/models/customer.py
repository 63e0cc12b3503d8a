from datetime import datetime

from sqlalchemy import Integer, Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from efatura.database import Base


class Customer(Base):
    __tablename__ = "customers"

    id_customer = Column(Integer, primary_key=True, index=True)
    id_business = Column(Integer, ForeignKey("businesses.id_business"), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    vkn_tckn = Column(String(11), nullable=True)  # VKN (10) o TCKN (11)
    address = Column(String(500), nullable=True)
    district = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    postal_code = Column(String(10), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    date_add = Column(DateTime, default=datetime.utcnow)

    orders = relationship("Order", back_populates="customer")
