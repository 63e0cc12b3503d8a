from sqlalchemy import Integer, Column, String, Text, ForeignKey, Numeric

from efatura.database import Base
from efatura.models.e_invoice_enums import ServiceCategory


class Service(Base):
    """Servizio offerto dall'attività; la categoria determina l'aliquota KDV"""
    __tablename__ = "services"

    id_service = Column(Integer, primary_key=True, index=True)
    id_business = Column(Integer, ForeignKey("businesses.id_business"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, default=ServiceCategory.OTHER.value)
    base_price = Column(Numeric(12, 2), nullable=True)
