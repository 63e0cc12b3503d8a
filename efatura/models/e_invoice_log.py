from datetime import datetime

from sqlalchemy import Integer, Column, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from efatura.database import Base


class EInvoiceLog(Base):
    """Voce di audit (solo inserimento) per ogni azione sul ciclo di vita della fattura"""
    __tablename__ = "e_invoice_logs"

    id_e_invoice_log = Column(Integer, primary_key=True, index=True)
    id_e_invoice = Column(Integer, ForeignKey("e_invoices.id_e_invoice"), nullable=False, index=True)
    action = Column(String(30), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    request_data = Column(Text, nullable=True)  # JSON
    response_data = Column(Text, nullable=True)  # JSON
    error_code = Column(String(20), nullable=True)
    error_message = Column(Text, nullable=True)
    gib_transaction_id = Column(String(100), nullable=True)
    date_add = Column(DateTime, default=datetime.utcnow)

    e_invoice = relationship("EInvoice", back_populates="logs")
