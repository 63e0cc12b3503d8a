from datetime import datetime

from sqlalchemy import Integer, Column, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from efatura.database import Base


class EInvoiceSettings(Base):
    """
    Configurazione e-Fatura per attività

    - current_invoice_number: contatore sequenziale, incrementato atomicamente
    - gib_password / certificate_password: salvate codificate base64
    """
    __tablename__ = "e_invoice_settings"

    id_e_invoice_settings = Column(Integer, primary_key=True, index=True)
    id_business = Column(Integer, ForeignKey("businesses.id_business"), nullable=False, unique=True, index=True)
    is_enabled = Column(Boolean, default=False, nullable=False)

    # Dati fiscali azienda (fallback sui dati dell'attività se vuoti)
    company_vkn = Column(String(10), nullable=True)
    company_title = Column(String(255), nullable=True)
    company_address = Column(String(500), nullable=True)
    company_district = Column(String(100), nullable=True)
    company_city = Column(String(100), nullable=True)
    company_country = Column(String(100), nullable=False, default="Türkiye")
    company_postal_code = Column(String(10), nullable=True)
    company_phone = Column(String(50), nullable=True)
    company_email = Column(String(255), nullable=True)
    company_website = Column(String(255), nullable=True)

    # Numerazione
    invoice_series_prefix = Column(String(10), nullable=False, default="EMU")
    current_invoice_number = Column(Integer, nullable=False, default=0)
    invoice_number_length = Column(Integer, nullable=False, default=8)

    # Automazioni
    auto_send = Column(Boolean, default=False, nullable=False)
    auto_create = Column(Boolean, default=False, nullable=False)
    invoice_on_payment = Column(Boolean, default=True, nullable=False)
    invoice_on_order_complete = Column(Boolean, default=False, nullable=False)

    # Archiviazione
    archive_retention_years = Column(Integer, nullable=False, default=10)
    last_archive_date = Column(DateTime, nullable=True)

    # Portale GIB
    gib_username = Column(String(100), nullable=True)
    gib_password = Column(String(255), nullable=True)
    gib_test_mode = Column(Boolean, default=True, nullable=False)
    gib_portal_url = Column(String(500), nullable=True)

    # Firma elettronica
    certificate_path = Column(String(500), nullable=True)
    certificate_password = Column(String(255), nullable=True)

    date_add = Column(DateTime, default=datetime.utcnow)
    date_upd = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    business = relationship("Business", back_populates="e_invoice_settings")
