from datetime import datetime

from sqlalchemy import Integer, Column, String, Text, DateTime, Date, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.orm import relationship

from efatura.database import Base


class EInvoice(Base):
    """
    Fattura emessa da un ordine (relazione 1:1 con l'ordine)

    - kind: 'EFATURA' (documento UBL-TR inviato al GIB) o 'BASIC' (campi GIB vuoti)
    - gib_status: DRAFT, CREATED, SENT, ACCEPTED, REJECTED, CANCELLED, ARCHIVED
    """
    __tablename__ = "e_invoices"
    __table_args__ = (
        UniqueConstraint("id_order", name="uq_e_invoices_order"),
        UniqueConstraint("id_business", "invoice_number", name="uq_e_invoices_business_number"),
    )

    id_e_invoice = Column(Integer, primary_key=True, index=True)
    kind = Column(String(10), nullable=False, default="EFATURA", index=True)
    id_business = Column(Integer, ForeignKey("businesses.id_business"), nullable=False, index=True)
    id_order = Column(Integer, ForeignKey("orders.id_order"), nullable=False, index=True)

    # Numerazione e identificativi
    invoice_number = Column(String(50), nullable=False, index=True)
    invoice_series_id = Column(String(10), nullable=True)
    invoice_uuid = Column(String(36), nullable=True, index=True)
    ettn = Column(String(32), nullable=True)
    invoice_date = Column(Date, nullable=False, index=True)
    invoice_time = Column(String(8), nullable=False)
    invoice_type = Column(String(20), nullable=False, default="SATIS")
    currency_code = Column(String(3), nullable=False, default="TRY")

    # Acquirente
    buyer_vkn_tckn = Column(String(11), nullable=False)
    buyer_title = Column(String(255), nullable=False)
    buyer_name = Column(String(100), nullable=True)
    buyer_surname = Column(String(100), nullable=True)
    buyer_address = Column(String(500), nullable=True)
    buyer_district = Column(String(100), nullable=True)
    buyer_city = Column(String(100), nullable=True)
    buyer_country = Column(String(100), nullable=True)
    buyer_phone = Column(String(50), nullable=True)
    buyer_email = Column(String(255), nullable=True)
    id_customer = Column(Integer, ForeignKey("customers.id_customer"), nullable=True, index=True)

    # Importi
    subtotal_amount = Column(Numeric(12, 2), nullable=False)
    vat_amount = Column(Numeric(12, 2), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    payable_amount = Column(Numeric(12, 2), nullable=False)

    # Documenti
    ubl_xml_content = Column(Text, nullable=True)
    signed_xml_content = Column(Text, nullable=True)

    # Stato GIB
    gib_status = Column(String(20), nullable=False, default="CREATED", index=True)
    gib_status_date = Column(DateTime, nullable=True)
    gib_error_code = Column(String(20), nullable=True)
    gib_error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=True)

    date_add = Column(DateTime, default=datetime.utcnow, index=True)
    date_upd = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relazioni
    order = relationship("Order", back_populates="e_invoice")
    items = relationship(
        "EInvoiceItem",
        back_populates="e_invoice",
        cascade="all, delete-orphan",
        order_by="EInvoiceItem.line_number"
    )
    logs = relationship(
        "EInvoiceLog",
        back_populates="e_invoice",
        cascade="all, delete-orphan",
        order_by="EInvoiceLog.id_e_invoice_log"
    )
