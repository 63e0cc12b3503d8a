"""
Modelli Pydantic per il protocollo del portale GIB
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class GibClientConfig(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    test_mode: bool = True
    portal_url: Optional[str] = Field(None, description="WSDL alternativo al default test/produzione")
    certificate_path: Optional[str] = None
    certificate_password: Optional[str] = None


class SendInvoiceRequest(BaseModel):
    invoice_uuid: str
    invoice_number: str
    ettn: str
    signed_xml_content: str
    receiver_identifier: str


class SendInvoiceResponse(BaseModel):
    success: bool
    transaction_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class InvoiceStatusResponse(BaseModel):
    invoice_uuid: str
    status: str  # SENT, ACCEPTED, REJECTED, CANCELLED
    status_date: Optional[datetime] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class InvoiceListResponse(BaseModel):
    invoices: List[Dict[str, Any]] = Field(default_factory=list)
