from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class EInvoiceFilterSchema(BaseModel):
    statuses: Optional[List[str]] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    customer_id: Optional[int] = None
    order_id: Optional[int] = None
    invoice_number: Optional[str] = Field(None, description="Ricerca per sottostringa")
    kind: Optional[str] = None


class EInvoiceStatsSchema(BaseModel):
    total_invoices: int
    total_amount: Decimal
    recent_invoices: int
    recent_amount: Decimal
    by_status: Dict[str, int] = Field(default_factory=dict)


class EligibilityResultSchema(BaseModel):
    eligible: bool
    reason: Optional[str] = None


class ArchiveResultSchema(BaseModel):
    archived_count: int
    archived_invoice_ids: List[int] = Field(default_factory=list)


class ArchiveStatsSchema(BaseModel):
    total_invoices: int
    archived_invoices: int
    eligible_for_archive: int
    archive_rate: int  # percentuale arrotondata
    archive_retention_years: Optional[int] = None
    last_archive_date: Optional[datetime] = None
    monthly_archived: Dict[str, int] = Field(default_factory=dict)


class StatusSyncResultSchema(BaseModel):
    checked: int = 0
    updated: int = 0
    failed: int = 0
