"""
Modelli Pydantic per i risultati delle utilità fiscali turche
"""

from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class TaxCalculationResult(BaseModel):
    net_amount: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    gross_amount: Decimal
    rounded_vat_amount: Decimal
    rounded_gross_amount: Decimal


class TaxableItem(BaseModel):
    """Riga da tassare: l'aliquota esplicita ha la precedenza sulla categoria"""
    quantity: Decimal = Field(..., ge=0)
    unit_price: Decimal = Field(..., ge=0)
    vat_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    service_category: Optional[str] = None
    line_amount: Optional[Decimal] = Field(None, ge=0)


class VatBreakdownEntry(BaseModel):
    amount: Decimal = Decimal("0")
    vat_amount: Decimal = Decimal("0")


class OrderTaxTotals(BaseModel):
    subtotal: Decimal
    total_vat: Decimal
    total: Decimal
    vat_breakdown: Dict[str, VatBreakdownEntry] = Field(default_factory=dict)


class VatGroup(BaseModel):
    """Subtotale KDV per aliquota (TaxSubtotal UBL)"""
    vat_rate: Decimal
    taxable_amount: Decimal
    vat_amount: Decimal


class TaxNumberValidationResult(BaseModel):
    is_valid: bool
    type: str  # VKN, TCKN, INVALID
    formatted: str
    errors: List[str] = Field(default_factory=list)


class AddressValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
