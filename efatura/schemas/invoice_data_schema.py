"""
Modelli Pydantic per i dati di fattura UBL-TR (valore transitorio, non persistito)
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from efatura.models.e_invoice_enums import InvoiceType, UnitCode

CENT = Decimal("0.01")


class SupplierParty(BaseModel):
    """Fornitore: identificato sempre da VKN"""
    vkn: str = Field(..., min_length=10, max_length=10)
    title: str = Field(..., min_length=1)
    address: str
    district: str
    city: str
    country: str = "Türkiye"
    postal_code: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None

    @field_validator('vkn')
    @classmethod
    def validate_vkn_digits(cls, v):
        if not v.isdigit():
            raise ValueError('VKN deve contenere solo cifre')
        return v


class CustomerParty(BaseModel):
    """Cliente: VKN (10 cifre) o TCKN (11 cifre)"""
    vkn_tckn: str = Field(..., min_length=10, max_length=11)
    title: str = Field(..., min_length=1)
    name: Optional[str] = None
    surname: Optional[str] = None
    address: str
    district: str
    city: str
    country: str = "Türkiye"
    postal_code: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None

    @field_validator('vkn_tckn')
    @classmethod
    def validate_vkn_tckn_digits(cls, v):
        if not v.isdigit():
            raise ValueError('VKN/TCKN deve contenere solo cifre')
        return v

    @property
    def scheme_id(self) -> str:
        return "VKN" if len(self.vkn_tckn) == 10 else "TCKN"

    @property
    def display_name(self) -> str:
        if self.name and self.surname:
            return f"{self.name} {self.surname}"
        return self.title


class InvoiceLine(BaseModel):
    id: int = Field(..., ge=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    quantity: Decimal = Field(..., ge=0)
    unit_code: UnitCode = UnitCode.C62
    unit_price: Decimal = Field(..., ge=0)
    line_amount: Decimal
    vat_rate: Decimal = Field(..., ge=0, le=100)
    vat_amount: Decimal
    line_total: Decimal

    @model_validator(mode='after')
    def validate_line_total(self):
        if self.line_total.quantize(CENT) != (self.line_amount + self.vat_amount).quantize(CENT):
            raise ValueError(f'Riga {self.id}: line_total deve essere line_amount + vat_amount')
        return self


class InvoiceData(BaseModel):
    invoice_number: str = Field(..., min_length=1, max_length=50)
    invoice_date: date
    invoice_time: str = Field(..., pattern=r'^\d{2}:\d{2}:\d{2}$')
    invoice_type: InvoiceType = InvoiceType.SATIS
    currency_code: str = Field(default="TRY", min_length=3, max_length=3)

    supplier: SupplierParty
    customer: CustomerParty
    invoice_lines: List[InvoiceLine] = Field(..., min_length=1)

    subtotal_amount: Decimal
    total_vat_amount: Decimal
    total_amount: Decimal
    payable_amount: Decimal

    @model_validator(mode='after')
    def validate_totals(self):
        self.check_totals()
        return self

    def check_totals(self) -> None:
        """Verifica gli invarianti sui totali al centesimo"""
        if self.total_amount.quantize(CENT) != (self.subtotal_amount + self.total_vat_amount).quantize(CENT):
            raise ValueError('total_amount deve essere subtotal_amount + total_vat_amount')
        line_sum = sum((line.line_amount for line in self.invoice_lines), Decimal("0"))
        if line_sum.quantize(CENT) != self.subtotal_amount.quantize(CENT):
            raise ValueError('subtotal_amount deve essere la somma degli importi di riga')
        vat_sum = sum((line.vat_amount for line in self.invoice_lines), Decimal("0"))
        if vat_sum.quantize(CENT) != self.total_vat_amount.quantize(CENT):
            raise ValueError('total_vat_amount deve essere la somma dell\'IVA di riga')
