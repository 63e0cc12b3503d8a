"""
Factory per InvoiceData di test (tre righe, aliquote 18% e 8%)
"""
from datetime import date
from decimal import Decimal

from efatura.schemas.invoice_data_schema import CustomerParty, InvoiceData, InvoiceLine, SupplierParty


def make_invoice_data(customer_id: str = "10000000146", **kwargs) -> InvoiceData:
    """
    Crea un InvoiceData coerente: imponibile 240.01, KDV 41.70, totale 281.71.

    Args:
        customer_id: VKN o TCKN del cliente
        **kwargs: Campi da sovrascrivere

    Returns:
        InvoiceData validato
    """
    lines = [
        InvoiceLine(
            id=1, name="Halı Yıkama", description="Makine halısı",
            quantity=Decimal("6"), unit_price=Decimal("33.335"),
            line_amount=Decimal("200.01"), vat_rate=Decimal("18"),
            vat_amount=Decimal("36.00"), line_total=Decimal("236.01"),
        ),
        InvoiceLine(
            id=2, name="Kitap",
            quantity=Decimal("1.5"), unit_price=Decimal("10"),
            line_amount=Decimal("15.00"), vat_rate=Decimal("8"),
            vat_amount=Decimal("1.20"), line_total=Decimal("16.20"),
        ),
        InvoiceLine(
            id=3, name="Ütü",
            quantity=Decimal("2"), unit_price=Decimal("12.5"),
            line_amount=Decimal("25.00"), vat_rate=Decimal("18"),
            vat_amount=Decimal("4.50"), line_total=Decimal("29.50"),
        ),
    ]
    data = {
        "invoice_number": "EMU202400000042",
        "invoice_date": date(2024, 3, 15),
        "invoice_time": "14:30:00",
        "supplier": SupplierParty(
            vkn="1234567890", title="Temiz Halı Yıkama Ltd. Şti.",
            address="Atatürk Caddesi No:12", district="Kadıköy", city="İstanbul",
            postal_code="34710", phone="02165550000",
        ),
        "customer": CustomerParty(
            vkn_tckn=customer_id, title="Ayşe Yılmaz", name="Ayşe", surname="Yılmaz",
            address="Bağdat Caddesi No:45", district="Maltepe", city="İstanbul",
        ),
        "invoice_lines": lines,
        "subtotal_amount": Decimal("240.01"),
        "total_vat_amount": Decimal("41.70"),
        "total_amount": Decimal("281.71"),
        "payable_amount": Decimal("281.71"),
        **kwargs
    }
    return InvoiceData(**data)
