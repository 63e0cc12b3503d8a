"""
Generatore XML UBL 2.1 (personalizzazione TR1.2) per e-Fatura.

Trasformazione pura: dato un InvoiceData produce sempre la stessa struttura, salvo
UUID ed ETTN generati ad ogni chiamata.

Formattazione numerica:
    - importi monetari: 2 decimali
    - quantità: 3 decimali
    - prezzi unitari: 4 decimali
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

from lxml import etree

from efatura.schemas.invoice_data_schema import CustomerParty, InvoiceData, InvoiceLine, SupplierParty
from efatura.services.turkish_tax_utils import (
    group_vat_by_rate,
    round_amount,
    validate_tckn,
    validate_turkish_tax_number,
    validate_vkn,
)

INVOICE_NS = "urn:oasis:names:specification:ubl:schema:xsd:Invoice-2"
CAC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
CBC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"
UDT_NS = "urn:un:unece:uncefact:data:specification:UnqualifiedDataTypesSchemaModule:2"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"

NSMAP: Dict[Optional[str], str] = {
    None: INVOICE_NS,
    "cac": CAC_NS,
    "cbc": CBC_NS,
    "udt": UDT_NS,
    "xsi": XSI_NS,
}

SCHEMA_LOCATION = f"{INVOICE_NS} UBL-Invoice-2.1.xsd"

UBL_VERSION_ID = "2.1"
CUSTOMIZATION_ID = "TR1.2"
PROFILE_ID = "TICARIFATURA"
INVOICE_TYPE_CODE = "SATIS"
INVOICE_NOTE = "Laundry Pro ile oluşturulmuştur"
TAX_TYPE_CODE = "0015"
VAT_SCHEME_NAME = "KDV"
INCOME_TAX_SCHEME_NAME = "Gelir Vergisi"

__all__ = [
    "UBLDocument",
    "UBLXMLGenerator",
    "generate_invoice_xml",
    "build_invoice_document",
    "generate_ettn",
    "validate_vkn",
    "validate_tckn",
    "validate_turkish_tax_number",
]


@dataclass(frozen=True)
class UBLDocument:
    xml: str
    uuid: str
    ettn: str


def generate_ettn() -> str:
    """ETTN: UUID senza trattini, maiuscolo (32 caratteri esadecimali)"""
    return uuid.uuid4().hex.upper()


def format_amount(value) -> str:
    return f"{round_amount(value, 2):.2f}"


def format_quantity(value) -> str:
    return f"{round_amount(value, 3):.3f}"


def format_unit_price(value) -> str:
    return f"{round_amount(value, 4):.4f}"


class UBLXMLGenerator:
    """Costruisce il documento UBL-TR a partire da un InvoiceData"""

    def build_invoice_document(self, invoice_data: InvoiceData) -> UBLDocument:
        document_uuid = str(uuid.uuid4())
        ettn = generate_ettn()

        root = self._build_tree(invoice_data, document_uuid, ettn)
        xml_bytes = etree.tostring(
            root,
            pretty_print=True,
            xml_declaration=True,
            encoding="UTF-8",
            standalone=True,
        )
        return UBLDocument(xml=xml_bytes.decode("utf-8"), uuid=document_uuid, ettn=ettn)

    def generate_invoice_xml(self, invoice_data: InvoiceData) -> str:
        return self.build_invoice_document(invoice_data).xml

    def _build_tree(self, data: InvoiceData, document_uuid: str, ettn: str) -> etree._Element:
        invoice = etree.Element(f"{{{INVOICE_NS}}}Invoice", nsmap=NSMAP)
        invoice.set(f"{{{XSI_NS}}}schemaLocation", SCHEMA_LOCATION)

        issue_date = data.invoice_date.strftime("%Y-%m-%d")

        # Intestazione (ordine fisso)
        self._add_cbc(invoice, "UBLVersionID", UBL_VERSION_ID)
        self._add_cbc(invoice, "CustomizationID", CUSTOMIZATION_ID)
        self._add_cbc(invoice, "ProfileID", PROFILE_ID)
        self._add_cbc(invoice, "ID", data.invoice_number)
        self._add_cbc(invoice, "CopyIndicator", "false")
        self._add_cbc(invoice, "UUID", document_uuid)
        self._add_cbc(invoice, "IssueDate", issue_date)
        self._add_cbc(invoice, "IssueTime", data.invoice_time)
        self._add_cbc(invoice, "InvoiceTypeCode", INVOICE_TYPE_CODE)
        self._add_cbc(invoice, "Note", INVOICE_NOTE)
        self._add_cbc(invoice, "DocumentCurrencyCode", data.currency_code)
        self._add_cbc(invoice, "LineCountNumeric", str(len(data.invoice_lines)))

        reference = self._add_cac(invoice, "AdditionalDocumentReference")
        self._add_cbc(reference, "ID", ettn)
        self._add_cbc(reference, "IssueDate", issue_date)
        self._add_cbc(reference, "DocumentType", "ETTN")

        self._add_supplier_party(invoice, data.supplier)
        self._add_customer_party(invoice, data.customer)
        self._add_tax_total(invoice, data)
        self._add_legal_monetary_total(invoice, data)

        for line in data.invoice_lines:
            self._add_invoice_line(invoice, line, data.currency_code)

        return invoice

    # --- METODI DI SUPPORTO ---

    def _add_cbc(self, parent, tag: str, value: str, attrs: Optional[Dict[str, str]] = None):
        el = etree.SubElement(parent, f"{{{CBC_NS}}}{tag}")
        if attrs:
            for key, attr_value in attrs.items():
                el.set(key, attr_value)
        el.text = value
        return el

    def _add_cac(self, parent, tag: str):
        return etree.SubElement(parent, f"{{{CAC_NS}}}{tag}")

    def _add_amount(self, parent, tag: str, value: Decimal, currency: str):
        return self._add_cbc(parent, tag, format_amount(value), {"currencyID": currency})

    def _add_postal_address(self, party, street: str, district: str, city: str,
                            country: str, postal_code: Optional[str] = None):
        address = self._add_cac(party, "PostalAddress")
        self._add_cbc(address, "StreetName", street)
        self._add_cbc(address, "CitySubdivisionName", district)
        self._add_cbc(address, "CityName", city)
        if postal_code:
            self._add_cbc(address, "PostalZone", postal_code)
        country_el = self._add_cac(address, "Country")
        self._add_cbc(country_el, "Name", country)

    def _add_contact(self, party, phone: Optional[str], email: Optional[str]):
        if not phone and not email:
            return
        contact = self._add_cac(party, "Contact")
        if phone:
            self._add_cbc(contact, "Telephone", phone)
        if email:
            self._add_cbc(contact, "ElectronicMail", email)

    def _add_supplier_party(self, parent, supplier: SupplierParty):
        supplier_party = self._add_cac(parent, "AccountingSupplierParty")
        party = self._add_cac(supplier_party, "Party")

        identification = self._add_cac(party, "PartyIdentification")
        self._add_cbc(identification, "ID", supplier.vkn, {"schemeID": "VKN"})

        party_name = self._add_cac(party, "PartyName")
        self._add_cbc(party_name, "Name", supplier.title)

        self._add_postal_address(
            party, supplier.address, supplier.district, supplier.city,
            supplier.country, supplier.postal_code
        )

        tax_scheme_block = self._add_cac(party, "PartyTaxScheme")
        self._add_cbc(tax_scheme_block, "TaxLevelCode", TAX_TYPE_CODE)
        tax_scheme = self._add_cac(tax_scheme_block, "TaxScheme")
        self._add_cbc(tax_scheme, "Name", INCOME_TAX_SCHEME_NAME)

        self._add_contact(party, supplier.phone, supplier.email)

    def _add_customer_party(self, parent, customer: CustomerParty):
        customer_party = self._add_cac(parent, "AccountingCustomerParty")
        party = self._add_cac(customer_party, "Party")

        identification = self._add_cac(party, "PartyIdentification")
        self._add_cbc(identification, "ID", customer.vkn_tckn, {"schemeID": customer.scheme_id})

        party_name = self._add_cac(party, "PartyName")
        self._add_cbc(party_name, "Name", customer.display_name)

        self._add_postal_address(
            party, customer.address, customer.district, customer.city,
            customer.country, customer.postal_code
        )

        self._add_contact(party, customer.phone, customer.email)

    def _add_tax_category(self, parent, vat_rate: Decimal):
        category = self._add_cac(parent, "TaxCategory")
        self._add_cbc(category, "Percent", format_amount(vat_rate))
        scheme = self._add_cac(category, "TaxScheme")
        self._add_cbc(scheme, "Name", VAT_SCHEME_NAME)
        self._add_cbc(scheme, "TaxTypeCode", TAX_TYPE_CODE)

    def _add_tax_total(self, parent, data: InvoiceData):
        currency = data.currency_code
        tax_total = self._add_cac(parent, "TaxTotal")
        self._add_amount(tax_total, "TaxAmount", data.total_vat_amount, currency)

        for group in group_vat_by_rate(data.invoice_lines):
            subtotal = self._add_cac(tax_total, "TaxSubtotal")
            self._add_amount(subtotal, "TaxableAmount", group.taxable_amount, currency)
            self._add_amount(subtotal, "TaxAmount", group.vat_amount, currency)
            self._add_tax_category(subtotal, group.vat_rate)

    def _add_legal_monetary_total(self, parent, data: InvoiceData):
        currency = data.currency_code
        monetary_total = self._add_cac(parent, "LegalMonetaryTotal")
        self._add_amount(monetary_total, "LineExtensionAmount", data.subtotal_amount, currency)
        self._add_amount(monetary_total, "TaxExclusiveAmount", data.subtotal_amount, currency)
        self._add_amount(monetary_total, "TaxInclusiveAmount", data.total_amount, currency)
        self._add_amount(monetary_total, "PayableAmount", data.payable_amount, currency)

    def _add_invoice_line(self, parent, line: InvoiceLine, currency: str):
        invoice_line = self._add_cac(parent, "InvoiceLine")
        self._add_cbc(invoice_line, "ID", str(line.id))
        self._add_cbc(
            invoice_line, "InvoicedQuantity", format_quantity(line.quantity),
            {"unitCode": line.unit_code.value}
        )
        self._add_amount(invoice_line, "LineExtensionAmount", line.line_amount, currency)

        tax_total = self._add_cac(invoice_line, "TaxTotal")
        self._add_amount(tax_total, "TaxAmount", line.vat_amount, currency)
        subtotal = self._add_cac(tax_total, "TaxSubtotal")
        self._add_amount(subtotal, "TaxableAmount", line.line_amount, currency)
        self._add_amount(subtotal, "TaxAmount", line.vat_amount, currency)
        self._add_tax_category(subtotal, line.vat_rate)

        item = self._add_cac(invoice_line, "Item")
        if line.description:
            self._add_cbc(item, "Description", line.description)
        self._add_cbc(item, "Name", line.name)

        price = self._add_cac(invoice_line, "Price")
        self._add_cbc(
            price, "PriceAmount", format_unit_price(line.unit_price), {"currencyID": currency}
        )


ubl_xml_generator = UBLXMLGenerator()


def generate_invoice_xml(invoice_data: InvoiceData) -> str:
    return ubl_xml_generator.generate_invoice_xml(invoice_data)


def build_invoice_document(invoice_data: InvoiceData) -> UBLDocument:
    return ubl_xml_generator.build_invoice_document(invoice_data)
