"""
Servizio di emissione e-Fatura a partire dagli ordini.

Numerazione, costruzione dei dati fattura, generazione UBL e persistenza
(fattura + righe + log CREATE) avvengono in un'unica transazione.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from efatura.core.exceptions import (
    ErrorCode,
    ExceptionFactory,
    NotConfiguredException,
    ValidationException,
)
from efatura.core.settings import get_gib_settings
from efatura.models.e_invoice import EInvoice
from efatura.models.e_invoice_enums import (
    GibStatus,
    InvoiceKind,
    InvoiceLogAction,
    InvoiceLogStatus,
    InvoiceType,
    OrderStatus,
    PaymentStatus,
    UnitCode,
)
from efatura.models.e_invoice_item import EInvoiceItem
from efatura.models.e_invoice_log import EInvoiceLog
from efatura.models.e_invoice_settings import EInvoiceSettings
from efatura.models.order import Order
from efatura.repository.e_invoice_log_repository import EInvoiceLogRepository
from efatura.repository.e_invoice_repository import EInvoiceRepository
from efatura.repository.e_invoice_settings_repository import EInvoiceSettingsRepository
from efatura.repository.order_repository import OrderRepository
from efatura.schemas.e_invoice_schema import (
    EInvoiceFilterSchema,
    EInvoiceStatsSchema,
    EligibilityResultSchema,
)
from efatura.schemas.invoice_data_schema import CustomerParty, InvoiceData, InvoiceLine, SupplierParty
from efatura.schemas.tax_schema import TaxableItem
from efatura.services.turkish_tax_utils import (
    calculate_order_tax_totals,
    calculate_turkish_vat,
    generate_invoice_number,
    get_vat_rate_for_service,
    round_amount,
    to_decimal,
    validate_turkish_tax_number,
)
from efatura.services.ubl_xml_generator import UBLXMLGenerator

logger = logging.getLogger(__name__)

# TCKN segnaposto per clienti senza identificativo fiscale
PLACEHOLDER_TCKN = "11111111111"
DEFAULT_COUNTRY = "Türkiye"

AutoSendHandler = Callable[[int, int], Any]


class EInvoiceService:
    """Emissione, ricerca e statistiche delle e-Fatura di un'attività"""

    def __init__(
        self,
        db: Session,
        xml_generator: Optional[UBLXMLGenerator] = None,
        auto_send_handler: Optional[AutoSendHandler] = None
    ):
        self.db = db
        self.order_repository = OrderRepository(db)
        self.settings_repository = EInvoiceSettingsRepository(db)
        self.invoice_repository = EInvoiceRepository(db)
        self.log_repository = EInvoiceLogRepository(db)
        self.xml_generator = xml_generator or UBLXMLGenerator()
        self.auto_send_handler = auto_send_handler

    def create_invoice_from_order(
        self,
        business_id: int,
        order_id: int,
        customer_tax_id: Optional[str] = None,
        auto_send: bool = False
    ) -> EInvoice:
        """
        Crea la e-Fatura di un ordine in stato CREATED.

        Raises:
            NotFoundException: ordine inesistente
            NotConfiguredException: e-Fatura non configurata o disabilitata
            ConflictException: esiste già una fattura per l'ordine
            ValidationException: identificativo fiscale o dati fattura non validi
        """
        order = self.order_repository.get_with_details(order_id, business_id)
        if order is None:
            raise ExceptionFactory.order_not_found(order_id)

        settings = self.settings_repository.get_by_business(business_id)
        if settings is None or not settings.is_enabled:
            raise ExceptionFactory.not_configured(business_id)

        # Controllo veloce; il vincolo unique su id_order resta la garanzia finale
        if self.invoice_repository.get_by_order(order_id) is not None:
            raise ExceptionFactory.invoice_already_exists(order_id)

        if not order.items:
            raise ValidationException("Order has no items to invoice", details={"order_id": order_id})

        now = datetime.now()

        try:
            invoice_number = self.generate_invoice_number(business_id, settings, now.year)
            invoice_data = self._build_invoice_data(order, settings, invoice_number, now, customer_tax_id)
            document = self.xml_generator.build_invoice_document(invoice_data)

            invoice = self.invoice_repository.add(self._to_invoice_entity(
                business_id, order, settings, invoice_data, document.xml, document.uuid, document.ettn
            ))
            for line, order_item in zip(invoice_data.invoice_lines, order.items):
                self.db.add(self._to_item_entity(invoice.id_e_invoice, line, order_item.id_order_item))

            self.log_repository.add_entry(
                invoice.id_e_invoice,
                InvoiceLogAction.CREATE.value,
                InvoiceLogStatus.SUCCESS.value,
                request_data=invoice_data.model_dump(mode="json"),
                response_data={"newStatus": GibStatus.CREATED.value},
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(f"Fattura già esistente per l'ordine {order_id} (vincolo univoco)")
            raise ExceptionFactory.invoice_already_exists(order_id)
        except ValidationError as e:
            self.db.rollback()
            raise ValidationException(
                "Invalid invoice data",
                details={"order_id": order_id, "errors": e.errors(include_url=False)}
            )
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(invoice)
        logger.info(f"Fattura {invoice.invoice_number} creata per l'ordine {order_id}")

        if auto_send:
            self._schedule_auto_send(business_id, invoice.id_e_invoice)

        return invoice

    def generate_invoice_number(
        self,
        business_id: int,
        settings: Optional[EInvoiceSettings] = None,
        year: Optional[int] = None
    ) -> str:
        """Incrementa atomicamente il contatore e formatta '<prefisso><anno><progressivo>'. Non esegue commit."""
        if settings is None:
            settings = self.settings_repository.get_by_business(business_id)
            if settings is None:
                raise ExceptionFactory.not_configured(business_id)

        sequence = self.settings_repository.increment_invoice_counter(business_id)
        return generate_invoice_number(
            settings.invoice_series_prefix,
            sequence,
            settings.invoice_number_length,
            year or datetime.now().year,
        )

    def _resolve_customer_tax_id(self, order: Order, customer_tax_id: Optional[str]) -> str:
        tax_id = customer_tax_id or order.customer_vkn_tckn or order.customer.vkn_tckn
        if not tax_id:
            logger.warning(f"Ordine {order.id_order} senza VKN/TCKN cliente: uso del TCKN segnaposto")
            return PLACEHOLDER_TCKN

        validation = validate_turkish_tax_number(tax_id)
        if not validation.is_valid:
            raise ExceptionFactory.invalid_tax_number(tax_id, validation.errors)
        return validation.formatted

    def _build_supplier(self, order: Order, settings: EInvoiceSettings) -> SupplierParty:
        business = order.business
        if not settings.company_vkn:
            raise NotConfiguredException(
                "Company VKN not configured",
                ErrorCode.EINVOICE_NOT_CONFIGURED,
                {"business_id": order.id_business}
            )
        return SupplierParty(
            vkn=settings.company_vkn,
            title=settings.company_title or business.name,
            address=settings.company_address or business.address or "",
            district=settings.company_district or business.district or "",
            city=settings.company_city or business.city or "",
            country=settings.company_country or DEFAULT_COUNTRY,
            postal_code=settings.company_postal_code or business.postal_code,
            phone=settings.company_phone or business.phone,
            email=settings.company_email or business.email,
            website=settings.company_website or business.website,
        )

    def _build_customer(self, order: Order, tax_id: str) -> CustomerParty:
        customer = order.customer
        return CustomerParty(
            vkn_tckn=tax_id,
            title=f"{customer.first_name} {customer.last_name}",
            name=customer.first_name,
            surname=customer.last_name,
            address=customer.address or "No address",
            district=customer.district or "Unknown",
            city=customer.city or "Unknown",
            country=DEFAULT_COUNTRY,
            postal_code=customer.postal_code,
            phone=customer.phone,
            email=customer.email,
        )

    def _build_invoice_lines(self, order: Order) -> Tuple[List[InvoiceLine], List[TaxableItem]]:
        lines: List[InvoiceLine] = []
        taxable_items: List[TaxableItem] = []

        for index, item in enumerate(order.items, start=1):
            service = item.service
            vat_rate = Decimal(get_vat_rate_for_service(service.category))
            quantity = to_decimal(item.quantity)
            unit_price = to_decimal(item.unit_price)
            raw_amount = item.total_price if item.total_price is not None else quantity * unit_price
            line_amount = round_amount(raw_amount)

            tax = calculate_turkish_vat(line_amount, vat_rate)
            lines.append(InvoiceLine(
                id=index,
                name=service.name,
                description=service.description,
                quantity=quantity,
                unit_code=UnitCode.C62,
                unit_price=unit_price,
                line_amount=line_amount,
                vat_rate=vat_rate,
                vat_amount=tax.rounded_vat_amount,
                line_total=line_amount + tax.rounded_vat_amount,
            ))
            taxable_items.append(TaxableItem(
                quantity=quantity,
                unit_price=unit_price,
                vat_rate=vat_rate,
                line_amount=line_amount,
            ))

        return lines, taxable_items

    def _build_invoice_data(
        self,
        order: Order,
        settings: EInvoiceSettings,
        invoice_number: str,
        now: datetime,
        customer_tax_id: Optional[str]
    ) -> InvoiceData:
        lines, taxable_items = self._build_invoice_lines(order)
        totals = calculate_order_tax_totals(taxable_items)

        return InvoiceData(
            invoice_number=invoice_number,
            invoice_date=now.date(),
            invoice_time=now.strftime("%H:%M:%S"),
            invoice_type=InvoiceType.SATIS,
            currency_code="TRY",
            supplier=self._build_supplier(order, settings),
            customer=self._build_customer(order, self._resolve_customer_tax_id(order, customer_tax_id)),
            invoice_lines=lines,
            subtotal_amount=totals.subtotal,
            total_vat_amount=totals.total_vat,
            total_amount=totals.total,
            payable_amount=totals.total,
        )

    @staticmethod
    def _to_invoice_entity(
        business_id: int,
        order: Order,
        settings: EInvoiceSettings,
        data: InvoiceData,
        xml_content: str,
        invoice_uuid: str,
        ettn: str
    ) -> EInvoice:
        customer = data.customer
        return EInvoice(
            kind=InvoiceKind.EFATURA.value,
            id_business=business_id,
            id_order=order.id_order,
            id_customer=order.id_customer,
            invoice_number=data.invoice_number,
            invoice_series_id=settings.invoice_series_prefix,
            invoice_uuid=invoice_uuid,
            ettn=ettn,
            invoice_date=data.invoice_date,
            invoice_time=data.invoice_time,
            invoice_type=data.invoice_type.value,
            currency_code=data.currency_code,
            buyer_vkn_tckn=customer.vkn_tckn,
            buyer_title=customer.title,
            buyer_name=customer.name,
            buyer_surname=customer.surname,
            buyer_address=customer.address,
            buyer_district=customer.district,
            buyer_city=customer.city,
            buyer_country=customer.country,
            buyer_phone=customer.phone,
            buyer_email=customer.email,
            subtotal_amount=data.subtotal_amount,
            vat_amount=data.total_vat_amount,
            total_amount=data.total_amount,
            payable_amount=data.payable_amount,
            ubl_xml_content=xml_content,
            gib_status=GibStatus.CREATED.value,
            gib_status_date=datetime.utcnow(),
        )

    @staticmethod
    def _to_item_entity(invoice_id: int, line: InvoiceLine, order_item_id: int) -> EInvoiceItem:
        return EInvoiceItem(
            id_e_invoice=invoice_id,
            id_order_item=order_item_id,
            line_number=line.id,
            item_name=line.name,
            item_description=line.description,
            quantity=line.quantity,
            unit_code=line.unit_code.value,
            unit_price=line.unit_price,
            line_amount=line.line_amount,
            vat_rate=line.vat_rate,
            vat_amount=line.vat_amount,
            line_total=line.line_total,
        )

    def _schedule_auto_send(self, business_id: int, invoice_id: int) -> None:
        """Consegna la fattura all'invio automatico; l'esito non fa parte della creazione"""
        if self.auto_send_handler is None:
            logger.info(f"Fattura {invoice_id} in coda per l'invio automatico (stato CREATED)")
            return
        try:
            self.auto_send_handler(business_id, invoice_id)
        except Exception as e:
            logger.error(f"Errore nella schedulazione dell'invio automatico della fattura {invoice_id}: {str(e)}")

    def is_order_eligible_for_invoice(self, order_id: int) -> EligibilityResultSchema:
        """Verifica in sola lettura se l'ordine può essere fatturato"""
        order = self.order_repository.get_by_id(order_id)
        if order is None:
            return EligibilityResultSchema(eligible=False, reason="Order not found")

        settings = self.settings_repository.get_by_business(order.id_business)
        if settings is None or not settings.is_enabled:
            return EligibilityResultSchema(eligible=False, reason="E-Invoice not enabled for business")

        if not order.requires_invoice:
            return EligibilityResultSchema(eligible=False, reason="Order marked as not requiring invoice")

        if settings.invoice_on_payment and order.payment_status != PaymentStatus.PAID.value:
            return EligibilityResultSchema(eligible=False, reason="Payment not completed")

        if settings.invoice_on_order_complete and order.status != OrderStatus.COMPLETED.value:
            return EligibilityResultSchema(eligible=False, reason="Order not completed")

        if self.invoice_repository.get_by_order(order_id) is not None:
            return EligibilityResultSchema(eligible=False, reason="Invoice already exists")

        return EligibilityResultSchema(eligible=True)

    def get_invoice(self, business_id: int, invoice_id: int) -> EInvoice:
        return self.invoice_repository.get_for_business_or_raise(business_id, invoice_id)

    def get_invoices(
        self,
        business_id: int,
        filters: Optional[EInvoiceFilterSchema] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[EInvoice], int]:
        return self.invoice_repository.search(business_id, filters, limit, offset)

    def get_invoice_logs(self, business_id: int, invoice_id: int) -> List[EInvoiceLog]:
        self.invoice_repository.get_for_business_or_raise(business_id, invoice_id)
        return self.log_repository.get_by_invoice(invoice_id)

    def get_invoice_stats(self, business_id: int, days: int = 30) -> EInvoiceStatsSchema:
        since = datetime.utcnow() - timedelta(days=days)
        total_count, total_amount = self.invoice_repository.count_and_sum(business_id)
        recent_count, recent_amount = self.invoice_repository.count_and_sum(business_id, since)

        return EInvoiceStatsSchema(
            total_invoices=total_count,
            total_amount=round_amount(total_amount),
            recent_invoices=recent_count,
            recent_amount=round_amount(recent_amount),
            by_status=self.invoice_repository.count_by_status(business_id),
        )

    def get_pending_invoices(self, business_id: int, limit: Optional[int] = None) -> List[EInvoice]:
        """Fatture CREATED in attesa di invio, dalla più vecchia"""
        return self.invoice_repository.get_by_statuses(
            business_id,
            [GibStatus.CREATED.value],
            limit=limit or get_gib_settings().gib_pending_batch_size,
            oldest_first=True,
        )

    def cleanup_draft_invoices(self, business_id: int, older_than_days: int = 7) -> int:
        """Elimina le bozze più vecchie della soglia; restituisce il numero eliminato"""
        cutoff = datetime.utcnow() - timedelta(days=older_than_days)
        try:
            deleted = self.invoice_repository.delete_drafts_older_than(business_id, cutoff)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"Eliminate {deleted} bozze di fattura per l'attività {business_id}")
        return deleted
