"""
Ciclo di vita delle e-Fatura dopo la creazione: invio al GIB, sincronizzazione stato,
aggiornamento manuale, annullamento, archiviazione e ripristino.

Ogni azione aggiunge una voce al log di audit nello stesso commit della modifica di stato.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from efatura.core.exceptions import (
    BaseApplicationException,
    BusinessRuleException,
    ErrorCode,
    ExceptionFactory,
    ExternalServiceException,
    NotConfiguredException,
    ValidationException,
)
from efatura.core.settings import get_gib_settings
from efatura.database import SessionLocal
from efatura.models.e_invoice import EInvoice
from efatura.models.e_invoice_enums import (
    GibStatus,
    InvoiceLogAction,
    InvoiceLogStatus,
    SENDABLE_STATUSES,
    TERMINAL_STATUSES,
    can_transition,
)
from efatura.models.e_invoice_settings import EInvoiceSettings
from efatura.repository.e_invoice_log_repository import EInvoiceLogRepository
from efatura.repository.e_invoice_repository import EInvoiceRepository
from efatura.repository.e_invoice_settings_repository import EInvoiceSettingsRepository
from efatura.schemas.e_invoice_schema import ArchiveResultSchema, ArchiveStatsSchema, StatusSyncResultSchema
from efatura.schemas.gib_schema import InvoiceStatusResponse, SendInvoiceRequest, SendInvoiceResponse
from efatura.services.external.gib_portal_service import GibPortalService
from efatura.services.ubl_xml_generator import generate_ettn

logger = logging.getLogger(__name__)

ARCHIVE_AFTER_DAYS = 180
DEFAULT_RESTORE_STATUS = GibStatus.ACCEPTED.value
SENDABLE = frozenset(status.value for status in SENDABLE_STATUSES)
CANCELLABLE_STATUSES = frozenset({GibStatus.DRAFT.value, GibStatus.CREATED.value, GibStatus.SENT.value})
ARCHIVABLE_STATUSES = sorted(status.value for status in TERMINAL_STATUSES)

GibClientFactory = Callable[[EInvoiceSettings], GibPortalService]


class EInvoiceLifecycleService:

    def __init__(self, db: Session, gib_client_factory: Optional[GibClientFactory] = None):
        self.db = db
        self.invoice_repository = EInvoiceRepository(db)
        self.settings_repository = EInvoiceSettingsRepository(db)
        self.log_repository = EInvoiceLogRepository(db)
        self.gib_client_factory = gib_client_factory or GibPortalService.from_settings

    # --- Supporto ---

    def _get_enabled_settings(self, business_id: int) -> EInvoiceSettings:
        settings = self.settings_repository.get_by_business(business_id)
        if settings is None or not settings.is_enabled:
            raise ExceptionFactory.not_configured(business_id)
        return settings

    def _get_gib_settings(self, business_id: int) -> EInvoiceSettings:
        settings = self._get_enabled_settings(business_id)
        if not settings.gib_username or not settings.gib_password:
            raise NotConfiguredException(
                "GIB Portal credentials not configured",
                ErrorCode.GIB_CREDENTIALS_MISSING,
                {"business_id": business_id}
            )
        return settings

    @asynccontextmanager
    async def _gib_session(self, settings: EInvoiceSettings):
        gib = self.gib_client_factory(settings)
        try:
            yield gib
        finally:
            await gib.close()

    def _set_status(self, invoice: EInvoice, new_status: str) -> str:
        """Applica la transizione se ammessa; restituisce lo stato precedente"""
        old_status = invoice.gib_status
        if not can_transition(old_status, new_status):
            raise ExceptionFactory.invalid_status_transition(old_status, new_status)
        invoice.gib_status = new_status
        invoice.gib_status_date = datetime.utcnow()
        return old_status

    def _commit(self) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    # --- Invio ---

    async def send_invoice(self, business_id: int, invoice_id: int) -> SendInvoiceResponse:
        """
        Firma (se configurato un certificato) e invia la fattura al portale GIB.

        Errori del portale non ritentabili portano la fattura in REJECTED; quelli
        ritentabili lasciano lo stato invariato registrando il codice errore.
        """
        invoice = self.invoice_repository.get_for_business_or_raise(business_id, invoice_id)
        if invoice.gib_status not in SENDABLE:
            raise BusinessRuleException(
                f"Invoice with status {invoice.gib_status} cannot be sent",
                ErrorCode.INVALID_STATUS_TRANSITION,
                {"invoice_id": invoice_id, "status": invoice.gib_status}
            )
        settings = self._get_gib_settings(business_id)

        if invoice.gib_status == GibStatus.DRAFT.value:
            self._set_status(invoice, GibStatus.CREATED.value)
            self.log_repository.add_entry(
                invoice.id_e_invoice,
                InvoiceLogAction.STATUS_UPDATE.value,
                InvoiceLogStatus.SUCCESS.value,
                response_data={"oldStatus": GibStatus.DRAFT.value, "newStatus": GibStatus.CREATED.value},
            )

        if not invoice.ettn:
            invoice.ettn = generate_ettn()
        if not invoice.invoice_uuid:
            invoice.invoice_uuid = str(uuid.uuid4())

        async with self._gib_session(settings) as gib:
            xml_content = invoice.ubl_xml_content
            if settings.certificate_path:
                try:
                    xml_content = await gib.sign_xml_content(xml_content)
                except ExternalServiceException as e:
                    logger.warning(f"Firma non riuscita per la fattura {invoice.invoice_number}, invio senza firma: {e.message}")

            request = SendInvoiceRequest(
                invoice_uuid=invoice.invoice_uuid,
                invoice_number=invoice.invoice_number,
                ettn=invoice.ettn,
                signed_xml_content=xml_content,
                receiver_identifier=invoice.buyer_vkn_tckn,
            )
            response = await gib.send_with_retry(request)

        request_log = {
            "invoiceNumber": invoice.invoice_number,
            "invoiceUuid": invoice.invoice_uuid,
            "ettn": invoice.ettn,
            "receiverIdentifier": invoice.buyer_vkn_tckn,
        }

        if response.success:
            self._set_status(invoice, GibStatus.SENT.value)
            invoice.signed_xml_content = xml_content
            invoice.sent_at = datetime.utcnow()
            invoice.gib_error_code = None
            invoice.gib_error_message = None
        else:
            invoice.gib_error_code = response.error_code
            invoice.gib_error_message = response.error_message
            if not GibPortalService.is_retryable_error(response.error_code):
                self._set_status(invoice, GibStatus.REJECTED.value)

        response_log = response.model_dump(mode="json")
        response_log["newStatus"] = invoice.gib_status
        self.log_repository.add_entry(
            invoice.id_e_invoice,
            InvoiceLogAction.SEND.value,
            InvoiceLogStatus.SUCCESS.value if response.success else InvoiceLogStatus.FAILED.value,
            request_data=request_log,
            response_data=response_log,
            error_code=response.error_code,
            error_message=response.error_message,
            gib_transaction_id=response.transaction_id,
        )
        self._commit()

        if response.success:
            logger.info(f"Fattura {invoice.invoice_number} inviata (transazione {response.transaction_id})")
        else:
            logger.error(f"Invio fattura {invoice.invoice_number} fallito: {response.error_code} {response.error_message}")
        return response

    async def process_pending_invoices(self, business_id: int, limit: Optional[int] = None) -> Dict[int, bool]:
        """Invia le fatture CREATED in coda; restituisce l'esito per fattura"""
        pending = self.invoice_repository.get_by_statuses(
            business_id,
            [GibStatus.CREATED.value],
            limit=limit or get_gib_settings().gib_pending_batch_size,
        )
        results: Dict[int, bool] = {}
        for invoice in pending:
            try:
                response = await self.send_invoice(business_id, invoice.id_e_invoice)
                results[invoice.id_e_invoice] = response.success
            except BaseApplicationException as e:
                logger.error(f"Invio in coda fallito per la fattura {invoice.id_e_invoice}: {e.message}")
                results[invoice.id_e_invoice] = False
        return results

    # --- Stato ---

    async def _sync_invoice(self, invoice: EInvoice, gib: GibPortalService) -> Optional[InvoiceStatusResponse]:
        try:
            status = await gib.query_invoice_status(invoice.invoice_uuid)
        except Exception as e:
            self.log_repository.add_entry(
                invoice.id_e_invoice,
                InvoiceLogAction.QUERY_STATUS.value,
                InvoiceLogStatus.FAILED.value,
                request_data={"invoiceUuid": invoice.invoice_uuid},
                error_message=str(e),
            )
            self._commit()
            raise

        if status is None:
            self.log_repository.add_entry(
                invoice.id_e_invoice,
                InvoiceLogAction.QUERY_STATUS.value,
                InvoiceLogStatus.FAILED.value,
                request_data={"invoiceUuid": invoice.invoice_uuid},
                error_message="Invoice not found on GIB portal",
            )
            self._commit()
            return None

        old_status = invoice.gib_status
        if status.status != old_status:
            if can_transition(old_status, status.status):
                invoice.gib_status = status.status
                invoice.gib_status_date = status.status_date or datetime.utcnow()
                invoice.gib_error_code = status.error_code
                invoice.gib_error_message = status.error_message
            else:
                logger.warning(
                    f"Stato GIB {status.status} ignorato per la fattura {invoice.invoice_number} in stato {old_status}"
                )

        response_log = status.model_dump(mode="json")
        response_log["oldStatus"] = old_status
        response_log["newStatus"] = invoice.gib_status
        self.log_repository.add_entry(
            invoice.id_e_invoice,
            InvoiceLogAction.QUERY_STATUS.value,
            InvoiceLogStatus.SUCCESS.value,
            request_data={"invoiceUuid": invoice.invoice_uuid},
            response_data=response_log,
            error_code=status.error_code,
            error_message=status.error_message,
        )
        self._commit()
        return status

    async def sync_invoice_status(self, business_id: int, invoice_id: int) -> Optional[InvoiceStatusResponse]:
        """Interroga il portale e applica lo stato ricevuto. Solleva sugli errori di trasporto."""
        invoice = self.invoice_repository.get_for_business_or_raise(business_id, invoice_id)
        if not invoice.invoice_uuid:
            raise BusinessRuleException(
                "Invoice has no UUID to query",
                details={"invoice_id": invoice_id}
            )
        settings = self._get_gib_settings(business_id)

        async with self._gib_session(settings) as gib:
            return await self._sync_invoice(invoice, gib)

    async def sync_all_statuses(self, business_id: int, limit: Optional[int] = None) -> StatusSyncResultSchema:
        """Sincronizza le fatture SENT; gli errori vengono contati, non propagati"""
        settings = self._get_gib_settings(business_id)
        invoices = self.invoice_repository.get_by_statuses(
            business_id,
            [GibStatus.SENT.value],
            limit=limit or get_gib_settings().gib_sync_batch_size,
        )

        result = StatusSyncResultSchema()
        async with self._gib_session(settings) as gib:
            for invoice in invoices:
                result.checked += 1
                old_status = invoice.gib_status
                try:
                    await self._sync_invoice(invoice, gib)
                except Exception as e:
                    logger.error(f"Sincronizzazione stato fallita per la fattura {invoice.invoice_number}: {str(e)}")
                    result.failed += 1
                    continue
                if invoice.gib_status != old_status:
                    result.updated += 1

        logger.info(
            f"Sincronizzazione stati GIB: {result.checked} verificate, {result.updated} aggiornate, {result.failed} errori"
        )
        return result

    def update_status(
        self,
        business_id: int,
        invoice_id: int,
        new_status: str,
        reason: Optional[str] = None
    ) -> EInvoice:
        """Aggiornamento manuale dello stato secondo la macchina a stati"""
        valid_statuses = [status.value for status in GibStatus if status != GibStatus.ARCHIVED]
        if new_status not in valid_statuses:
            raise ValidationException(
                f"Invalid status: {new_status}",
                details={"valid_statuses": valid_statuses}
            )

        invoice = self.invoice_repository.get_for_business_or_raise(business_id, invoice_id)
        old_status = self._set_status(invoice, new_status)
        self.log_repository.add_entry(
            invoice.id_e_invoice,
            InvoiceLogAction.STATUS_UPDATE.value,
            InvoiceLogStatus.SUCCESS.value,
            request_data={"reason": reason},
            response_data={"oldStatus": old_status, "newStatus": new_status},
        )
        self._commit()
        logger.info(f"Fattura {invoice.invoice_number}: stato {old_status} -> {new_status}")
        return invoice

    async def cancel_invoice(self, business_id: int, invoice_id: int, reason: str) -> EInvoice:
        """Annulla una fattura non terminale; se già inviata l'annullamento passa dal portale"""
        invoice = self.invoice_repository.get_for_business_or_raise(business_id, invoice_id)
        if invoice.gib_status not in CANCELLABLE_STATUSES:
            raise ExceptionFactory.invalid_status_transition(invoice.gib_status, GibStatus.CANCELLED.value)

        if invoice.gib_status == GibStatus.SENT.value:
            settings = self._get_gib_settings(business_id)
            async with self._gib_session(settings) as gib:
                cancelled = await gib.cancel_invoice(invoice.invoice_uuid, reason)

            if not cancelled:
                self.log_repository.add_entry(
                    invoice.id_e_invoice,
                    InvoiceLogAction.CANCEL.value,
                    InvoiceLogStatus.FAILED.value,
                    request_data={"reason": reason},
                    error_message="GIB Portal cancellation failed",
                )
                self._commit()
                raise ExternalServiceException(
                    "GIB Portal cancellation failed",
                    details={"invoice_id": invoice_id}
                )

        old_status = self._set_status(invoice, GibStatus.CANCELLED.value)
        invoice.gib_error_message = reason
        self.log_repository.add_entry(
            invoice.id_e_invoice,
            InvoiceLogAction.CANCEL.value,
            InvoiceLogStatus.SUCCESS.value,
            request_data={"reason": reason},
            response_data={"oldStatus": old_status, "newStatus": GibStatus.CANCELLED.value},
        )
        self._commit()
        logger.info(f"Fattura {invoice.invoice_number} annullata")
        return invoice

    # --- Archiviazione ---

    def archive_invoices(
        self,
        business_id: int,
        invoice_ids: Optional[List[int]] = None,
        archive_all: bool = False,
        date_from=None,
        date_to=None
    ) -> ArchiveResultSchema:
        """Archivia fatture in stato terminale (per id, per periodo o tutte le più vecchie di 6 mesi)"""
        if not invoice_ids and not archive_all and not (date_from and date_to):
            raise ValidationException("Specify invoice ids, a date range or archive_all")

        settings = self._get_enabled_settings(business_id)
        created_before = datetime.utcnow() - timedelta(days=ARCHIVE_AFTER_DAYS) if archive_all else None

        invoices = self.invoice_repository.get_archivable(
            business_id,
            ARCHIVABLE_STATUSES,
            invoice_ids=invoice_ids if not archive_all else None,
            created_before=created_before,
            date_from=date_from,
            date_to=date_to,
        )

        archived_ids: List[int] = []
        for invoice in invoices:
            previous_status = self._set_status(invoice, GibStatus.ARCHIVED.value)
            self.log_repository.add_entry(
                invoice.id_e_invoice,
                InvoiceLogAction.ARCHIVE.value,
                InvoiceLogStatus.SUCCESS.value,
                request_data={"invoiceNumber": invoice.invoice_number},
                response_data={"previousStatus": previous_status, "newStatus": GibStatus.ARCHIVED.value},
            )
            archived_ids.append(invoice.id_e_invoice)

        settings.last_archive_date = datetime.utcnow()
        self._commit()

        logger.info(f"Archiviate {len(archived_ids)} fatture per l'attività {business_id}")
        return ArchiveResultSchema(archived_count=len(archived_ids), archived_invoice_ids=archived_ids)

    def _find_previous_status(self, invoice_id: int) -> str:
        """Stato precedente all'archiviazione dal log più recente che ne riporta uno"""
        entries = self.log_repository.get_latest_excluding(invoice_id, [InvoiceLogAction.ARCHIVE.value])
        terminal = {status.value for status in TERMINAL_STATUSES}
        for entry in entries:
            data = self.log_repository.parse_json(entry.response_data)
            if not isinstance(data, dict):
                continue
            candidate = data.get("newStatus") or data.get("status")
            if candidate in terminal:
                return candidate
        return DEFAULT_RESTORE_STATUS

    def restore_invoice(self, business_id: int, invoice_id: int) -> EInvoice:
        invoice = self.invoice_repository.get_for_business_or_raise(business_id, invoice_id)
        if invoice.gib_status != GibStatus.ARCHIVED.value:
            raise BusinessRuleException(
                "Only archived invoices can be restored",
                ErrorCode.INVALID_STATUS_TRANSITION,
                {"invoice_id": invoice_id, "status": invoice.gib_status}
            )

        restored_status = self._find_previous_status(invoice.id_e_invoice)
        invoice.gib_status = restored_status
        invoice.gib_status_date = datetime.utcnow()
        self.log_repository.add_entry(
            invoice.id_e_invoice,
            InvoiceLogAction.RESTORE.value,
            InvoiceLogStatus.SUCCESS.value,
            request_data={"invoiceNumber": invoice.invoice_number},
            response_data={"previousStatus": GibStatus.ARCHIVED.value, "newStatus": restored_status},
        )
        self._commit()
        logger.info(f"Fattura {invoice.invoice_number} ripristinata in stato {restored_status}")
        return invoice

    def get_archive_stats(self, business_id: int) -> ArchiveStatsSchema:
        now = datetime.utcnow()
        total = self.invoice_repository.get_count(id_business=business_id)
        archived = self.invoice_repository.get_count(id_business=business_id, gib_status=GibStatus.ARCHIVED.value)
        eligible = self.invoice_repository.count_with_statuses(
            business_id, ARCHIVABLE_STATUSES, created_before=now - timedelta(days=ARCHIVE_AFTER_DAYS)
        )

        monthly: Dict[str, int] = {}
        for status_date in self.invoice_repository.get_status_dates(
            business_id, GibStatus.ARCHIVED.value, now - timedelta(days=365)
        ):
            month = status_date.strftime("%Y-%m")
            monthly[month] = monthly.get(month, 0) + 1

        settings = self.settings_repository.get_by_business(business_id)
        return ArchiveStatsSchema(
            total_invoices=total,
            archived_invoices=archived,
            eligible_for_archive=eligible,
            archive_rate=int(archived * 100 / total + 0.5) if total else 0,
            archive_retention_years=settings.archive_retention_years if settings else None,
            last_archive_date=settings.last_archive_date if settings else None,
            monthly_archived=dict(sorted(monthly.items())),
        )

    async def test_connection(self, business_id: int) -> bool:
        settings = self._get_gib_settings(business_id)
        async with self._gib_session(settings) as gib:
            return await gib.test_connection()


_background_tasks = set()


def create_auto_send_handler(
    session_factory=SessionLocal,
    gib_client_factory: Optional[GibClientFactory] = None
) -> Callable[[int, int], None]:
    """
    Handler per EInvoiceService.auto_send_handler: pianifica l'invio sul loop attivo con
    una sessione dedicata. Senza loop attivo la fattura resta in coda (CREATED).
    """

    async def _send(business_id: int, invoice_id: int) -> None:
        db = session_factory()
        try:
            service = EInvoiceLifecycleService(db, gib_client_factory)
            await service.send_invoice(business_id, invoice_id)
        except Exception as e:
            logger.error(f"Invio automatico fallito per la fattura {invoice_id}: {str(e)}")
        finally:
            db.close()

    def handler(business_id: int, invoice_id: int) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.info(f"Nessun event loop attivo: fattura {invoice_id} lasciata in coda")
            return
        task = loop.create_task(_send(business_id, invoice_id))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)

    return handler
