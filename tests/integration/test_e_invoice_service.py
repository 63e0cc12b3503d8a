"""
Test per l'emissione delle e-Fatura dagli ordini
"""
import json
import threading
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from efatura.core.exceptions import (
    ConflictException,
    ErrorCode,
    NotConfiguredException,
    NotFoundException,
    ValidationException,
)
from efatura.models import EInvoice, EInvoiceSettings, Order
from efatura.schemas.e_invoice_schema import EInvoiceFilterSchema
from efatura.services.e_invoice_service import PLACEHOLDER_TCKN, EInvoiceService
from tests.factories.e_invoice_factory import (
    create_business,
    create_customer,
    create_order,
    create_service,
    seed_invoiceable_order,
)


@pytest.mark.integration
class TestCreateInvoiceFromOrder:
    """Test per EInvoiceService.create_invoice_from_order"""

    def test_end_to_end_creation(self, db_session, seeded):
        """
        Test: creazione completa da ordine pagato

        Arrange: attività con prefisso EMU, lunghezza 8 e contatore a 41
        Act: create_invoice_from_order
        Assert: numero EMU<anno>00000042, stato CREATED, totali coerenti, log CREATE
        """
        service = EInvoiceService(db_session)
        business, order = seeded["business"], seeded["order"]

        invoice = service.create_invoice_from_order(business.id_business, order.id_order)

        assert invoice.invoice_number == f"EMU{seeded['year']}00000042"
        assert invoice.gib_status == "CREATED"
        assert invoice.kind == "EFATURA"
        assert invoice.buyer_vkn_tckn == "10000000146"
        assert invoice.subtotal_amount == Decimal("225.01")
        assert invoice.vat_amount == Decimal("40.50")
        assert invoice.total_amount == Decimal("265.51")
        assert invoice.total_amount == invoice.subtotal_amount + invoice.vat_amount
        assert invoice.payable_amount == invoice.total_amount
        assert len(invoice.ettn) == 32
        assert invoice.invoice_number in invoice.ubl_xml_content

        assert [item.line_number for item in invoice.items] == [1, 2]
        assert invoice.items[0].vat_rate == Decimal("18")
        assert invoice.items[0].line_amount == Decimal("200.01")
        assert invoice.items[0].vat_amount == Decimal("36.00")

        logs = service.get_invoice_logs(business.id_business, invoice.id_e_invoice)
        assert [log.action for log in logs] == ["CREATE"]
        assert logs[0].status == "SUCCESS"
        assert json.loads(logs[0].response_data) == {"newStatus": "CREATED"}

        db_session.refresh(seeded["settings"])
        assert seeded["settings"].current_invoice_number == 42

    def test_second_invoice_for_same_order_conflicts(self, db_session, seeded):
        service = EInvoiceService(db_session)
        business_id, order_id = seeded["business"].id_business, seeded["order"].id_order
        service.create_invoice_from_order(business_id, order_id)

        with pytest.raises(ConflictException) as exc_info:
            service.create_invoice_from_order(business_id, order_id)

        assert exc_info.value.error_code == ErrorCode.INVOICE_ALREADY_EXISTS.value
        assert exc_info.value.status_code == 409

    def test_unique_constraint_is_the_final_guard(self, db_session, seeded):
        """
        Test: due creazioni concorrenti sullo stesso ordine

        Arrange: il controllo preliminare non vede la fattura esistente
        Act: seconda create_invoice_from_order
        Assert: ConflictException dal vincolo unique, contatore non consumato
        """
        service = EInvoiceService(db_session)
        business_id, order_id = seeded["business"].id_business, seeded["order"].id_order
        service.create_invoice_from_order(business_id, order_id)

        with patch.object(service.invoice_repository, "get_by_order", return_value=None):
            with pytest.raises(ConflictException):
                service.create_invoice_from_order(business_id, order_id)

        db_session.refresh(seeded["settings"])
        assert seeded["settings"].current_invoice_number == 42
        assert db_session.query(EInvoice).count() == 1

    def test_numbers_strictly_increase(self, db_session, seeded):
        service = EInvoiceService(db_session)
        business = seeded["business"]
        second_order = create_order(
            db_session, business, seeded["customer"], [(seeded["services"][1], "1", "40")],
            order_number="ORD-0002"
        )

        first = service.create_invoice_from_order(business.id_business, seeded["order"].id_order)
        second = service.create_invoice_from_order(business.id_business, second_order.id_order)

        assert first.invoice_number.endswith("00000042")
        assert second.invoice_number.endswith("00000043")
        assert second.total_amount == Decimal("47.20")

    def test_unknown_order(self, db_session, seeded):
        service = EInvoiceService(db_session)

        with pytest.raises(NotFoundException) as exc_info:
            service.create_invoice_from_order(seeded["business"].id_business, 9999)

        assert exc_info.value.error_code == ErrorCode.ORDER_NOT_FOUND.value

    def test_order_of_other_business_is_not_found(self, db_session, seeded):
        other = create_business(db_session, name="Başka İşletme")
        service = EInvoiceService(db_session)

        with pytest.raises(NotFoundException):
            service.create_invoice_from_order(other.id_business, seeded["order"].id_order)

    def test_disabled_settings(self, db_session, seeded):
        seeded["settings"].is_enabled = False
        db_session.commit()
        service = EInvoiceService(db_session)

        with pytest.raises(NotConfiguredException):
            service.create_invoice_from_order(seeded["business"].id_business, seeded["order"].id_order)

    def test_missing_settings(self, db_session):
        business = create_business(db_session)
        customer = create_customer(db_session, business)
        carpet = create_service(db_session, business)
        order = create_order(db_session, business, customer, [(carpet, "1", "10")])

        with pytest.raises(NotConfiguredException):
            EInvoiceService(db_session).create_invoice_from_order(business.id_business, order.id_order)

    def test_order_without_items(self, db_session, seeded):
        empty_order = create_order(
            db_session, seeded["business"], seeded["customer"], [], order_number="ORD-EMPTY"
        )

        with pytest.raises(ValidationException):
            EInvoiceService(db_session).create_invoice_from_order(
                seeded["business"].id_business, empty_order.id_order
            )

    def test_invalid_explicit_tax_id_rolls_back_counter(self, db_session, seeded):
        service = EInvoiceService(db_session)

        with pytest.raises(ValidationException) as exc_info:
            service.create_invoice_from_order(
                seeded["business"].id_business, seeded["order"].id_order, customer_tax_id="1234567891"
            )

        assert exc_info.value.error_code == ErrorCode.INVALID_TAX_NUMBER.value
        db_session.refresh(seeded["settings"])
        assert seeded["settings"].current_invoice_number == 41
        assert db_session.query(EInvoice).count() == 0

    def test_explicit_vkn_is_used(self, db_session, seeded):
        invoice = EInvoiceService(db_session).create_invoice_from_order(
            seeded["business"].id_business, seeded["order"].id_order, customer_tax_id="0000000018"
        )

        assert invoice.buyer_vkn_tckn == "0000000018"
        assert 'schemeID="VKN"' in invoice.ubl_xml_content

    def test_placeholder_tax_id_when_customer_has_none(self, db_session, seeded):
        business = seeded["business"]
        anonymous = create_customer(db_session, business, vkn_tckn=None, first_name="Mehmet", last_name="Kaya")
        order = create_order(
            db_session, business, anonymous, [(seeded["services"][0], "1", "100")], order_number="ORD-0003"
        )

        invoice = EInvoiceService(db_session).create_invoice_from_order(business.id_business, order.id_order)

        assert invoice.buyer_vkn_tckn == PLACEHOLDER_TCKN
        assert invoice.buyer_title == "Mehmet Kaya"

    def test_supplier_falls_back_to_business_profile(self, db_session, seeded):
        invoice = EInvoiceService(db_session).create_invoice_from_order(
            seeded["business"].id_business, seeded["order"].id_order
        )

        # company_address non configurato: indirizzo dell'attività
        assert "Atatürk Caddesi No:12" in invoice.ubl_xml_content
        assert "Temiz Halı Yıkama Ltd. Şti." in invoice.ubl_xml_content

    def test_auto_send_handler_called(self, db_session, seeded):
        handler = MagicMock()
        service = EInvoiceService(db_session, auto_send_handler=handler)

        invoice = service.create_invoice_from_order(
            seeded["business"].id_business, seeded["order"].id_order, auto_send=True
        )

        handler.assert_called_once_with(seeded["business"].id_business, invoice.id_e_invoice)

    def test_auto_send_failure_does_not_undo_creation(self, db_session, seeded):
        handler = MagicMock(side_effect=RuntimeError("queue down"))
        service = EInvoiceService(db_session, auto_send_handler=handler)

        invoice = service.create_invoice_from_order(
            seeded["business"].id_business, seeded["order"].id_order, auto_send=True
        )

        assert invoice.gib_status == "CREATED"
        assert db_session.query(EInvoice).count() == 1


@pytest.mark.integration
class TestEligibility:
    """Test per is_order_eligible_for_invoice"""

    def test_paid_order_is_eligible(self, db_session, seeded):
        result = EInvoiceService(db_session).is_order_eligible_for_invoice(seeded["order"].id_order)
        assert result.eligible is True
        assert result.reason is None

    def test_unknown_order(self, db_session, seeded):
        result = EInvoiceService(db_session).is_order_eligible_for_invoice(9999)
        assert result.eligible is False
        assert result.reason == "Order not found"

    def test_disabled_settings(self, db_session, seeded):
        seeded["settings"].is_enabled = False
        db_session.commit()

        result = EInvoiceService(db_session).is_order_eligible_for_invoice(seeded["order"].id_order)
        assert result.reason == "E-Invoice not enabled for business"

    def test_order_not_requiring_invoice(self, db_session, seeded):
        seeded["order"].requires_invoice = False
        db_session.commit()

        result = EInvoiceService(db_session).is_order_eligible_for_invoice(seeded["order"].id_order)
        assert result.reason == "Order marked as not requiring invoice"

    def test_unpaid_order(self, db_session, seeded):
        seeded["order"].payment_status = "PENDING"
        db_session.commit()

        result = EInvoiceService(db_session).is_order_eligible_for_invoice(seeded["order"].id_order)
        assert result.eligible is False
        assert result.reason == "Payment not completed"

    def test_incomplete_order_when_completion_required(self, db_session, seeded):
        seeded["settings"].invoice_on_order_complete = True
        seeded["order"].status = "IN_PROGRESS"
        db_session.commit()

        result = EInvoiceService(db_session).is_order_eligible_for_invoice(seeded["order"].id_order)
        assert result.reason == "Order not completed"

    def test_already_invoiced(self, db_session, seeded):
        service = EInvoiceService(db_session)
        service.create_invoice_from_order(seeded["business"].id_business, seeded["order"].id_order)

        result = service.is_order_eligible_for_invoice(seeded["order"].id_order)
        assert result.eligible is False
        assert result.reason == "Invoice already exists"

    def test_eligibility_check_writes_nothing(self, db_session, seeded):
        EInvoiceService(db_session).is_order_eligible_for_invoice(seeded["order"].id_order)

        db_session.refresh(seeded["settings"])
        assert seeded["settings"].current_invoice_number == 41
        assert db_session.query(EInvoice).count() == 0


@pytest.mark.integration
class TestInvoiceQueries:
    """Test per ricerca, statistiche, coda e pulizia bozze"""

    def test_search_and_stats(self, db_session, seeded):
        service = EInvoiceService(db_session)
        business_id = seeded["business"].id_business
        invoice = service.create_invoice_from_order(business_id, seeded["order"].id_order)

        invoices, total = service.get_invoices(
            business_id, EInvoiceFilterSchema(statuses=["CREATED"], invoice_number="00000042")
        )
        assert total == 1
        assert invoices[0].id_e_invoice == invoice.id_e_invoice

        _, none_total = service.get_invoices(business_id, EInvoiceFilterSchema(statuses=["SENT"]))
        assert none_total == 0

        stats = service.get_invoice_stats(business_id)
        assert stats.total_invoices == 1
        assert stats.total_amount == Decimal("265.51")
        assert stats.recent_invoices == 1
        assert stats.by_status == {"CREATED": 1}

    def test_get_invoice_scoped_to_business(self, db_session, seeded):
        service = EInvoiceService(db_session)
        invoice = service.create_invoice_from_order(seeded["business"].id_business, seeded["order"].id_order)
        other = create_business(db_session, name="Başka İşletme")

        assert service.get_invoice(seeded["business"].id_business, invoice.id_e_invoice) is not None
        with pytest.raises(NotFoundException):
            service.get_invoice(other.id_business, invoice.id_e_invoice)

    def test_pending_invoices(self, db_session, seeded):
        service = EInvoiceService(db_session)
        invoice = service.create_invoice_from_order(seeded["business"].id_business, seeded["order"].id_order)

        pending = service.get_pending_invoices(seeded["business"].id_business)

        assert [p.id_e_invoice for p in pending] == [invoice.id_e_invoice]

    def test_cleanup_old_drafts(self, db_session, seeded):
        """
        Test: pulizia bozze

        Arrange: una bozza vecchia di 10 giorni con righe e log
        Act: cleanup_draft_invoices con soglia 7 giorni
        Assert: bozza eliminata con le righe, l'ordine torna fatturabile
        """
        service = EInvoiceService(db_session)
        invoice = service.create_invoice_from_order(seeded["business"].id_business, seeded["order"].id_order)
        invoice.gib_status = "DRAFT"
        invoice.date_add = datetime.utcnow() - timedelta(days=10)
        db_session.commit()

        deleted = service.cleanup_draft_invoices(seeded["business"].id_business, older_than_days=7)

        assert deleted == 1
        assert db_session.query(EInvoice).count() == 0
        assert service.is_order_eligible_for_invoice(seeded["order"].id_order).eligible is True

    def test_cleanup_keeps_recent_drafts(self, db_session, seeded):
        service = EInvoiceService(db_session)
        invoice = service.create_invoice_from_order(seeded["business"].id_business, seeded["order"].id_order)
        invoice.gib_status = "DRAFT"
        db_session.commit()

        assert service.cleanup_draft_invoices(seeded["business"].id_business) == 0
        assert db_session.query(Order).count() == 1


def create_invoices_concurrently(session_factory, business_id: int, order_ids):
    """
    Avvia una create_invoice_from_order per ordine, ognuna in un thread con la propria
    sessione, sincronizzate da una barriera. Restituisce numero fattura o eccezione.
    """
    barrier = threading.Barrier(len(order_ids))
    results = [None] * len(order_ids)

    def worker(index: int, order_id: int) -> None:
        db = session_factory()
        try:
            service = EInvoiceService(db)
            barrier.wait()
            results[index] = service.create_invoice_from_order(business_id, order_id).invoice_number
        except Exception as e:
            results[index] = e
        finally:
            db.close()

    threads = [threading.Thread(target=worker, args=(i, order_id)) for i, order_id in enumerate(order_ids)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return results


@pytest.mark.integration
class TestConcurrentInvoiceCreation:
    """Test di concorrenza su database SQLite condiviso tra thread"""

    def test_same_order_only_one_succeeds(self, file_session_factory):
        """
        Test: due creazioni concorrenti per lo stesso ordine

        Arrange: ordine fatturabile, contatore a 41
        Act: due thread chiamano create_invoice_from_order insieme
        Assert: un successo e un ConflictException, una sola fattura, contatore a 42
        """
        db = file_session_factory()
        seeded = seed_invoiceable_order(db)
        business_id, order_id, year = seeded["business"].id_business, seeded["order"].id_order, seeded["year"]
        db.close()

        results = create_invoices_concurrently(file_session_factory, business_id, [order_id, order_id])

        successes = [r for r in results if isinstance(r, str)]
        conflicts = [r for r in results if isinstance(r, ConflictException)]
        assert successes == [f"EMU{year}00000042"]
        assert len(conflicts) == 1

        db = file_session_factory()
        try:
            assert db.query(EInvoice).count() == 1
            settings = db.query(EInvoiceSettings).filter(EInvoiceSettings.id_business == business_id).one()
            assert settings.current_invoice_number == 42
        finally:
            db.close()

    def test_distinct_numbers_for_concurrent_orders(self, file_session_factory):
        """
        Test: N creazioni concorrenti per ordini diversi della stessa attività

        Arrange: cinque ordini fatturabili, contatore a 41
        Act: cinque thread chiamano create_invoice_from_order insieme
        Assert: cinque numeri distinti e consecutivi da 42 a 46
        """
        db = file_session_factory()
        seeded = seed_invoiceable_order(db)
        business, customer, service = seeded["business"], seeded["customer"], seeded["services"][1]
        order_ids = [seeded["order"].id_order] + [
            create_order(db, business, customer, [(service, "1", "40")], order_number=f"ORD-10{i}").id_order
            for i in range(4)
        ]
        business_id, year = business.id_business, seeded["year"]
        db.close()

        results = create_invoices_concurrently(file_session_factory, business_id, order_ids)

        assert all(isinstance(r, str) for r in results), results
        assert sorted(results) == [f"EMU{year}{n:08d}" for n in range(42, 47)]
