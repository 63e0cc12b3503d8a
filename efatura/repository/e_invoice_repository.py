from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from efatura.core.base_repository import BaseRepository
from efatura.core.exceptions import ExceptionFactory
from efatura.models.e_invoice import EInvoice
from efatura.schemas.e_invoice_schema import EInvoiceFilterSchema


class EInvoiceRepository(BaseRepository[EInvoice, int]):

    def __init__(self, session: Session):
        super().__init__(session, EInvoice)

    def get_for_business(self, business_id: int, invoice_id: int) -> Optional[EInvoice]:
        """Recupera una fattura con le righe, limitata all'attività"""
        return self._session.query(EInvoice).options(
            selectinload(EInvoice.items)
        ).filter(
            EInvoice.id_e_invoice == invoice_id,
            EInvoice.id_business == business_id
        ).first()

    def get_for_business_or_raise(self, business_id: int, invoice_id: int) -> EInvoice:
        invoice = self.get_for_business(business_id, invoice_id)
        if invoice is None:
            raise ExceptionFactory.invoice_not_found(invoice_id)
        return invoice

    def get_by_order(self, order_id: int) -> Optional[EInvoice]:
        return self._session.query(EInvoice).filter(EInvoice.id_order == order_id).first()

    def search(
        self,
        business_id: int,
        filters: Optional[EInvoiceFilterSchema] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[EInvoice], int]:
        """Ricerca fatture con filtri; restituisce pagina e totale"""
        query = self._session.query(EInvoice).filter(EInvoice.id_business == business_id)

        if filters:
            if filters.statuses:
                query = query.filter(EInvoice.gib_status.in_(filters.statuses))
            if filters.date_from:
                query = query.filter(EInvoice.invoice_date >= filters.date_from)
            if filters.date_to:
                query = query.filter(EInvoice.invoice_date <= filters.date_to)
            if filters.customer_id:
                query = query.filter(EInvoice.id_customer == filters.customer_id)
            if filters.order_id:
                query = query.filter(EInvoice.id_order == filters.order_id)
            if filters.invoice_number:
                query = query.filter(EInvoice.invoice_number.like(f"%{filters.invoice_number}%"))
            if filters.kind:
                query = query.filter(EInvoice.kind == filters.kind)

        total = query.count()
        invoices = self.paginate(
            query.options(selectinload(EInvoice.items)).order_by(
                EInvoice.date_add.desc(), EInvoice.id_e_invoice.desc()
            ),
            limit,
            offset
        ).all()
        return invoices, total

    def get_by_statuses(
        self,
        business_id: int,
        statuses: List[str],
        limit: Optional[int] = None,
        oldest_first: bool = True
    ) -> List[EInvoice]:
        query = self._session.query(EInvoice).filter(
            EInvoice.id_business == business_id,
            EInvoice.gib_status.in_(statuses)
        )
        ordering = EInvoice.id_e_invoice.asc() if oldest_first else EInvoice.id_e_invoice.desc()
        query = query.order_by(ordering)
        if limit:
            query = query.limit(limit)
        return query.all()

    def get_archivable(
        self,
        business_id: int,
        statuses: List[str],
        invoice_ids: Optional[List[int]] = None,
        created_before: Optional[datetime] = None,
        date_from=None,
        date_to=None
    ) -> List[EInvoice]:
        query = self._session.query(EInvoice).filter(
            EInvoice.id_business == business_id,
            EInvoice.gib_status.in_(statuses)
        )
        if invoice_ids:
            query = query.filter(EInvoice.id_e_invoice.in_(invoice_ids))
        if created_before:
            query = query.filter(EInvoice.date_add < created_before)
        if date_from:
            query = query.filter(EInvoice.invoice_date >= date_from)
        if date_to:
            query = query.filter(EInvoice.invoice_date <= date_to)
        return query.order_by(EInvoice.id_e_invoice.asc()).all()

    def count_and_sum(self, business_id: int, since: Optional[datetime] = None) -> Tuple[int, Decimal]:
        """Numero fatture e somma importi (opzionalmente da una data)"""
        query = self._session.query(
            func.count(EInvoice.id_e_invoice),
            func.coalesce(func.sum(EInvoice.total_amount), 0)
        ).filter(EInvoice.id_business == business_id)
        if since:
            query = query.filter(EInvoice.date_add >= since)
        count, amount = query.one()
        return int(count or 0), Decimal(str(amount or 0))

    def count_by_status(self, business_id: int) -> Dict[str, int]:
        rows = self._session.query(
            EInvoice.gib_status,
            func.count(EInvoice.id_e_invoice)
        ).filter(
            EInvoice.id_business == business_id
        ).group_by(EInvoice.gib_status).all()
        return {status: int(count) for status, count in rows}

    def count_with_statuses(
        self,
        business_id: int,
        statuses: List[str],
        created_before: Optional[datetime] = None
    ) -> int:
        query = self._session.query(func.count(EInvoice.id_e_invoice)).filter(
            EInvoice.id_business == business_id,
            EInvoice.gib_status.in_(statuses)
        )
        if created_before:
            query = query.filter(EInvoice.date_add < created_before)
        return int(query.scalar() or 0)

    def get_status_dates(self, business_id: int, status: str, since: datetime) -> List[datetime]:
        rows = self._session.query(EInvoice.gib_status_date).filter(
            EInvoice.id_business == business_id,
            EInvoice.gib_status == status,
            EInvoice.gib_status_date >= since
        ).all()
        return [row[0] for row in rows if row[0] is not None]

    def delete_drafts_older_than(self, business_id: int, cutoff: datetime) -> int:
        """Eliminazione fisica delle bozze (con righe e log in cascata). Non esegue commit."""
        drafts = self._session.query(EInvoice).filter(
            EInvoice.id_business == business_id,
            EInvoice.gib_status == "DRAFT",
            EInvoice.date_add < cutoff
        ).all()
        for draft in drafts:
            self._session.delete(draft)
        self._session.flush()
        return len(drafts)
