import json
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from efatura.core.interfaces import IAppendOnlyRepository
from efatura.models.e_invoice_log import EInvoiceLog


class EInvoiceLogRepository(IAppendOnlyRepository[EInvoiceLog]):
    """Log di audit: le voci vengono solo aggiunte, mai modificate o eliminate"""

    def __init__(self, session: Session):
        self.session = session

    def append(self, entity: EInvoiceLog) -> EInvoiceLog:
        self.session.add(entity)
        self.session.flush()
        return entity

    def add_entry(
        self,
        invoice_id: int,
        action: str,
        status: str,
        request_data: Any = None,
        response_data: Any = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        gib_transaction_id: Optional[str] = None,
    ) -> EInvoiceLog:
        """Crea e aggiunge una voce, serializzando in JSON i payload"""
        return self.append(EInvoiceLog(
            id_e_invoice=invoice_id,
            action=action,
            status=status,
            request_data=self._to_json(request_data),
            response_data=self._to_json(response_data),
            error_code=error_code,
            error_message=error_message,
            gib_transaction_id=gib_transaction_id,
        ))

    def get_by_invoice(self, invoice_id: int) -> List[EInvoiceLog]:
        return self.session.query(EInvoiceLog).filter(
            EInvoiceLog.id_e_invoice == invoice_id
        ).order_by(EInvoiceLog.id_e_invoice_log.asc()).all()

    def get_latest_excluding(self, invoice_id: int, excluded_actions: List[str]) -> List[EInvoiceLog]:
        """Voci dalla più recente, escluse le azioni indicate"""
        return self.session.query(EInvoiceLog).filter(
            EInvoiceLog.id_e_invoice == invoice_id,
            EInvoiceLog.action.notin_(excluded_actions)
        ).order_by(EInvoiceLog.id_e_invoice_log.desc()).all()

    @staticmethod
    def _to_json(payload: Any) -> Optional[str]:
        if payload is None:
            return None
        if isinstance(payload, str):
            return payload
        return json.dumps(payload, default=str, ensure_ascii=False)

    @staticmethod
    def parse_json(payload: Optional[str]) -> Any:
        if not payload:
            return None
        try:
            return json.loads(payload)
        except ValueError:
            return None
