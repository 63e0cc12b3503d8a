from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from efatura.core.base_repository import BaseRepository
from efatura.core.exceptions import NotFoundException
from efatura.models.e_invoice_settings import EInvoiceSettings


class EInvoiceSettingsRepository(BaseRepository[EInvoiceSettings, int]):

    def __init__(self, session: Session):
        super().__init__(session, EInvoiceSettings)

    def get_by_business(self, business_id: int) -> Optional[EInvoiceSettings]:
        return self._session.query(EInvoiceSettings).filter(
            EInvoiceSettings.id_business == business_id
        ).first()

    def increment_invoice_counter(self, business_id: int) -> int:
        """
        Incrementa il contatore fatture e restituisce il nuovo valore.

        Un solo UPDATE atomico lato database: il lock di riga acquisito resta attivo fino al
        commit della transazione chiamante, quindi due chiamate concorrenti non leggono mai
        lo stesso valore. Non esegue commit.
        """
        result = self._session.execute(
            update(EInvoiceSettings)
            .where(EInvoiceSettings.id_business == business_id)
            .values(current_invoice_number=EInvoiceSettings.current_invoice_number + 1)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            raise NotFoundException("EInvoiceSettings", business_id)

        return self._session.execute(
            select(EInvoiceSettings.current_invoice_number)
            .where(EInvoiceSettings.id_business == business_id)
        ).scalar_one()
