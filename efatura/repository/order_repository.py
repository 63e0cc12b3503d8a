from typing import Optional

from sqlalchemy.orm import Session, joinedload, selectinload

from efatura.core.base_repository import BaseRepository
from efatura.models.order import Order
from efatura.models.order_item import OrderItem


class OrderRepository(BaseRepository[Order, int]):
    """Accesso in sola lettura agli ordini da fatturare"""

    def __init__(self, session: Session):
        super().__init__(session, Order)

    def get_with_details(self, order_id: int, business_id: Optional[int] = None) -> Optional[Order]:
        """Ordine con cliente, attività, righe e definizioni di servizio"""
        query = self._session.query(Order).options(
            joinedload(Order.customer),
            joinedload(Order.business),
            selectinload(Order.items).joinedload(OrderItem.service),
        ).filter(Order.id_order == order_id)

        if business_id is not None:
            query = query.filter(Order.id_business == business_id)

        return query.first()
