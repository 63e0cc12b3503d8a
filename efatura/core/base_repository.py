"""
Base Repository implementation seguendo SRP e OCP
"""
import re
from typing import Generic, TypeVar, Optional, Dict, Any, Type, Union
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from efatura.core.interfaces import IRepository
from efatura.core.exceptions import InfrastructureException

T = TypeVar('T')
K = TypeVar('K')


class BaseRepository(Generic[T, K], IRepository[T, K]):
    """Repository base con implementazioni comuni"""

    def __init__(self, session: Session, model_class: Type[T]):
        self._session = session
        self._model_class = model_class

    def get_by_id(self, id: K) -> Optional[T]:
        """Ottiene un'entità per ID"""
        try:
            id_field = self._get_id_field()
            return self._session.query(self._model_class).filter(
                getattr(self._model_class, id_field) == id
            ).first()
        except SQLAlchemyError as e:
            raise InfrastructureException(f"Database error retrieving {self._model_class.__name__}: {str(e)}")

    def get_count(self, **filters) -> int:
        """Conta le entità con filtri opzionali"""
        try:
            query = self._session.query(self._model_class)
            query = self._apply_filters(query, filters)
            return query.count()
        except SQLAlchemyError as e:
            raise InfrastructureException(f"Database error counting {self._model_class.__name__}: {str(e)}")

    def add(self, entity: Union[T, dict]) -> T:
        """Aggiunge un'entità alla transazione corrente senza commit"""
        if isinstance(entity, dict):
            entity = self._model_class(**entity)
        self._session.add(entity)
        self._session.flush()
        return entity

    def _apply_filters(self, query, filters: Dict[str, Any]):
        """Applica filtri alla query"""
        for field_name, value in filters.items():
            if value is None:
                continue

            if hasattr(self._model_class, field_name):
                field = getattr(self._model_class, field_name)

                if isinstance(value, (list, tuple, set)):
                    # Filtro IN per liste
                    query = query.filter(field.in_(list(value)))
                elif isinstance(value, str) and '%' in value:
                    # Filtro LIKE per stringhe
                    query = query.filter(field.like(value))
                else:
                    query = query.filter(field == value)

        return query

    def paginate(self, query, limit: int = 50, offset: int = 0):
        """Applica paginazione a una query"""
        return query.offset(offset).limit(limit)

    def _get_id_field(self) -> str:
        """Trova il campo ID corretto per il modello"""
        model_name = self._model_class.__name__

        patterns = [
            'id',
            f'id_{model_name.lower()}',
            f'id_{self._convert_camel_to_snake(model_name)}',
        ]

        for pattern in patterns:
            if hasattr(self._model_class, pattern):
                return pattern

        raise ValueError(f"Cannot find ID field for {model_name}. Tried patterns: {patterns}")

    def _convert_camel_to_snake(self, camel_str: str) -> str:
        """Converte CamelCase in snake_case"""
        s1 = re.sub('(.)([A-Z][a-z]+)', r'\1_\2', camel_str)
        return re.sub('([a-z0-9])([A-Z])', r'\1_\2', s1).lower()
