"""
Interfacce base per il sistema seguendo ISP (Interface Segregation Principle)
"""
from abc import ABC, abstractmethod
from typing import Generic, TypeVar, Optional, List

T = TypeVar('T')
K = TypeVar('K')


class IRepository(Generic[T, K], ABC):
    """Interface base per repository seguendo ISP"""

    @abstractmethod
    def get_by_id(self, id: K) -> Optional[T]:
        """Ottiene un'entità per ID"""
        pass

    @abstractmethod
    def get_count(self, **filters) -> int:
        """Conta le entità con filtri opzionali"""
        pass

    @abstractmethod
    def add(self, entity: T) -> T:
        """Aggiunge un'entità alla transazione corrente senza commit"""
        pass


class IAppendOnlyRepository(Generic[T], ABC):
    """Interface per repository di sola aggiunta (log di audit)"""

    @abstractmethod
    def append(self, entity: T) -> T:
        """Aggiunge una voce senza mai modificarla"""
        pass

    @abstractmethod
    def get_by_invoice(self, invoice_id: int) -> List[T]:
        """Voci di una fattura in ordine di completamento"""
        pass
