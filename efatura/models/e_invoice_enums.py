"""
Enums per e-Fatura - Domini validi del formato UBL-TR e del ciclo di vita GIB
"""

from enum import Enum
from typing import Dict, FrozenSet


class InvoiceKind(str, Enum):
    """Discriminante tra fattura semplice e e-Fatura GIB"""
    BASIC = "BASIC"
    EFATURA = "EFATURA"


class InvoiceType(str, Enum):
    """Tipo logico fattura"""
    SATIS = "SATIS"  # Vendita
    IADE = "IADE"  # Reso
    TEVKIFAT = "TEVKIFAT"  # Ritenuta IVA
    ISTISNA = "ISTISNA"  # Esenzione


class UnitCode(str, Enum):
    """Codici unità di misura UN/ECE"""
    C62 = "C62"  # Pezzo
    KGM = "KGM"  # Chilogrammo
    MTR = "MTR"  # Metro
    MTK = "MTK"  # Metro quadro
    HUR = "HUR"  # Ora
    DAY = "DAY"  # Giorno
    MON = "MON"  # Mese
    LTR = "LTR"  # Litro


class GibStatus(str, Enum):
    """Stato della fattura rispetto al portale GIB"""
    DRAFT = "DRAFT"
    CREATED = "CREATED"
    SENT = "SENT"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    ARCHIVED = "ARCHIVED"


class InvoiceLogAction(str, Enum):
    """Azioni registrate nel log di audit"""
    CREATE = "CREATE"
    SEND = "SEND"
    QUERY_STATUS = "QUERY_STATUS"
    STATUS_UPDATE = "STATUS_UPDATE"
    CANCEL = "CANCEL"
    ARCHIVE = "ARCHIVE"
    RESTORE = "RESTORE"


class InvoiceLogStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class ServiceCategory(str, Enum):
    """Categorie di servizio lavanderia"""
    LAUNDRY = "LAUNDRY"
    DRY_CLEANING = "DRY_CLEANING"
    CARPET_CLEANING = "CARPET_CLEANING"
    UPHOLSTERY_CLEANING = "UPHOLSTERY_CLEANING"
    CURTAIN_CLEANING = "CURTAIN_CLEANING"
    IRONING = "IRONING"
    STAIN_REMOVAL = "STAIN_REMOVAL"
    OTHER = "OTHER"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    REFUNDED = "REFUNDED"


ENTRY_STATUSES: FrozenSet[GibStatus] = frozenset({GibStatus.DRAFT, GibStatus.CREATED})
TERMINAL_STATUSES: FrozenSet[GibStatus] = frozenset({
    GibStatus.ACCEPTED, GibStatus.REJECTED, GibStatus.CANCELLED
})
SENDABLE_STATUSES: FrozenSet[GibStatus] = ENTRY_STATUSES

# ARCHIVED -> stato precedente è gestito dal ripristino, non da questa tabella
ALLOWED_TRANSITIONS: Dict[GibStatus, FrozenSet[GibStatus]] = {
    GibStatus.DRAFT: frozenset({GibStatus.CREATED, GibStatus.CANCELLED}),
    GibStatus.CREATED: frozenset({GibStatus.SENT, GibStatus.REJECTED, GibStatus.CANCELLED}),
    GibStatus.SENT: frozenset({GibStatus.ACCEPTED, GibStatus.REJECTED, GibStatus.CANCELLED}),
    GibStatus.ACCEPTED: frozenset({GibStatus.ARCHIVED}),
    GibStatus.REJECTED: frozenset({GibStatus.ARCHIVED}),
    GibStatus.CANCELLED: frozenset({GibStatus.ARCHIVED}),
    GibStatus.ARCHIVED: frozenset(),
}


def can_transition(current: str, new: str) -> bool:
    """True se il passaggio di stato è ammesso dalla macchina a stati"""
    try:
        current_status = GibStatus(current)
        new_status = GibStatus(new)
    except ValueError:
        return False
    return new_status in ALLOWED_TRANSITIONS[current_status]
