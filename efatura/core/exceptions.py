"""
Sistema di gestione errori centralizzato per il motore e-Fatura
"""
from abc import ABC
from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(Enum):
    """Codici errore standardizzati"""
    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_TAX_NUMBER = "INVALID_TAX_NUMBER"

    # Business logic errors
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    INVOICE_ALREADY_EXISTS = "INVOICE_ALREADY_EXISTS"
    EINVOICE_NOT_CONFIGURED = "EINVOICE_NOT_CONFIGURED"
    GIB_CREDENTIALS_MISSING = "GIB_CREDENTIALS_MISSING"

    # Not found errors
    ENTITY_NOT_FOUND = "ENTITY_NOT_FOUND"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    INVOICE_NOT_FOUND = "INVOICE_NOT_FOUND"

    # Infrastructure errors
    DATABASE_ERROR = "DATABASE_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    CERTIFICATE_ERROR = "CERTIFICATE_ERROR"


class BaseApplicationException(Exception, ABC):
    """Base exception per l'applicazione"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 400
    ):
        self.message = message
        self.error_code = error_code.value
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Converte l'eccezione in dizionario per la risposta API"""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "status_code": self.status_code
        }


class DomainException(BaseApplicationException):
    """Eccezioni del dominio business"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.BUSINESS_RULE_VIOLATION,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 400
    ):
        super().__init__(message, error_code, details, status_code)


class ValidationException(DomainException):
    """Errori di validazione"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details)


class BusinessRuleException(DomainException):
    """Violazione regole business"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.BUSINESS_RULE_VIOLATION,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details)


class ConflictException(DomainException):
    """Risorsa già esistente (es. fattura già emessa per l'ordine)"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.ALREADY_EXISTS,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details, 409)


class NotConfiguredException(DomainException):
    """Configurazione e-Fatura assente o disabilitata"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.EINVOICE_NOT_CONFIGURED,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details, 412)


class NotFoundException(BaseApplicationException):
    """Entità non trovata"""

    def __init__(
        self,
        entity_type: str,
        entity_id: Any = None,
        details: Optional[Dict[str, Any]] = None,
        error_code: ErrorCode = ErrorCode.ENTITY_NOT_FOUND
    ):
        if entity_id is not None:
            message = f"{entity_type} with id '{entity_id}' not found"
        else:
            message = f"{entity_type} not found"

        error_details = details or {}
        if entity_id is not None:
            error_details["entity_id"] = entity_id
        error_details["entity_type"] = entity_type

        super().__init__(
            message,
            error_code,
            error_details,
            404
        )


class InfrastructureException(BaseApplicationException):
    """Errori di infrastruttura"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DATABASE_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details, 500)


class ExternalServiceException(BaseApplicationException):
    """Errori di comunicazione con servizi esterni (portale GIB, certificati)"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details, 502)


class ExceptionFactory:
    """Factory per creare eccezioni comuni"""

    @staticmethod
    def order_not_found(order_id: int) -> NotFoundException:
        return NotFoundException("Order", order_id, error_code=ErrorCode.ORDER_NOT_FOUND)

    @staticmethod
    def invoice_not_found(invoice_id: int) -> NotFoundException:
        return NotFoundException("EInvoice", invoice_id, error_code=ErrorCode.INVOICE_NOT_FOUND)

    @staticmethod
    def invoice_already_exists(order_id: int) -> ConflictException:
        return ConflictException(
            "Invoice already exists for this order",
            ErrorCode.INVOICE_ALREADY_EXISTS,
            {"order_id": order_id}
        )

    @staticmethod
    def not_configured(business_id: int) -> NotConfiguredException:
        return NotConfiguredException(
            "E-Invoice not configured or disabled",
            details={"business_id": business_id}
        )

    @staticmethod
    def invalid_tax_number(tax_number: str, errors: Optional[list] = None) -> ValidationException:
        return ValidationException(
            f"Invalid tax number: {tax_number}",
            ErrorCode.INVALID_TAX_NUMBER,
            {"tax_number": tax_number, "errors": errors or []}
        )

    @staticmethod
    def invalid_status_transition(current_status: str, new_status: str) -> BusinessRuleException:
        return BusinessRuleException(
            f"Invoice with status {current_status} cannot move to {new_status}",
            ErrorCode.INVALID_STATUS_TRANSITION,
            {"current_status": current_status, "new_status": new_status}
        )
