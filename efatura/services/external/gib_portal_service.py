"""
Client SOAP del portale GIB (Gelir İdaresi Başkanlığı) per l'invio delle e-Fatura.

Contratto di propagazione degli errori:
    - send_invoice: non solleva mai; errori business e di trasporto diventano un
      SendInvoiceResponse con success=False
    - query_invoice_status / get_invoice_list: sollevano sugli errori di trasporto
    - cancel_invoice / test_connection: non sollevano, restituiscono False
"""

import asyncio
import base64
import logging
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple

import httpx
from zeep import AsyncClient, Settings
from zeep.helpers import serialize_object
from zeep.transports import AsyncTransport

from efatura.core.exceptions import ErrorCode, ExternalServiceException
from efatura.core.settings import GibSettings, get_gib_settings
from efatura.schemas.gib_schema import (
    GibClientConfig,
    InvoiceListResponse,
    InvoiceStatusResponse,
    SendInvoiceRequest,
    SendInvoiceResponse,
)
from efatura.schemas.tax_schema import TaxNumberValidationResult
from efatura.services.external.xml_signature_service import XmlSignatureService
from efatura.services.turkish_tax_utils import validate_turkish_tax_number

logger = logging.getLogger(__name__)


class GibErrorCode:
    SUCCESS = "0"
    INVALID_CREDENTIALS = "1001"
    INVALID_INVOICE_FORMAT = "1002"
    DUPLICATE_INVOICE = "1003"
    INVALID_TAX_NUMBER = "1004"
    CERTIFICATE_ERROR = "1005"
    SYSTEM_ERROR = "9999"
    SOAP_ERROR = "SOAP_ERROR"


GIB_ERROR_MESSAGES: Dict[str, str] = {
    GibErrorCode.INVALID_CREDENTIALS: "GIB Portal kullanıcı bilgileri hatalı",
    GibErrorCode.INVALID_INVOICE_FORMAT: "Fatura formatı geçersiz",
    GibErrorCode.DUPLICATE_INVOICE: "Bu fatura numarası daha önce kullanılmış",
    GibErrorCode.INVALID_TAX_NUMBER: "Vergi/TC kimlik numarası geçersiz",
    GibErrorCode.CERTIFICATE_ERROR: "E-imza sertifikası hatası",
    GibErrorCode.SYSTEM_ERROR: "GIB Portal sistem hatası",
}
DEFAULT_ERROR_MESSAGE = "Bilinmeyen hata oluştu"

RETRYABLE_ERROR_CODES = frozenset({GibErrorCode.SYSTEM_ERROR, GibErrorCode.SOAP_ERROR})

# Codici stato portale -> stato interno
GIB_STATUS_MAPPING: Dict[str, str] = {
    "100": "SENT",
    "110": "ACCEPTED",
    "120": "REJECTED",
    "130": "CANCELLED",
}


def decode_stored_secret(value: Optional[str]) -> Optional[str]:
    """Le credenziali sono salvate codificate base64 nelle impostazioni"""
    if not value:
        return value
    try:
        return base64.b64decode(value.encode("ascii"), validate=True).decode("utf-8")
    except (ValueError, UnicodeError):
        # Valori legacy salvati in chiaro
        return value


def encode_secret(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


class GibPortalService:
    """
    Sessione SOAP verso il portale GIB per un set di credenziali.

    Le chiamate sulla stessa istanza, compresa l'inizializzazione lazy della sessione,
    sono serializzate da un asyncio.Lock e limitate dal timeout configurato; un timeout
    è trattato come errore di trasporto.
    """

    def __init__(
        self,
        config: GibClientConfig,
        settings: Optional[GibSettings] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.config = config
        self.settings = settings or get_gib_settings()
        self.timeout = self.settings.gib_timeout
        # Trasporto httpx alternativo per le operazioni SOAP (es. httpx.MockTransport)
        self.http_transport = http_transport
        self._client: Optional[AsyncClient] = None
        self._http_client: Optional[httpx.AsyncClient] = None
        self._wsdl_client: Optional[httpx.Client] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, e_invoice_settings, gib_settings: Optional[GibSettings] = None) -> "GibPortalService":
        """Crea il client dalle impostazioni e-Fatura dell'attività"""
        config = GibClientConfig(
            username=e_invoice_settings.gib_username,
            password=decode_stored_secret(e_invoice_settings.gib_password),
            test_mode=e_invoice_settings.gib_test_mode,
            portal_url=e_invoice_settings.gib_portal_url,
            certificate_path=e_invoice_settings.certificate_path,
            certificate_password=decode_stored_secret(e_invoice_settings.certificate_password),
        )
        return cls(config, gib_settings)

    @property
    def wsdl_url(self) -> str:
        if self.config.portal_url:
            return self.config.portal_url
        if self.config.test_mode:
            return self.settings.gib_test_wsdl_url
        return self.settings.gib_prod_wsdl_url

    def _build_client(self) -> Tuple[AsyncClient, httpx.AsyncClient, httpx.Client]:
        """Crea client zeep e client httpx della sessione; non modifica lo stato dell'istanza"""
        auth = (self.config.username, self.config.password)

        # Il WSDL viene caricato in modo sincrono, le operazioni in modo asincrono
        wsdl_client = httpx.Client(auth=auth, timeout=self.timeout)
        http_client = httpx.AsyncClient(auth=auth, timeout=self.timeout, transport=self.http_transport)
        transport = AsyncTransport(client=http_client, wsdl_client=wsdl_client)

        # AsyncTransport sostituisce gli header dei client httpx
        wsdl_client.headers["User-Agent"] = self.settings.gib_user_agent
        http_client.headers["User-Agent"] = self.settings.gib_user_agent

        try:
            client = AsyncClient(
                wsdl=self.wsdl_url,
                transport=transport,
                settings=Settings(strict=False, xml_huge_tree=True)
            )
        except Exception:
            wsdl_client.close()
            raise
        return client, http_client, wsdl_client

    async def _initialize(self) -> None:
        try:
            client, http_client, wsdl_client = await asyncio.wait_for(
                asyncio.to_thread(self._build_client), timeout=self.timeout
            )
        except Exception as e:
            logger.error(f"Errore nell'inizializzazione del client GIB: {str(e)}")
            raise ExternalServiceException(
                "Failed to connect to GIB Portal",
                ErrorCode.NETWORK_ERROR,
                {"wsdl_url": self.wsdl_url, "original_error": str(e)}
            )

        await self._close_session()
        self._client = client
        self._http_client = http_client
        self._wsdl_client = wsdl_client
        logger.info(f"Client GIB inizializzato ({'test' if self.config.test_mode else 'produzione'})")

    async def initialize_client(self) -> None:
        """Crea (o sostituisce) il client SOAP verso il WSDL configurato"""
        async with self._lock:
            await self._initialize()

    async def _close_session(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        if self._wsdl_client is not None:
            self._wsdl_client.close()
            self._wsdl_client = None
        self._client = None

    async def close(self) -> None:
        async with self._lock:
            await self._close_session()

    async def _call(self, operation: str, request: Dict[str, Any]) -> Dict[str, Any]:
        """Esegue un'operazione SOAP e restituisce il nodo 'return' come dizionario"""
        async with self._lock:
            if self._client is None:
                await self._initialize()

            method = getattr(self._client.service, operation)
            try:
                result = await asyncio.wait_for(method(request=request), timeout=self.timeout)
            except asyncio.TimeoutError:
                raise ExternalServiceException(
                    f"GIB Portal call {operation} timed out after {self.timeout}s",
                    ErrorCode.NETWORK_ERROR,
                    {"operation": operation}
                )

        data = serialize_object(result, dict)
        if isinstance(data, dict) and "return" in data:
            data = data["return"]
        return data or {}

    async def send_invoice(self, request: SendInvoiceRequest) -> SendInvoiceResponse:
        """Invia la fattura firmata; non solleva eccezioni"""
        try:
            soap_request = {
                "ETTN": request.ettn,
                "FATURA_UUID": request.invoice_uuid,
                "BELGE_NO": request.invoice_number,
                "ALICI_VKN": request.receiver_identifier,
                "FATURA_ICERIK": base64.b64encode(request.signed_xml_content.encode("utf-8")).decode("ascii"),
            }
            result = await self._call("sendInvoice", soap_request)
        except Exception as e:
            logger.error(f"Errore di comunicazione SOAP nell'invio fattura {request.invoice_number}: {str(e)}")
            return SendInvoiceResponse(
                success=False,
                error_code=GibErrorCode.SOAP_ERROR,
                error_message=f"SOAP communication error: {str(e)}"
            )

        result_code = str(result.get("SONUC", ""))
        if result_code == GibErrorCode.SUCCESS:
            logger.info(f"Fattura {request.invoice_number} inviata al GIB")
            return SendInvoiceResponse(success=True, transaction_id=result.get("TRANSACTION_ID"))

        error_code = result.get("HATA_KODU") or result_code
        error_code = str(error_code) if error_code is not None else None
        error_message = GIB_ERROR_MESSAGES.get(error_code) or result.get("HATA_ACIKLAMA") or DEFAULT_ERROR_MESSAGE
        logger.warning(f"Fattura {request.invoice_number} rifiutata dal GIB: {error_code} {error_message}")
        return SendInvoiceResponse(success=False, error_code=error_code, error_message=error_message)

    async def send_with_retry(self, request: SendInvoiceRequest) -> SendInvoiceResponse:
        """Ritenta solo gli errori ritentabili, con backoff esponenziale"""
        max_retries = self.settings.gib_max_retries
        response = await self.send_invoice(request)

        for attempt in range(max_retries):
            if response.success or not self.is_retryable_error(response.error_code):
                return response

            wait_time = self.settings.gib_retry_backoff_base * (2 ** attempt)
            logger.warning(
                f"Tentativo {attempt + 1}/{max_retries} fallito ({response.error_code}), "
                f"nuovo tentativo tra {wait_time}s"
            )
            await asyncio.sleep(wait_time)
            response = await self.send_invoice(request)

        return response

    async def query_invoice_status(self, invoice_uuid: str) -> Optional[InvoiceStatusResponse]:
        """Stato della fattura sul portale; None se il portale non la conosce. Solleva su errori di trasporto."""
        try:
            result = await self._call("getInvoiceStatus", {"FATURA_UUID": invoice_uuid})
        except ExternalServiceException:
            raise
        except Exception as e:
            logger.error(f"Errore nella lettura dello stato fattura {invoice_uuid}: {str(e)}")
            raise ExternalServiceException(
                f"Failed to get invoice status: {str(e)}",
                ErrorCode.EXTERNAL_SERVICE_ERROR,
                {"invoice_uuid": invoice_uuid}
            )

        if str(result.get("SONUC", "")) != GibErrorCode.SUCCESS:
            return None

        return InvoiceStatusResponse(
            invoice_uuid=invoice_uuid,
            status=self.map_gib_status(result.get("DURUM")),
            status_date=self._parse_datetime(result.get("DURUM_TARIHI")),
            error_code=result.get("HATA_KODU"),
            error_message=result.get("HATA_ACIKLAMA"),
        )

    async def cancel_invoice(self, invoice_uuid: str, reason: str) -> bool:
        try:
            result = await self._call("cancelInvoice", {"FATURA_UUID": invoice_uuid, "IPTAL_NEDENI": reason})
        except Exception as e:
            logger.error(f"Errore nell'annullamento fattura {invoice_uuid}: {str(e)}")
            return False
        return str(result.get("SONUC", "")) == GibErrorCode.SUCCESS

    async def get_invoice_list(self, start_date: date, end_date: date) -> InvoiceListResponse:
        """Elenco fatture nel periodo. Solleva su errori di trasporto."""
        try:
            result = await self._call("getInvoiceList", {
                "BASLANGIC_TARIHI": start_date.strftime("%Y-%m-%d"),
                "BITIS_TARIHI": end_date.strftime("%Y-%m-%d"),
            })
        except ExternalServiceException:
            raise
        except Exception as e:
            logger.error(f"Errore nel recupero elenco fatture: {str(e)}")
            raise ExternalServiceException(
                f"Failed to get invoice list: {str(e)}",
                ErrorCode.EXTERNAL_SERVICE_ERROR
            )

        if str(result.get("SONUC", "")) != GibErrorCode.SUCCESS:
            return InvoiceListResponse()
        invoices = result.get("FATURA_LISTESI") or []
        return InvoiceListResponse(invoices=invoices if isinstance(invoices, list) else [invoices])

    async def sign_xml_content(self, xml_content: str) -> str:
        """Firma XML-DSig con il certificato configurato"""
        signer = XmlSignatureService(self.config.certificate_path, self.config.certificate_password)
        return await asyncio.to_thread(signer.sign, xml_content)

    async def test_connection(self) -> bool:
        try:
            result = await self._call("testConnection", {"TEST": "1"})
        except Exception as e:
            logger.error(f"Test connessione GIB fallito: {str(e)}")
            return False
        return str(result.get("SONUC", "")) == GibErrorCode.SUCCESS

    @staticmethod
    def validate_tax_identifier(identifier: str) -> TaxNumberValidationResult:
        return validate_turkish_tax_number(identifier)

    @staticmethod
    def get_error_message(error_code: Optional[str]) -> str:
        return GIB_ERROR_MESSAGES.get(error_code or "", DEFAULT_ERROR_MESSAGE)

    @staticmethod
    def is_retryable_error(error_code: Optional[str]) -> bool:
        return error_code in RETRYABLE_ERROR_CODES

    @staticmethod
    def map_gib_status(gib_status: Any) -> str:
        return GIB_STATUS_MAPPING.get(str(gib_status) if gib_status is not None else "", "SENT")

    @staticmethod
    def _parse_datetime(value: Any) -> Optional[datetime]:
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day)
        try:
            return datetime.fromisoformat(str(value))
        except ValueError:
            logger.warning(f"Data stato GIB non riconosciuta: {value}")
            return None
