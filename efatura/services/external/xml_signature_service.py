"""
Firma XML-DSig dei documenti UBL con certificato PKCS#12 (e-imza).

La firma è di tipo enveloped (RSA-SHA256, digest SHA-256) e viene collocata in
UBLExtensions/UBLExtension/ExtensionContent, come richiesto dal formato UBL-TR.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12
from lxml import etree
from signxml import XMLSigner, XMLVerifier, methods
from signxml.algorithms import DigestAlgorithm, SignatureMethod

from efatura.core.exceptions import ErrorCode, ExternalServiceException

logger = logging.getLogger(__name__)

EXT_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonExtensionComponents-2"
DS_NS = "http://www.w3.org/2000/09/xmldsig#"


class XmlSignatureService:
    """Firma e verifica documenti UBL con un certificato PKCS#12"""

    def __init__(
        self,
        certificate_path: Optional[str] = None,
        certificate_password: Optional[str] = None,
        certificate_bytes: Optional[bytes] = None
    ):
        if not certificate_path and certificate_bytes is None:
            raise ExternalServiceException(
                "Certificate configuration not provided",
                ErrorCode.CERTIFICATE_ERROR
            )
        self.certificate_path = certificate_path
        self.certificate_password = certificate_password
        self._certificate_bytes = certificate_bytes
        self._key_pem: Optional[bytes] = None
        self._cert_pem: Optional[bytes] = None

    def _load_certificate(self) -> Tuple[bytes, bytes]:
        """Carica chiave privata e certificato dal bundle PKCS#12 (una sola volta)"""
        if self._key_pem is not None and self._cert_pem is not None:
            return self._key_pem, self._cert_pem

        try:
            data = self._certificate_bytes
            if data is None:
                data = Path(self.certificate_path).read_bytes()

            password = self.certificate_password.encode("utf-8") if self.certificate_password else None
            private_key, certificate, _ = pkcs12.load_key_and_certificates(data, password)
        except (OSError, ValueError) as e:
            logger.error(f"Errore nel caricamento del certificato: {str(e)}")
            raise ExternalServiceException(
                f"Certificate could not be loaded: {str(e)}",
                ErrorCode.CERTIFICATE_ERROR
            )

        if private_key is None or certificate is None:
            raise ExternalServiceException(
                "Certificate bundle does not contain a private key and certificate",
                ErrorCode.CERTIFICATE_ERROR
            )

        self._key_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption()
        )
        self._cert_pem = certificate.public_bytes(serialization.Encoding.PEM)
        return self._key_pem, self._cert_pem

    @staticmethod
    def _insert_signature_placeholder(root: etree._Element) -> None:
        """Aggiunge UBLExtensions con il segnaposto ds:Signature come primo figlio"""
        extensions = etree.Element(f"{{{EXT_NS}}}UBLExtensions", nsmap={"ext": EXT_NS})
        extension = etree.SubElement(extensions, f"{{{EXT_NS}}}UBLExtension")
        content = etree.SubElement(extension, f"{{{EXT_NS}}}ExtensionContent")
        placeholder = etree.SubElement(content, f"{{{DS_NS}}}Signature", nsmap={"ds": DS_NS})
        placeholder.set("Id", "placeholder")
        root.insert(0, extensions)

    def sign(self, xml_content: str) -> str:
        """Restituisce l'XML firmato pronto per la trasmissione"""
        key_pem, cert_pem = self._load_certificate()

        try:
            parser = etree.XMLParser(remove_blank_text=True)
            root = etree.fromstring(xml_content.encode("utf-8"), parser)
        except etree.XMLSyntaxError as e:
            raise ExternalServiceException(f"Invalid XML content: {str(e)}", ErrorCode.VALIDATION_ERROR)

        self._insert_signature_placeholder(root)

        signer = XMLSigner(
            method=methods.enveloped,
            signature_algorithm=SignatureMethod.RSA_SHA256,
            digest_algorithm=DigestAlgorithm.SHA256
        )
        try:
            signed_root = signer.sign(root, key=key_pem, cert=cert_pem.decode("utf-8"))
        except Exception as e:
            logger.error(f"Errore durante la firma XML: {str(e)}")
            raise ExternalServiceException(f"XML signing failed: {str(e)}", ErrorCode.CERTIFICATE_ERROR)

        logger.info("Documento UBL firmato con XML-DSig")
        return etree.tostring(
            signed_root, xml_declaration=True, encoding="UTF-8", standalone=True
        ).decode("utf-8")

    def verify(self, signed_xml: str) -> bool:
        """Verifica la firma rispetto al certificato caricato"""
        _, cert_pem = self._load_certificate()
        try:
            XMLVerifier().verify(signed_xml.encode("utf-8"), x509_cert=cert_pem.decode("utf-8"))
        except Exception as e:
            logger.warning(f"Verifica firma fallita: {str(e)}")
            return False
        return True
