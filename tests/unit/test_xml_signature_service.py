"""
Test per la firma XML-DSig dei documenti UBL
"""
from datetime import datetime, timedelta

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
from lxml import etree

from efatura.core.exceptions import ErrorCode, ExternalServiceException
from efatura.schemas.gib_schema import GibClientConfig
from efatura.services.external.gib_portal_service import GibPortalService
from efatura.services.external.xml_signature_service import DS_NS, EXT_NS, XmlSignatureService
from efatura.services.ubl_xml_generator import generate_invoice_xml
from tests.factories.invoice_data_factory import make_invoice_data

CERT_PASSWORD = "e-imza-test"


@pytest.fixture(scope="module")
def pkcs12_bundle() -> bytes:
    """Certificato autofirmato RSA 2048 in formato PKCS#12"""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "TR"),
        x509.NameAttribute(NameOID.COMMON_NAME, "Temiz Halı Yıkama Test"),
    ])
    now = datetime.utcnow()
    certificate = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    return pkcs12.serialize_key_and_certificates(
        b"test",
        key,
        certificate,
        None,
        serialization.BestAvailableEncryption(CERT_PASSWORD.encode("utf-8")),
    )


@pytest.fixture(scope="module")
def unsigned_xml() -> str:
    return generate_invoice_xml(make_invoice_data())


@pytest.mark.unit
class TestXmlSignatureService:
    """Test per XmlSignatureService"""

    def test_sign_and_verify(self, pkcs12_bundle, unsigned_xml):
        """
        Test: firma enveloped nel blocco UBLExtensions

        Arrange: documento UBL e certificato PKCS#12
        Act: sign, poi verify
        Assert: firma in ExtensionContent come primo figlio dell'Invoice, verifica positiva
        """
        signer = XmlSignatureService(certificate_bytes=pkcs12_bundle, certificate_password=CERT_PASSWORD)

        signed = signer.sign(unsigned_xml)

        root = etree.fromstring(signed.encode("utf-8"))
        assert root[0].tag == f"{{{EXT_NS}}}UBLExtensions"
        signature = root.find(
            f"{{{EXT_NS}}}UBLExtensions/{{{EXT_NS}}}UBLExtension/{{{EXT_NS}}}ExtensionContent/{{{DS_NS}}}Signature"
        )
        assert signature is not None
        assert signature.find(f".//{{{DS_NS}}}SignatureValue").text
        assert signature.find(f".//{{{DS_NS}}}X509Certificate") is not None
        assert signer.verify(signed) is True

    def test_tampered_document_fails_verification(self, pkcs12_bundle, unsigned_xml):
        signer = XmlSignatureService(certificate_bytes=pkcs12_bundle, certificate_password=CERT_PASSWORD)
        signed = signer.sign(unsigned_xml)

        tampered = signed.replace("281.71", "181.71")

        assert signer.verify(tampered) is False

    def test_wrong_password(self, pkcs12_bundle, unsigned_xml):
        signer = XmlSignatureService(certificate_bytes=pkcs12_bundle, certificate_password="sbagliata")

        with pytest.raises(ExternalServiceException) as exc_info:
            signer.sign(unsigned_xml)

        assert exc_info.value.error_code == ErrorCode.CERTIFICATE_ERROR.value

    def test_missing_certificate_file(self, tmp_path, unsigned_xml):
        signer = XmlSignatureService(certificate_path=str(tmp_path / "missing.p12"))

        with pytest.raises(ExternalServiceException):
            signer.sign(unsigned_xml)

    def test_configuration_required(self):
        with pytest.raises(ExternalServiceException):
            XmlSignatureService()

    def test_invalid_xml(self, pkcs12_bundle):
        signer = XmlSignatureService(certificate_bytes=pkcs12_bundle, certificate_password=CERT_PASSWORD)

        with pytest.raises(ExternalServiceException):
            signer.sign("<Invoice>")

    @pytest.mark.asyncio
    async def test_portal_client_signs_from_file(self, tmp_path, pkcs12_bundle, unsigned_xml, gib_settings):
        certificate_path = tmp_path / "e-imza.p12"
        certificate_path.write_bytes(pkcs12_bundle)
        gib = GibPortalService(
            GibClientConfig(
                username="u", password="p",
                certificate_path=str(certificate_path), certificate_password=CERT_PASSWORD,
            ),
            gib_settings,
        )

        signed = await gib.sign_xml_content(unsigned_xml)

        verifier = XmlSignatureService(certificate_bytes=pkcs12_bundle, certificate_password=CERT_PASSWORD)
        assert verifier.verify(signed) is True
