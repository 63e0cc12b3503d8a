"""
External Services

This module contains clients for the GIB e-Fatura portal and XML signing.
"""

from .gib_portal_service import GibPortalService
from .xml_signature_service import XmlSignatureService

__all__ = [
    "GibPortalService",
    "XmlSignatureService",
]
