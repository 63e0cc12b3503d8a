"""
Portale GIB finto: GibPortalService con il client SOAP sostituito da mock
"""
from typing import Any, Dict
from unittest.mock import AsyncMock, MagicMock

from efatura.core.settings import GibSettings
from efatura.schemas.gib_schema import GibClientConfig
from efatura.services.external.gib_portal_service import GibPortalService


def build_fake_gib(settings: GibSettings, responses: Dict[str, Any]) -> GibPortalService:
    """
    Crea un GibPortalService che non apre connessioni.

    responses: operazione SOAP -> nodo 'return' (dict) o eccezione da sollevare.
    Il mock resta raggiungibile da `fake_client` anche dopo close().
    """
    service = GibPortalService(
        GibClientConfig(username="test-user", password="test-pass", test_mode=True),
        settings,
    )
    client = MagicMock()
    for operation, response in responses.items():
        if isinstance(response, Exception):
            setattr(client.service, operation, AsyncMock(side_effect=response))
        else:
            setattr(client.service, operation, AsyncMock(return_value={"return": response}))
    service._client = client
    service.fake_client = client
    return service
