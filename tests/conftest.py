"""
Fixture principali per i test del motore e-Fatura
"""
import logging
from typing import Any, Callable, Dict, Generator, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from efatura.database import Base
from efatura.core.logging_config import configure_logging
import efatura.models  # noqa: F401  registra le tabelle sulla metadata
from efatura.core.settings import GibSettings
from efatura.services.external.gib_portal_service import GibPortalService
from tests.helpers.fake_gib import build_fake_gib
from tests.factories.e_invoice_factory import seed_invoiceable_order


def pytest_configure(config):
    configure_logging(logging.DEBUG)


# ============================================================================
# Database Test Setup
# ============================================================================

# SQLite in-memory per i test
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

test_engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """
    Crea una sessione database isolata per ogni test.
    Rollback automatico a fine test.
    """
    Base.metadata.create_all(bind=test_engine)

    session = TestSessionLocal()

    try:
        yield session
        session.rollback()
    finally:
        session.close()
        # Pulisci le tabelle
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def file_session_factory(tmp_path) -> Generator[sessionmaker, None, None]:
    """
    Database SQLite su file condiviso tra thread, per i test di concorrenza.
    Ogni thread apre la propria sessione (e connessione) dalla factory.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'efatura.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)

    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)

    engine.dispose()


@pytest.fixture
def seeded(db_session: Session) -> Dict[str, Any]:
    """Attività configurata con un ordine pagato da fatturare (contatore a 41)"""
    return seed_invoiceable_order(db_session)


# ============================================================================
# Portale GIB finto
# ============================================================================

@pytest.fixture
def gib_settings() -> GibSettings:
    """Impostazioni client senza attese tra i tentativi"""
    return GibSettings(gib_max_retries=2, gib_retry_backoff_base=0.0, gib_timeout=5.0)


@pytest.fixture
def fake_gib_factory(gib_settings: GibSettings) -> Callable[..., Callable]:
    """
    Restituisce una factory compatibile con EInvoiceLifecycleService.

    Ogni client creato viene registrato in `created` per le asserzioni sulle chiamate.
    """

    def _make(**responses) -> Callable:
        created: List[GibPortalService] = []

        def _factory(e_invoice_settings) -> GibPortalService:
            service = build_fake_gib(gib_settings, responses)
            created.append(service)
            return service

        _factory.created = created
        return _factory

    return _make
