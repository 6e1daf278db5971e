"""Shared test fixtures for contact-tracing tests."""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

# Fixed "now" for every clock-dependent component.
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SMS_PROVIDER", "mock")
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("TWILIO_ACCOUNT_SID", "")
    monkeypatch.setenv("TWILIO_AUTH_TOKEN", "")


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock():
    """A clock frozen at NOW."""
    return lambda: NOW


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def tracing_db():
    """Create an in-memory TracingDatabase for testing."""
    from anontrace.core.storage.database import TracingDatabase

    db = TracingDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from anontrace.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def audit_logger(tracing_db):
    from anontrace.core.audit.logger import AuditLogger

    return AuditLogger(tracing_db)


@pytest.fixture
def ledger(tracing_db, field_encryptor, clock):
    from anontrace.domains.contact_tracing.ledger import EncounterLedger

    return EncounterLedger(tracing_db, field_encryptor, clock=clock)


@pytest.fixture
def screens(tracing_db, field_encryptor, clock):
    from anontrace.domains.contact_tracing.screens import HealthScreenStore

    return HealthScreenStore(tracing_db, field_encryptor, clock=clock)


@pytest.fixture
def consent(tracing_db, field_encryptor):
    from anontrace.domains.contact_tracing.consent import ConsentGate

    return ConsentGate(tracing_db, field_encryptor)


@pytest.fixture
def notification_store(tracing_db, field_encryptor):
    from anontrace.domains.contact_tracing.notifications import NotificationStore

    return NotificationStore(tracing_db, field_encryptor)


@pytest.fixture
def resolver(ledger, screens, clock):
    from anontrace.domains.contact_tracing.resolver import ExposureWindowResolver

    return ExposureWindowResolver(ledger, screens, clock=clock)


# ---------------------------------------------------------------------------
# Channels and dispatch
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_sms():
    from anontrace.domains.contact_tracing.channels.mock import MockSmsGateway

    return MockSmsGateway()


@pytest.fixture
def mock_app():
    from anontrace.domains.contact_tracing.channels.mock import MockAppNotifier

    return MockAppNotifier()


@pytest.fixture
def make_dispatcher(
    consent, screens, ledger, resolver, notification_store, mock_app, mock_sms, audit_logger, clock
):
    """Factory for a NotificationDispatcher; keyword arguments override defaults."""
    from anontrace.domains.contact_tracing.dispatcher import NotificationDispatcher

    def _make(**overrides):
        kwargs = dict(
            consent=consent,
            screens=screens,
            ledger=ledger,
            resolver=resolver,
            store=notification_store,
            app_notifier=mock_app,
            sms_gateway=mock_sms,
            send_timeout_s=1.0,
            audit_logger=audit_logger,
            clock=clock,
        )
        kwargs.update(overrides)
        return NotificationDispatcher(**kwargs)

    return _make


@pytest.fixture
def dispatcher(make_dispatcher):
    return make_dispatcher()


@pytest.fixture
def service(screens, consent, dispatcher):
    from anontrace.domains.contact_tracing.service import ContactTracingService

    return ContactTracingService(screens=screens, consent=consent, dispatcher=dispatcher)
