"""Anonymous contact-tracing MCP server: application factory.

This module provides:
- create_app() for testability (integration tests build fresh instances
  over an in-memory database and mock channels)
- Module-level ``mcp`` variable for FastMCP discovery
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from fastmcp import FastMCP

from anontrace.core.audit.logger import AuditLogger
from anontrace.core.config.settings import Settings, get_settings
from anontrace.core.storage.database import TracingDatabase
from anontrace.core.storage.encryption import EncryptionError, FieldEncryptor
from anontrace.domains.contact_tracing.channels import AppNotifier, SmsGateway, create_sms_gateway
from anontrace.domains.contact_tracing.channels.inbox import InboxNotifier
from anontrace.domains.contact_tracing.consent import ConsentGate
from anontrace.domains.contact_tracing.dispatcher import NotificationDispatcher
from anontrace.domains.contact_tracing.inbox import NotificationInbox
from anontrace.domains.contact_tracing.ledger import EncounterLedger
from anontrace.domains.contact_tracing.notifications import NotificationStore
from anontrace.domains.contact_tracing.resolver import ExposureWindowResolver
from anontrace.domains.contact_tracing.screens import HealthScreenStore
from anontrace.domains.contact_tracing.service import ContactTracingService

logger = logging.getLogger(__name__)

SERVER_NAME = "Anonymous Contact Tracing"
SERVER_VERSION = "0.1.0"


def create_app(
    *,
    settings_override: Settings | None = None,
    database_override: TracingDatabase | None = None,
    encryptor_override: FieldEncryptor | None = None,
    sms_gateway_override: SmsGateway | None = None,
    app_notifier_override: AppNotifier | None = None,
    clock: Callable[[], datetime] | None = None,
) -> FastMCP:
    """Create and configure the contact-tracing MCP server.

    1. Creates the FastMCP server instance
    2. Opens the encrypted store (skipped without an encryption key)
    3. Builds the ledger, screen store, consent gate and notification store
    4. Wires the dispatcher to the app and SMS channels
    5. Registers all tools
    """
    settings = settings_override or get_settings()

    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "Anonymous STI contact tracing. Log encounters and screening results; "
            "positive results alert recent partners without revealing who reported. "
            "Every tool takes the acting user's id."
        ),
    )

    # --- Encrypted storage ---
    database: TracingDatabase | None = None
    encryptor: FieldEncryptor | None = encryptor_override
    if database_override is not None:
        database = database_override
    elif settings.encryption_key:
        try:
            encryptor = encryptor or FieldEncryptor(settings.encryption_key)
            database = TracingDatabase(settings.db_path)
            database.initialize()
            logger.info(
                "Tracing store initialized: %s (schema v%d)",
                settings.db_path,
                database.get_schema_version(),
            )
        except EncryptionError as exc:
            logger.error("Failed to initialize storage: %s", exc)
            logger.warning("Continuing without persistence; contact-tracing tools disabled")
            database = None
    else:
        logger.info(
            "No ENCRYPTION_KEY configured; contact-tracing tools disabled. "
            "Set ENCRYPTION_KEY to enable them."
        )

    storage_enabled = database is not None and encryptor is not None
    if database is not None and encryptor is None:
        logger.warning("Database override given without an encryptor; tools disabled")

    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        status = {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "storage_enabled": storage_enabled,
            "sms_provider": settings.sms_provider,
            "first_screen_lookback": settings.first_screen_lookback,
        }
        if storage_enabled:
            status["schema_version"] = database.get_schema_version()
        return status

    if not storage_enabled:
        return server

    # --- Domain components ---
    audit_logger = AuditLogger(database)
    ledger = EncounterLedger(database, encryptor, clock=clock)
    screens = HealthScreenStore(database, encryptor, clock=clock)
    consent = ConsentGate(database, encryptor)
    store = NotificationStore(database, encryptor)
    resolver = ExposureWindowResolver(
        ledger,
        screens,
        first_screen_lookback=settings.first_screen_lookback,
        first_screen_lookback_days=settings.first_screen_lookback_days,
        clock=clock,
    )

    # --- Channels ---
    if sms_gateway_override is not None:
        sms_gateway = sms_gateway_override
    else:
        sms_gateway = create_sms_gateway(
            settings.sms_provider,
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            messaging_service_sid=settings.twilio_messaging_service_sid,
            timeout_s=settings.channel_send_timeout_s,
        )
        logger.info("SMS channel: %s", settings.sms_provider)
    app_notifier = app_notifier_override or InboxNotifier()

    dispatcher = NotificationDispatcher(
        consent=consent,
        screens=screens,
        ledger=ledger,
        resolver=resolver,
        store=store,
        app_notifier=app_notifier,
        sms_gateway=sms_gateway,
        sms_brand=settings.sms_brand,
        max_concurrency=settings.dispatch_max_concurrency,
        send_timeout_s=settings.channel_send_timeout_s,
        run_lease_s=settings.dispatch_run_lease_s,
        audit_logger=audit_logger,
        clock=clock,
    )
    service = ContactTracingService(screens=screens, consent=consent, dispatcher=dispatcher)
    inbox = NotificationInbox(store)

    # --- Tools ---
    from anontrace.domains.contact_tracing.tools.audit_tools import register_audit_tools
    from anontrace.domains.contact_tracing.tools.ledger_tools import register_ledger_tools
    from anontrace.domains.contact_tracing.tools.notification_tools import (
        register_notification_tools,
    )
    from anontrace.domains.contact_tracing.tools.screening_tools import register_screening_tools

    register_screening_tools(server, service, screens, audit_logger)
    register_ledger_tools(server, ledger, audit_logger)
    register_notification_tools(server, consent, inbox, audit_logger)
    register_audit_tools(server, audit_logger)
    logger.info("Contact-tracing tools registered")

    return server


# Module-level instance for FastMCP discovery ("...app.py:mcp").
# Lazy: only created on first access, not when tests import create_app.
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
