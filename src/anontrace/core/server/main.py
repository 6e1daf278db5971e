"""Server entry point: ``python -m anontrace.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from anontrace.core.config.settings import get_settings
from anontrace.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the contact-tracing MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.tracing_log_level.upper(), logging.INFO))

    logger = logging.getLogger(__name__)
    if not settings.tracing_allow_insecure_bind and not _is_loopback_host(settings.tracing_host):
        raise RuntimeError(
            "Refusing to bind the tracing server to a non-loopback host without an auth layer. "
            "Set TRACING_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info(
        "Starting contact-tracing server on %s:%d",
        settings.tracing_host,
        settings.tracing_port,
    )

    mcp = create_app(settings_override=settings)
    mcp.run(
        transport="streamable-http",
        host=settings.tracing_host,
        port=settings.tracing_port,
    )


if __name__ == "__main__":
    run()
