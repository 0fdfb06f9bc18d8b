"""Logfire tracing for LLM enrichment calls.

If no Logfire token is present every function here is a no-op.
"""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)

_configured: bool | None = None


def configure() -> bool:
    """Configure Logfire and instrument Pydantic AI. Call once at process startup.

    Skips configuration when no token is present to avoid interactive prompts.

    Returns True if Logfire was configured, False otherwise (no-op).
    """
    global _configured
    if _configured is not None:
        return _configured

    if not os.getenv("LOGFIRE_TOKEN"):
        _configured = False
        return False

    import logfire

    try:
        logfire.configure(send_to_logfire="if-token-present", service_name="blueprint")
        logfire.instrument_pydantic_ai()
    except Exception as e:
        logger.warning("Failed to configure Logfire: %s", e)
        _configured = False
        return False

    logger.info("Logfire configured and Pydantic AI instrumented")
    _configured = True
    return True


def reset() -> None:
    """Forget previous configuration (tests)."""
    global _configured
    _configured = None
