"""Logfire integration for pipeline and LLM call tracing."""

from __future__ import annotations

import logging
import time
from functools import wraps
from typing import Any, Callable

import logfire

from .config import Settings

logger = logging.getLogger(__name__)

_logfire_enabled = False


def setup_logfire(settings: Settings) -> bool:
    """Initialize Logfire with API key from config.

    Returns:
        True when Logfire is configured and spans will be exported
    """
    global _logfire_enabled

    if not settings.logfire_api_key:
        logger.warning("LOGFIRE_API_KEY not configured, skipping Logfire")
        return False

    try:
        logfire.configure(
            token=settings.logfire_api_key,
            service_name="voice-crm",
            environment=settings.environment,
        )
        _logfire_enabled = True
        logger.info("✅ Logfire initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize Logfire: {e}")
        _logfire_enabled = False
    return _logfire_enabled


def logfire_enabled() -> bool:
    return _logfire_enabled


def trace_llm_call(call_type: str) -> Callable:
    """Decorator to trace async LLM calls.

    Args:
        call_type: Type of LLM call (e.g., "extraction", "brief")

    Returns:
        Decorator function
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            if not _logfire_enabled:
                return await func(*args, **kwargs)

            start = time.perf_counter()
            with logfire.span(f"llm_{call_type}", _level="info") as span:
                span.set_attribute("llm_call_type", call_type)
                result = await func(*args, **kwargs)
                span.set_attribute("duration_ms", round((time.perf_counter() - start) * 1000, 1))
                span.set_attribute("status", "success" if result is not None else "empty")
                return result

        return wrapper
    return decorator


def log_pipeline_event(event: str, **attributes: Any) -> None:
    """Record a pipeline event in Logfire when configured."""
    if not _logfire_enabled:
        return
    try:
        logfire.info(event, **attributes)
    except Exception as e:
        logger.debug(f"Logfire event {event} not recorded: {e}")
