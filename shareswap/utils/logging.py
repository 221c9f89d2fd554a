"""Centralized structlog configuration for all ShareSwap scripts."""

import structlog

_configured = False


def configure_logging() -> None:
    """Configure structlog with the project-standard processor chain.

    Safe to call multiple times; only the first call takes effect.
    """
    global _configured
    if _configured:
        return
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(),
        ]
    )
    _configured = True


def redact(value: str, keep: int = 10) -> str:
    """Shorten a signature or token for log output."""
    if not value:
        return ""
    return value[:keep] + "..." if len(value) > keep else value
