"""Utility modules for the shareswap project.

Sub-modules:
- logging: configure_logging() for structlog setup
- units: display/base unit conversion helpers (import directly from shareswap.utils.units)
- resilience: async retry with exponential backoff
"""

from .logging import configure_logging, redact

__all__ = [
    "configure_logging",
    "redact",
]
