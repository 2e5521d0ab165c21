"""
Configuration module for pyscratch.
"""
from pyscratch.config.logging import setup_logging
from pyscratch.config.defaults import (
    SANDBOX_DEFAULTS,
    PRINTER_DEFAULTS,
    TRANSCRIPT_DEFAULTS,
)

__all__ = [
    "setup_logging",
    "SANDBOX_DEFAULTS",
    "PRINTER_DEFAULTS",
    "TRANSCRIPT_DEFAULTS",
]
