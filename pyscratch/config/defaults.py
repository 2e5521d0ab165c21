"""
Centralized configuration defaults for pyscratch.

This module provides a single source of truth for all default configurations
used across the package.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class SandboxDefaults:
    """Default sandbox configuration."""
    level: str = "subprocess"
    startup_timeout: float = 10.0  # seconds
    max_memory_mb: int = 1024
    max_cpu_time: int = 300  # seconds
    frame_limit: int = 64 * 1024 * 1024  # bytes per frame crossing the boundary
    identity_backend: str = "weak"


@dataclass(frozen=True)
class PrinterDefaults:
    """Default pretty printer configuration."""
    indent: int = 4
    max_depth: int = 200
    absent: str = "None"
    ellipsis: str = "…"


@dataclass(frozen=True)
class TranscriptDefaults:
    """Markers used when a transcript is exported as annotated source."""
    cell_marker: str = "# %%"
    block_prefix: str = "# ***"


# Global default instances
SANDBOX_DEFAULTS = SandboxDefaults()
PRINTER_DEFAULTS = PrinterDefaults()
TRANSCRIPT_DEFAULTS = TranscriptDefaults()
