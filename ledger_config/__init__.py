"""
ledger_config -- single public entrypoint for runtime settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_settings()``.  No other component reads configuration
    files or ``LEDGER_*`` environment variables directly.

Architecture position:
    Configuration.  Sits above ``ledger_kernel`` and below
    ``ledger_services``.  The kernel MUST NEVER import from
    ``ledger_config``; ``ledger_services`` translates settings into kernel
    constructor arguments.

Invariants enforced:
    - Layering order: packaged defaults, then the user file, then the
      environment.
    - The returned ``LedgerSettings`` is frozen and validated.

Failure modes:
    - ``FileNotFoundError`` -- ``config_path`` does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every successful call logs ``ledger_config_loaded`` with the settings
    checksum, tying a running process to the exact effective values.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from ledger_config.loader import load_settings
from ledger_config.schema import LedgerSettings

_logger = logging.getLogger("ledger_kernel.config")


def get_active_settings(config_path: Path | str | None = None) -> LedgerSettings:
    """The ONLY public settings entrypoint.

    Args:
        config_path: Optional YAML file overlaid on the packaged defaults.

    Returns:
        LedgerSettings with ``LEDGER_*`` environment overrides applied.
    """
    settings = load_settings(
        Path(config_path) if config_path is not None else None,
        environ=os.environ,
    )
    _logger.info(
        "ledger_config_loaded",
        extra={
            "checksum": settings.checksum,
            "source": str(config_path) if config_path is not None else "defaults",
            "isolation_level": settings.transaction.isolation_level,
            "timeout_ms": settings.transaction.timeout_ms,
        },
    )
    return settings


__all__ = ["LedgerSettings", "get_active_settings"]
