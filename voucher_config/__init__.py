"""
voucher_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_config()`` returns the parsed VoucherConfig; ``bootstrap()``
    applies it (logging level, database engine).  YAML loading lives in
    ``voucher_config.loader``.

Failure modes:
    - ``FileNotFoundError`` -- the configured file does not exist.
    - ``yaml.YAMLError`` / ``KeyError`` / ``ValueError`` -- malformed file.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from voucher_config.loader import load_config
from voucher_config.schema import (
    DatabaseConfig,
    LedgerConfig,
    LoggingConfig,
    VoucherConfig,
    VoucherToolsConfig,
)

_logger = logging.getLogger("voucher_kernel.config")


@lru_cache(maxsize=1)
def get_active_config() -> VoucherConfig:
    """The active configuration, loaded once per process."""
    config = load_config()
    _logger.info(
        "VOUCHER_CONFIG_TRACE",
        extra={
            "checksum": config.checksum,
            "database_dialect": config.database.url.split(":", 1)[0],
            "default_language": config.voucher_tools.default_language,
        },
    )
    return config


def reset_active_config() -> None:
    """Forget the cached configuration. FOR TESTING ONLY."""
    get_active_config.cache_clear()


def bootstrap(config: VoucherConfig | None = None, create_schema: bool = False):
    """
    Configure logging and the database engine from ``config``.

    Returns:
        The initialised SQLAlchemy engine.
    """
    from voucher_kernel.db.engine import create_tables, init_engine_from_url
    from voucher_kernel.logging_config import configure_logging

    config = config or get_active_config()
    configure_logging(level=config.logging.level)
    engine = init_engine_from_url(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
        pool_timeout=config.database.pool_timeout,
    )
    if create_schema:
        create_tables()
    return engine


__all__ = [
    "DatabaseConfig",
    "LedgerConfig",
    "LoggingConfig",
    "VoucherConfig",
    "VoucherToolsConfig",
    "bootstrap",
    "get_active_config",
    "load_config",
    "reset_active_config",
]
