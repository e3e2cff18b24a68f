"""
Configuration schema (``voucher_config.schema``).

Every section of the YAML configuration parses into one of these frozen
dataclasses.  Nothing here reads files or the environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseConfig:
    """Where and how to connect."""

    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class LedgerConfig:
    default_decimal_places: int = 2


@dataclass(frozen=True)
class VoucherToolsConfig:
    """Client-side settings: language and translation catalogs."""

    default_language: str = "en"
    translations: dict[str, dict[str, str]] = field(default_factory=dict)


@dataclass(frozen=True)
class VoucherConfig:
    """The complete, validated configuration."""

    database: DatabaseConfig
    logging: LoggingConfig
    ledger: LedgerConfig
    voucher_tools: VoucherToolsConfig
    checksum: str = ""
