"""
Configuration loader (``voucher_config.loader``).

Responsibility
--------------
Reads the YAML configuration file and parses it into the frozen
dataclasses of ``voucher_config.schema``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Wrongly typed values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Any

import yaml

from voucher_config.schema import (
    DatabaseConfig,
    LedgerConfig,
    LoggingConfig,
    VoucherConfig,
    VoucherToolsConfig,
)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_PATH_ENV = "VOUCHER_CONFIG_PATH"
DATABASE_URL_ENV = "DATABASE_URL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    return DatabaseConfig(
        url=data["url"],
        echo=bool(data.get("echo", False)),
        pool_size=int(data.get("pool_size", 20)),
        max_overflow=int(data.get("max_overflow", 10)),
        pool_timeout=int(data.get("pool_timeout", 30)),
    )


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO")).upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ValueError(f"Unknown log level {level!r}")
    return LoggingConfig(level=level)


def parse_ledger(data: dict[str, Any]) -> LedgerConfig:
    places = int(data.get("default_decimal_places", 2))
    if places < 0:
        raise ValueError(f"default_decimal_places must be >= 0, got {places}")
    return LedgerConfig(default_decimal_places=places)


def parse_voucher_tools(data: dict[str, Any]) -> VoucherToolsConfig:
    translations = {
        str(language): {str(key): str(text) for key, text in (catalog or {}).items()}
        for language, catalog in (data.get("translations") or {}).items()
    }
    default_language = data.get("default_language", "en")
    if translations and default_language not in translations:
        raise ValueError(
            f"default_language {default_language!r} has no translation catalog"
        )
    return VoucherToolsConfig(
        default_language=default_language,
        translations=translations,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the parsed configuration."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_config(data: dict[str, Any]) -> VoucherConfig:
    """
    Build a VoucherConfig from the raw YAML mapping.

    Raises:
        KeyError: if ``database.url`` is missing.
        ValueError: on invalid values.
    """
    return VoucherConfig(
        database=parse_database(data["database"]),
        logging=parse_logging(data.get("logging") or {}),
        ledger=parse_ledger(data.get("ledger") or {}),
        voucher_tools=parse_voucher_tools(data.get("voucher_tools") or {}),
        checksum=compute_checksum(data),
    )


def load_config(path: Path | str | None = None) -> VoucherConfig:
    """
    Load configuration from ``path``, ``$VOUCHER_CONFIG_PATH`` or the
    packaged defaults, in that order.  ``$DATABASE_URL`` replaces the
    database url of whichever file was read.
    """
    resolved = Path(path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    data = load_yaml_file(resolved)

    url_override = os.environ.get(DATABASE_URL_ENV)
    if url_override:
        data = {**data, "database": {**(data.get("database") or {}), "url": url_override}}

    return parse_config(data)
