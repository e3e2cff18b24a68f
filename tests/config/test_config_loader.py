"""Tests for voucher_config loading, parsing and activation."""

import logging

import pytest
import yaml
from sqlalchemy import inspect

from voucher_config import bootstrap, get_active_config, reset_active_config
from voucher_config.loader import (
    DEFAULT_CONFIG_PATH,
    compute_checksum,
    load_config,
    parse_config,
    parse_ledger,
    parse_logging,
    parse_voucher_tools,
)
from voucher_config.schema import DatabaseConfig, LedgerConfig, LoggingConfig, VoucherConfig, VoucherToolsConfig
from voucher_kernel.db.engine import reset_engine
from voucher_tools.translate import CORRECT_DESCRIPTION_KEY, REVERSE_DESCRIPTION_KEY, CatalogTranslator


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("VOUCHER_CONFIG_PATH", raising=False)
    reset_active_config()
    yield
    reset_active_config()


def write_config(tmp_path, data) -> str:
    path = tmp_path / "voucher.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


class TestDefaults:
    def test_packaged_defaults_load(self):
        config = load_config()

        assert config.database.url == "sqlite:///voucher_kernel.db"
        assert config.logging.level == "INFO"
        assert config.ledger.default_decimal_places == 2
        assert config.voucher_tools.default_language == "en"
        assert set(config.voucher_tools.translations) == {"en", "fr"}
        assert len(config.checksum) == 64

    def test_every_language_has_both_descriptions(self):
        for catalog in load_config().voucher_tools.translations.values():
            assert REVERSE_DESCRIPTION_KEY in catalog
            assert CORRECT_DESCRIPTION_KEY in catalog

    def test_default_path_is_packaged(self):
        assert DEFAULT_CONFIG_PATH.name == "defaults.yaml"
        assert DEFAULT_CONFIG_PATH.exists()


class TestOverrides:
    def test_database_url_env(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db/vouchers")

        assert load_config().database.url == "postgresql://u:p@db/vouchers"

    def test_config_path_env(self, monkeypatch, tmp_path):
        path = write_config(
            tmp_path,
            {"database": {"url": "sqlite:///other.db"}, "ledger": {"default_decimal_places": 3}},
        )
        monkeypatch.setenv("VOUCHER_CONFIG_PATH", path)

        config = load_config()

        assert config.database.url == "sqlite:///other.db"
        assert config.ledger.default_decimal_places == 3
        assert config.voucher_tools == VoucherToolsConfig()

    def test_explicit_path_wins(self, monkeypatch, tmp_path):
        monkeypatch.setenv("VOUCHER_CONFIG_PATH", str(tmp_path / "missing.yaml"))
        path = write_config(tmp_path, {"database": {"url": "sqlite://"}})

        assert load_config(path).database.url == "sqlite://"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")


class TestParsing:
    def test_database_section_required(self):
        with pytest.raises(KeyError):
            parse_config({"logging": {"level": "INFO"}})

    def test_log_level_is_normalised(self):
        assert parse_logging({"level": "debug"}) == LoggingConfig(level="DEBUG")

    def test_unknown_log_level(self):
        with pytest.raises(ValueError):
            parse_logging({"level": "chatty"})

    def test_negative_precision(self):
        with pytest.raises(ValueError):
            parse_ledger({"default_decimal_places": -1})

    def test_default_ledger(self):
        assert parse_ledger({}) == LedgerConfig(default_decimal_places=2)

    def test_default_language_needs_catalog(self):
        with pytest.raises(ValueError):
            parse_voucher_tools({"default_language": "de", "translations": {"en": {}}})

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("database: [unclosed\n")

        with pytest.raises(yaml.YAMLError):
            load_config(path)

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})


class TestTranslatorFromConfig:
    def test_language_fallback(self):
        tools = load_config().voucher_tools

        translate = CatalogTranslator.from_config(tools, "sw")

        assert translate.language == "en"
        assert translate(REVERSE_DESCRIPTION_KEY) == "Reversal of transaction"

    def test_french(self):
        translate = CatalogTranslator.from_config(load_config().voucher_tools, "fr")

        assert translate(CORRECT_DESCRIPTION_KEY) == "Correction de la transaction"

    def test_no_language_uses_configured_default(self):
        tools = load_config().voucher_tools

        translate = CatalogTranslator.from_config(tools)

        assert translate.language == tools.default_language


class TestActiveConfig:
    def test_cached_until_reset(self, monkeypatch):
        first = get_active_config()
        monkeypatch.setenv("DATABASE_URL", "sqlite:///changed.db")

        assert get_active_config() is first

        reset_active_config()
        assert get_active_config().database.url == "sqlite:///changed.db"

    def test_bootstrap_creates_schema(self):
        config = VoucherConfig(
            database=DatabaseConfig(url="sqlite:///:memory:"),
            logging=LoggingConfig(level="WARNING"),
            ledger=LedgerConfig(),
            voucher_tools=VoucherToolsConfig(),
        )
        try:
            engine = bootstrap(config, create_schema=True)
            tables = set(inspect(engine).get_table_names())
            level = logging.getLogger("voucher_kernel").level
        finally:
            reset_engine()
            logging.getLogger("voucher_kernel").setLevel(logging.DEBUG)

        assert {"transactions", "transaction_lines", "cash_boxes", "outbox_events"} <= tables
        assert level == logging.WARNING
