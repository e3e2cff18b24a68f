"""
Translators for user-facing voucher text.

A translator is any ``Callable[[str], str]`` mapping a catalog key such as
``VOUCHERS.TOOLS.REVERSE.DESCRIPTION`` to display text.  The request
builder receives one by injection and never looks keys up itself.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping

from voucher_config.schema import VoucherToolsConfig
from voucher_kernel.logging_config import get_logger

logger = get_logger("tools.translate")

Translator = Callable[[str], str]

REVERSE_DESCRIPTION_KEY = "VOUCHERS.TOOLS.REVERSE.DESCRIPTION"
CORRECT_DESCRIPTION_KEY = "VOUCHERS.TOOLS.CORRECT.DESCRIPTION"


class CatalogTranslator:
    """
    Dictionary-backed translator.

    Unknown keys translate to themselves, so a missing catalog entry shows
    up in the UI instead of failing the correction.
    """

    def __init__(self, catalog: Mapping[str, str], language: str = "en"):
        self._catalog = dict(catalog)
        self.language = language

    def __call__(self, key: str) -> str:
        text = self._catalog.get(key)
        if text is None:
            logger.debug(
                "translation_missing",
                extra={"key": key, "language": self.language},
            )
            return key
        return text

    @classmethod
    def from_config(
        cls,
        config: VoucherToolsConfig,
        language: str | None = None,
    ) -> CatalogTranslator:
        """
        Build a translator from a VoucherToolsConfig.

        Falls back to the configured default language when ``language`` has
        no catalog.
        """
        lang = language or config.default_language
        catalog = config.translations.get(lang)
        if catalog is None:
            lang = config.default_language
            catalog = config.translations.get(lang, {})
        return cls(catalog, language=lang)
