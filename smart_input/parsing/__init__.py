"""
Transaction Parsing Package

Turns voice, receipt, text and text+image input into TransactionDrafts.
"""

from datetime import date
from typing import Callable, Optional

from smart_input.config import Settings, get_settings
from smart_input.parsing.errors import (
    NoTransactionFound,
    ParserUnavailable,
    ParsingError,
    TranscriptionFailed,
    UnsupportedAudioFormat,
    UnsupportedImageFormat,
)
from smart_input.parsing.gemini import GeminiTransactionParser
from smart_input.parsing.interface import TransactionParser
from smart_input.parsing.normalizer import DraftNormalizer
from smart_input.parsing.rules import RuleBasedTransactionParser


def create_parser(
    provider: Optional[str] = None,
    today: Optional[Callable[[], date]] = None,
    settings: Optional[Settings] = None,
) -> TransactionParser:
    """
    Build the configured parser.

    Args:
        provider: "gemini" or "rules"; defaults to the PARSER_PROVIDER setting
        today: Clock for relative dates (tests pin it)
        settings: Defaults to the cached environment settings

    Raises:
        pydantic.ValidationError: Gemini selected but GEMINI_API_KEY is missing
    """
    settings = settings or get_settings()
    app_settings = settings.app
    provider = provider or app_settings.parser_provider
    normalizer = DraftNormalizer(app_settings.default_currency, today=today)

    if provider == "gemini":
        return GeminiTransactionParser(normalizer, settings=settings.gemini)
    if provider == "rules":
        return RuleBasedTransactionParser(normalizer)
    raise ValueError(f"Unknown parser provider: {provider}")


__all__ = [
    "DraftNormalizer",
    "GeminiTransactionParser",
    "NoTransactionFound",
    "ParserUnavailable",
    "ParsingError",
    "RuleBasedTransactionParser",
    "TranscriptionFailed",
    "TransactionParser",
    "UnsupportedAudioFormat",
    "UnsupportedImageFormat",
    "create_parser",
]
