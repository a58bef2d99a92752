"""
Parsing errors.

Input errors (UnsupportedAudioFormat, UnsupportedImageFormat) are
caller-correctable. Extraction failures (TranscriptionFailed,
NoTransactionFound) mean the capability ran but produced nothing usable.
"""

from typing import Optional


class ParsingError(Exception):
    """Base exception for parsing errors."""
    pass


class UnsupportedAudioFormat(ParsingError):
    """Audio bytes are not a container we can send for transcription."""

    def __init__(self, message: str, mime_type: Optional[str] = None):
        self.mime_type = mime_type
        super().__init__(message)


class UnsupportedImageFormat(ParsingError):
    """Image bytes are not a JPEG/PNG/WEBP/GIF image."""

    def __init__(self, message: str, mime_type: Optional[str] = None):
        self.mime_type = mime_type
        super().__init__(message)


class TranscriptionFailed(ParsingError):
    """The speech capability ran but produced no transcript."""
    pass


class NoTransactionFound(ParsingError):
    """Input was understood but contains no usable amount."""

    def __init__(self, message: str, raw_text: Optional[str] = None):
        self.raw_text = raw_text
        super().__init__(message)


class ParserUnavailable(ParsingError):
    """The external parsing capability could not be reached or refused the call."""
    pass
