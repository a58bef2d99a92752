"""
Transaction Parser Interface

DESIGN DECISION: Parsing is an injectable capability, not a hard-wired service.
1. Production uses one implementation backed by an external model
2. Tests substitute a deterministic fake with canned output
3. The pipeline never knows which one it is talking to

The four public entry points live here, in the base class. They do the
format checks, call the capability primitives, and hand the raw fields to
the shared normalizer. Implementations only provide the primitives:

    _transcribe(audio, mime_type, language)       -> transcript text
    _extract_from_text(text, language)            -> raw field dict
    _extract_from_image(image, mime_type, language) -> raw field dict

CRITICAL: Parsers only PRODUCE drafts. They never write anything.
A parse that finds no amount raises NoTransactionFound; it never returns
a zero-amount draft.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import structlog

from smart_input.models.finance import SourceModality, TransactionDraft
from smart_input.parsing.errors import NoTransactionFound, TranscriptionFailed
from smart_input.parsing.media import detect_audio_mime, detect_image_mime
from smart_input.parsing.normalizer import DraftNormalizer


logger = structlog.get_logger(__name__)


class TransactionParser(ABC):
    """
    Turns one raw input into a TransactionDraft.

    Entry points are synchronous and blocking; waiting on the external
    capability is plain latency from the caller's point of view.
    """

    provider_name = "base"

    def __init__(self, normalizer: DraftNormalizer):
        self._normalizer = normalizer

    @property
    def normalizer(self) -> DraftNormalizer:
        return self._normalizer

    # -------------------------------------------------------------------------
    # Capability primitives
    # -------------------------------------------------------------------------

    @abstractmethod
    def _transcribe(self, audio: bytes, mime_type: str, language: str) -> str:
        """Return a transcript of the audio (empty when nothing was heard)."""
        pass

    @abstractmethod
    def _extract_from_text(self, text: str, language: str) -> dict[str, Any]:
        """Return raw transaction fields found in the text."""
        pass

    @abstractmethod
    def _extract_from_image(
        self,
        image: bytes,
        mime_type: str,
        language: str,
    ) -> dict[str, Any]:
        """Return raw transaction fields read from a receipt image."""
        pass

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def parse_voice(
        self,
        audio: bytes,
        language: str,
        mime_type: Optional[str] = None,
    ) -> TransactionDraft:
        """
        Parse a spoken transaction.

        Raises:
            UnsupportedAudioFormat: Bytes are not a recognized audio container
            TranscriptionFailed: Nothing could be transcribed
            NoTransactionFound: Transcript has no amount
        """
        detected = detect_audio_mime(audio)
        if mime_type and mime_type.split(";", 1)[0].strip().lower() != detected:
            logger.warning(
                "audio_mime_mismatch",
                declared_mime=mime_type,
                detected_mime=detected,
            )
        logger.info(
            "parse_voice",
            provider=self.provider_name,
            detected_mime=detected,
            declared_mime=mime_type,
            size=len(audio),
        )

        transcript = self._transcribe(audio, detected, language)
        if not transcript or not transcript.strip():
            raise TranscriptionFailed("Could not transcribe the audio")

        data = self._extract_from_text(transcript.strip(), language)
        data.setdefault("raw_text", transcript.strip())
        return self._normalizer.build_draft(data, SourceModality.VOICE, language)

    def parse_receipt(self, image: bytes, language: str) -> TransactionDraft:
        """
        Parse a photographed receipt or bill.

        Raises:
            UnsupportedImageFormat: Bytes are not a supported image
            NoTransactionFound: No total could be read
        """
        mime_type = detect_image_mime(image)
        logger.info(
            "parse_receipt",
            provider=self.provider_name,
            mime_type=mime_type,
            size=len(image),
        )

        data = self._extract_from_image(image, mime_type, language)
        return self._normalizer.build_draft(data, SourceModality.RECEIPT, language)

    def parse_text(self, text: str, language: str) -> TransactionDraft:
        """
        Parse a typed transaction such as "Cafe 50k" or "Spent 25.50 on coffee".

        Raises:
            NoTransactionFound: No monetary statement in the text
        """
        if not text or not text.strip():
            raise NoTransactionFound("Text is empty")

        logger.info("parse_text", provider=self.provider_name, length=len(text))

        data = self._extract_from_text(text.strip(), language)
        data.setdefault("raw_text", text.strip())
        return self._normalizer.build_draft(data, SourceModality.TEXT, language)

    def parse_text_with_image(
        self,
        text: str,
        image: bytes,
        mime_type: Optional[str],
        language: str,
    ) -> TransactionDraft:
        """
        Parse a typed note together with a receipt image.

        Both signals are extracted on their own and merged. Fields from the
        text win, the amount included; the image only fills gaps.

        Raises:
            UnsupportedImageFormat: Bytes are not a supported image
            NoTransactionFound: Neither signal has an amount
        """
        detected = detect_image_mime(image)
        if mime_type and mime_type.split(";", 1)[0].strip().lower() != detected:
            logger.warning(
                "image_mime_mismatch",
                declared_mime=mime_type,
                detected_mime=detected,
            )

        text_data: dict[str, Any] = {}
        if text and text.strip():
            try:
                text_data = self._extract_from_text(text.strip(), language)
            except NoTransactionFound:
                text_data = {}
            text_data.setdefault("raw_text", text.strip())

        try:
            image_data = self._extract_from_image(image, detected, language)
        except NoTransactionFound:
            # an unreadable receipt still leaves the typed note
            image_data = {}

        merged = self._normalizer.merge(text_data, image_data)
        return self._normalizer.build_draft(
            merged,
            SourceModality.TEXT_WITH_IMAGE,
            language,
        )
