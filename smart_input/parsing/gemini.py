"""
Gemini Transaction Parser

DESIGN DECISION: One multimodal model handles speech, receipts and text:
1. A single API key and client for all four input types
2. Returns JSON we normalize ourselves (we never trust its numbers blindly)
3. Handles Vietnamese magnitude words natively

The model is a TRANSLATOR, not an ORACLE. It turns raw input into fields;
the normalizer decides what those fields mean, and the user confirms.

Transient API failures are retried with exponential back-off. Audio the
model rejects as malformed is retried with compatible MIME types before
we give up.
"""

from typing import Any, Optional

import google.generativeai as genai
import structlog
from google.api_core import exceptions as google_exceptions
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from smart_input.config import GeminiSettings, get_settings
from smart_input.parsing.errors import ParserUnavailable, UnsupportedAudioFormat
from smart_input.parsing.interface import TransactionParser
from smart_input.parsing.media import audio_mime_fallbacks
from smart_input.parsing.normalizer import DraftNormalizer, extract_json


logger = structlog.get_logger(__name__)


TRANSIENT_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.InternalServerError,
    google_exceptions.DeadlineExceeded,
    google_exceptions.ResourceExhausted,
)


FIELDS_DESCRIPTION = """Extract:
- type: "income" or "expense" (default: expense)
- amount: the number as written, magnitude words expanded (50k -> 50000)
- currency: ISO-4217 code if a currency is shown or said, otherwise omit
- description: short description of what the money was for
- category_hint: a category word (food, transport, utilities, salary, rent, shopping, entertainment, health)
- account_hint: payment method if mentioned (cash, card, bank, wallet)
- date_hint: the date or relative day if mentioned (today, yesterday, 2026-01-04)
- confidence: 0.0 to 1.0, how sure you are of the amount and type"""

JSON_INSTRUCTION = """Return ONLY a JSON object, no explanation. Example:
{"type":"expense","amount":50000,"description":"Coffee","category_hint":"food","date_hint":"today","confidence":0.95}
If there is no amount at all, return {"amount": null}."""


def _language_note(language: str) -> str:
    if language == "vi":
        return (
            "Input is Vietnamese. Magnitude words: k/nghìn = x1000, "
            "tr/triệu = x1000000, tỷ = x1000000000. Default currency is VND."
        )
    return f"Input language code: {language}."


def build_text_prompt(text: str, language: str) -> str:
    return (
        "You read short notes about personal money transactions.\n\n"
        f"{_language_note(language)}\n\n"
        f"{FIELDS_DESCRIPTION}\n\n"
        f"{JSON_INSTRUCTION}\n\n"
        f"Input: {text}"
    )


def build_receipt_prompt(language: str) -> str:
    return (
        "You read photographed receipts and bills.\n\n"
        f"{_language_note(language)} Use the grand total "
        "(Total, Tổng cộng, Thành tiền), not a line item or subtotal.\n\n"
        f"{FIELDS_DESCRIPTION}\n"
        "- raw_text: the key lines you read on the receipt\n\n"
        f"{JSON_INSTRUCTION}"
    )


def build_transcription_prompt(language: str) -> str:
    return (
        "Transcribe this recording word for word. "
        f"{_language_note(language)} "
        "Return only the transcript. If nothing is said, return an empty response."
    )


class GeminiTransactionParser(TransactionParser):
    """
    Production parser backed by Google Gemini.

    The model can be injected so tests never touch the network.
    """

    provider_name = "gemini"

    def __init__(
        self,
        normalizer: DraftNormalizer,
        settings: Optional[GeminiSettings] = None,
        model: Optional[Any] = None,
    ):
        super().__init__(normalizer)
        self._settings = settings or get_settings().gemini
        self._model = model if model is not None else self._configure_genai()

    def _configure_genai(self):
        """Configure the Gemini client."""
        genai.configure(api_key=self._settings.api_key)
        return genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config=genai.GenerationConfig(
                temperature=self._settings.temperature,
                top_p=0.8,
                max_output_tokens=self._settings.max_tokens,
            ),
        )

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _generate_with_retry(self, contents: list) -> str:
        response = self._model.generate_content(
            contents,
            request_options={"timeout": self._settings.timeout_seconds},
        )
        try:
            return response.text or ""
        except ValueError:
            # No candidate text (blocked or empty)
            return ""

    def _generate(self, contents: list) -> str:
        """Call the model, mapping API failures to ParserUnavailable."""
        try:
            return self._generate_with_retry(contents)
        except google_exceptions.InvalidArgument:
            raise
        except google_exceptions.GoogleAPIError as e:
            logger.error("gemini_api_error", error=str(e), error_type=type(e).__name__)
            raise ParserUnavailable(f"Gemini request failed: {e}") from e

    # -------------------------------------------------------------------------
    # Capability primitives
    # -------------------------------------------------------------------------

    def _transcribe(self, audio: bytes, mime_type: str, language: str) -> str:
        prompt = build_transcription_prompt(language)
        candidates = audio_mime_fallbacks(mime_type)
        last_error: Optional[Exception] = None

        for candidate in candidates:
            try:
                transcript = self._generate(
                    [prompt, {"mime_type": candidate, "data": audio}]
                )
            except google_exceptions.InvalidArgument as e:
                # Format rejected; try the next compatible type
                logger.info("audio_format_rejected", mime_type=candidate)
                last_error = e
                continue

            logger.info("audio_format_accepted", mime_type=candidate)
            return transcript.strip()

        raise UnsupportedAudioFormat(
            f"Audio could not be processed in any of {candidates}: {last_error}",
            mime_type=mime_type,
        )

    def _extract_from_text(self, text: str, language: str) -> dict[str, Any]:
        try:
            output = self._generate([build_text_prompt(text, language)])
        except google_exceptions.InvalidArgument as e:
            raise ParserUnavailable(f"Gemini rejected the request: {e}") from e
        return extract_json(output)

    def _extract_from_image(
        self,
        image: bytes,
        mime_type: str,
        language: str,
    ) -> dict[str, Any]:
        try:
            output = self._generate(
                [build_receipt_prompt(language), {"mime_type": mime_type, "data": image}]
            )
        except google_exceptions.InvalidArgument as e:
            raise ParserUnavailable(f"Gemini rejected the image: {e}") from e
        return extract_json(output)
