"""
Draft normalization.

Every parser implementation hands back loosely-typed fields (whatever the
model or the regexes produced). This module turns them into a strict
TransactionDraft:

- JSON is dug out of chatty model output
- Amounts like "50k", "15 triệu", "1,234.50" become Money
- Date hints like "yesterday" / "hôm qua" become dates
- Unknown types default to expense, confidence is clamped to 0..1

CRITICAL: A missing or zero amount is NoTransactionFound, never a
zero-amount draft.
"""

import json
import re
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Optional

import structlog

from smart_input.models.finance import SourceModality, TransactionDraft, TransactionType
from smart_input.models.money import (
    InvalidAmount,
    InvalidCurrency,
    Money,
    currency_exponent,
    normalize_currency,
)
from smart_input.parsing.errors import NoTransactionFound


logger = structlog.get_logger(__name__)


# Magnitude words used in spoken/typed Vietnamese and English amounts
AMOUNT_MULTIPLIERS = {
    "k": 1_000,
    "nghìn": 1_000,
    "nghin": 1_000,
    "ngàn": 1_000,
    "ngan": 1_000,
    "tr": 1_000_000,
    "triệu": 1_000_000,
    "trieu": 1_000_000,
    "m": 1_000_000,
    "tỷ": 1_000_000_000,
    "tỉ": 1_000_000_000,
    "ty": 1_000_000_000,
}

_MULTIPLIER_PATTERN = "|".join(
    sorted((re.escape(word) for word in AMOUNT_MULTIPLIERS), key=len, reverse=True)
)

AMOUNT_RE = re.compile(
    rf"(?P<number>\d[\d.,]*?)\s*(?P<suffix>{_MULTIPLIER_PATTERN})?(?!\w|[.,]\d)",
    re.IGNORECASE,
)

DATE_FORMATS = ["%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y", "%Y/%m/%d", "%d.%m.%Y"]

INCOME_WORDS = ("income", "thu nhập", "thu", "salary", "lương", "revenue")


def extract_json(text: str) -> dict[str, Any]:
    """
    Pull the first JSON object out of model output.

    Models like to wrap JSON in prose or ```json fences.

    Raises:
        NoTransactionFound: No parseable object in the text
    """
    if not text:
        raise NoTransactionFound("Empty response from parser")

    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        raise NoTransactionFound("No structured data in parser response", raw_text=text)

    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError:
        raise NoTransactionFound("Parser response is not valid JSON", raw_text=text)

    if not isinstance(data, dict):
        raise NoTransactionFound("Parser response is not an object", raw_text=text)
    return data


def parse_number(text: str, exponent: int = 2) -> Optional[Decimal]:
    """
    Read a number written with either separator convention.

    "1,234.50" and "1.234,50" are both 1234.50. A lone separator followed
    by exactly three digits is a thousands separator when the currency
    has no minor units ("50.000" VND is fifty thousand) or when there is
    more than one group ("1,234,567").
    """
    cleaned = text.strip().strip(".,")
    if not cleaned or not re.fullmatch(r"[\d.,]+", cleaned):
        return None

    has_dot = "." in cleaned
    has_comma = "," in cleaned

    if has_dot and has_comma:
        decimal_sep = "." if cleaned.rfind(".") > cleaned.rfind(",") else ","
        thousands_sep = "," if decimal_sep == "." else "."
        cleaned = cleaned.replace(thousands_sep, "").replace(decimal_sep, ".")
    elif has_dot or has_comma:
        sep = "." if has_dot else ","
        groups = cleaned.split(sep)
        all_thousands = all(len(group) == 3 for group in groups[1:])
        if all_thousands and (len(groups) > 2 or exponent == 0 or sep == ","):
            cleaned = "".join(groups)
        elif len(groups) == 2:
            cleaned = f"{groups[0]}.{groups[1]}"
        else:
            return None

    return Decimal(cleaned)


def find_amount(text: str, exponent: int = 2) -> Optional[Decimal]:
    """
    First amount mentioned in free text, with magnitude words applied.

    "Ăn sáng 35 nghìn" -> 35000, "Lương 15tr" -> 15000000,
    "Spent 25.50 on coffee" -> 25.50
    """
    for match in AMOUNT_RE.finditer(text):
        value = parse_number(match.group("number"), exponent)
        if value is None or value <= 0:
            continue
        suffix = (match.group("suffix") or "").lower()
        if suffix:
            value *= AMOUNT_MULTIPLIERS[suffix]
        return value
    return None


def _months_ago(today: date, months: int) -> date:
    month_index = today.year * 12 + (today.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    # Clamp to the last day of the target month
    next_month = date(year + (month == 12), month % 12 + 1, 1)
    last_day = (next_month - timedelta(days=1)).day
    return date(year, month, min(today.day, last_day))


class DraftNormalizer:
    """
    Converts raw parser fields into a TransactionDraft.

    `today` is injectable so relative dates are deterministic in tests.
    """

    def __init__(
        self,
        default_currency: str,
        today: Optional[Callable[[], date]] = None,
    ):
        self._default_currency = normalize_currency(default_currency)
        self._today = today or date.today

    @property
    def default_currency(self) -> str:
        return self._default_currency

    # -------------------------------------------------------------------------
    # Field normalization
    # -------------------------------------------------------------------------

    def normalize_currency(self, value: Any) -> str:
        if not value:
            return self._default_currency
        try:
            return normalize_currency(value)
        except InvalidCurrency:
            logger.warning("unknown_currency_from_parser", currency=value)
            return self._default_currency

    def normalize_amount(self, value: Any, currency: str) -> Optional[Money]:
        """
        Convert a raw amount to Money, or None when there isn't a usable one.

        Negative amounts are made positive; direction belongs to `type`.
        """
        if value is None or isinstance(value, bool):
            return None

        exponent = currency_exponent(currency)

        if isinstance(value, (int, float, Decimal)):
            number = Decimal(str(value))
        elif isinstance(value, str):
            number = find_amount(value.lower(), exponent)
        else:
            return None

        if number is None:
            return None

        try:
            money = Money.from_decimal(abs(number), currency)
        except InvalidAmount:
            return None
        return money if money.amount > 0 else None

    def normalize_date(self, hint: Any) -> date:
        """Resolve a date hint; anything unreadable means today."""
        today = self._today()

        if isinstance(hint, datetime):
            return hint.date()
        if isinstance(hint, date):
            return hint
        if not hint or not isinstance(hint, str):
            return today

        text = hint.strip().lower()

        if "hôm nay" in text or "today" in text:
            return today
        if "hôm kia" in text or "day before yesterday" in text:
            return today - timedelta(days=2)
        if "hôm qua" in text or "yesterday" in text:
            return today - timedelta(days=1)
        if "tuần trước" in text or "last week" in text:
            return today - timedelta(weeks=1)
        if "tháng trước" in text or "last month" in text:
            return _months_ago(today, 1)

        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue

        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            logger.debug("unreadable_date_hint", hint=hint)
            return today

    def normalize_type(self, value: Any) -> TransactionType:
        if isinstance(value, TransactionType):
            return value
        if isinstance(value, str) and value.strip().lower() in INCOME_WORDS:
            return TransactionType.INCOME
        return TransactionType.EXPENSE

    def normalize_confidence(self, value: Any, default: float = 0.8) -> float:
        try:
            confidence = float(value)
        except (TypeError, ValueError):
            return default
        if confidence != confidence:  # NaN
            return default
        return max(0.0, min(1.0, confidence))

    @staticmethod
    def _clean_text(value: Any, max_length: int) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text[:max_length] or None

    # -------------------------------------------------------------------------
    # Assembly
    # -------------------------------------------------------------------------

    def has_amount(self, data: dict[str, Any]) -> bool:
        currency = self.normalize_currency(data.get("currency"))
        return self.normalize_amount(data.get("amount"), currency) is not None

    def merge(
        self,
        primary: dict[str, Any],
        secondary: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Combine two raw field sets; `primary` wins wherever it has a value.

        Amount and currency travel together so a text amount is never
        paired with the image's currency.
        """
        merged = dict(secondary)
        for key, value in primary.items():
            if key in ("amount", "currency"):
                continue
            if value is not None and value != "":
                merged[key] = value

        if self.has_amount(primary):
            merged["amount"] = primary.get("amount")
            merged["currency"] = primary.get("currency")

        if primary.get("raw_text") and secondary.get("raw_text"):
            merged["raw_text"] = f"{primary['raw_text']}\n{secondary['raw_text']}"
        return merged

    def build_draft(
        self,
        data: dict[str, Any],
        modality: SourceModality,
        language: str,
    ) -> TransactionDraft:
        """
        Build a draft from raw fields.

        Raises:
            NoTransactionFound: No positive amount in the fields
        """
        raw_text = self._clean_text(data.get("raw_text"), 5000)
        currency = self.normalize_currency(data.get("currency"))
        amount = self.normalize_amount(data.get("amount"), currency)

        if amount is None:
            raise NoTransactionFound(
                "Could not find an amount in the input",
                raw_text=raw_text,
            )

        draft = TransactionDraft(
            amount=amount,
            type=self.normalize_type(data.get("type")),
            occurred_at=self.normalize_date(data.get("date_hint") or data.get("date")),
            raw_category_hint=self._clean_text(data.get("category_hint"), 100),
            raw_account_hint=self._clean_text(data.get("account_hint"), 100),
            description=self._clean_text(data.get("description"), 255),
            source_modality=modality,
            language=language,
            confidence=self.normalize_confidence(data.get("confidence")),
            raw_text=raw_text,
        )

        logger.debug(
            "draft_normalized",
            modality=modality.value,
            amount=draft.amount.amount,
            currency=draft.amount.currency,
            type=draft.type.value,
        )
        return draft
