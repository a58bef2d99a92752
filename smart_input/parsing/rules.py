"""
Rule-based Transaction Parser

Deterministic offline parser for typed input. Useful when no API key is
configured, for quick entry, and as a predictable baseline in tests.

DESIGN DECISION: Simple keyword matching rather than ML because:
1. More transparent to the user
2. Easier to debug
3. The user confirms the draft anyway

It cannot hear audio or read images: voice input fails with
TranscriptionFailed and a bare receipt finds no transaction.
"""

import re
from typing import Any, Optional

from smart_input.models.money import currency_exponent
from smart_input.parsing.errors import TranscriptionFailed
from smart_input.parsing.interface import TransactionParser
from smart_input.parsing.normalizer import find_amount


# Canonical category hint -> words that suggest it
CATEGORY_KEYWORDS = {
    "food": [
        "coffee", "cafe", "cà phê", "lunch", "dinner", "breakfast", "restaurant",
        "food", "groceries", "grocery", "ăn", "ăn sáng", "ăn trưa", "ăn tối",
        "phở", "cơm", "bún", "trà sữa",
    ],
    "transport": [
        "taxi", "uber", "grab", "bus", "train", "fuel", "gas station", "petrol",
        "parking", "xăng", "đổ xăng", "xe", "gửi xe",
    ],
    "utilities": [
        "electricity", "electric", "water bill", "internet", "phone bill",
        "tiền điện", "tiền nước", "điện", "nước", "wifi",
    ],
    "salary": ["salary", "paycheck", "wage", "lương"],
    "rent": ["rent", "thuê nhà", "tiền nhà", "thuê"],
    "shopping": ["shopping", "clothes", "shoes", "mua sắm", "quần áo"],
    "entertainment": ["movie", "cinema", "netflix", "game", "concert", "giải trí", "xem phim"],
    "health": ["doctor", "pharmacy", "medicine", "hospital", "thuốc", "bệnh viện"],
}

# Canonical account hint -> words that suggest it
ACCOUNT_KEYWORDS = {
    "cash": ["cash", "tiền mặt"],
    "card": ["credit card", "card", "visa", "mastercard", "thẻ"],
    "bank": ["bank", "transfer", "ngân hàng", "chuyển khoản"],
    "wallet": ["wallet", "momo", "zalopay", "ví"],
}

INCOME_KEYWORDS = [
    "salary", "paycheck", "income", "received", "earned", "got paid", "refund",
    "bonus", "lương", "thưởng", "nhận", "thu nhập",
]

DATE_HINTS = [
    "day before yesterday", "hôm kia", "yesterday", "hôm qua", "today", "hôm nay",
    "last week", "tuần trước", "last month", "tháng trước",
]

DATE_RE = re.compile(r"\b(\d{4}-\d{2}-\d{2}|\d{1,2}/\d{1,2}/\d{4})\b")

CURRENCY_MARKERS = {
    "$": "USD",
    "usd": "USD",
    "€": "EUR",
    "eur": "EUR",
    "£": "GBP",
    "gbp": "GBP",
    "¥": "JPY",
    "jpy": "JPY",
    "₫": "VND",
    "vnd": "VND",
    "đồng": "VND",
}

LANGUAGE_CURRENCIES = {"vi": "VND"}


def _contains_word(text: str, word: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(word)}(?!\w)", text) is not None


def _first_keyword(text: str, table: dict[str, list[str]]) -> Optional[str]:
    # Longest keyword wins so "gas station" beats "gas"
    best: Optional[tuple[int, str]] = None
    for canonical, words in table.items():
        for word in words:
            if _contains_word(text, word) and (best is None or len(word) > best[0]):
                best = (len(word), canonical)
    return best[1] if best else None


class RuleBasedTransactionParser(TransactionParser):
    """
    Regex and keyword parser for short typed entries.

    Examples:
        "Spent 25.50 on coffee"  -> expense, 25.50, food
        "Lương tháng 15 triệu"   -> income, 15000000, salary
        "Đổ xăng 200k hôm qua"   -> expense, 200000, transport, yesterday
    """

    provider_name = "rules"

    def _currency_for(self, text: str, language: str) -> str:
        for marker, code in CURRENCY_MARKERS.items():
            if marker.isalpha():
                if _contains_word(text, marker):
                    return code
            elif marker in text:
                return code
        return LANGUAGE_CURRENCIES.get(language, self.normalizer.default_currency)

    def _transcribe(self, audio: bytes, mime_type: str, language: str) -> str:
        raise TranscriptionFailed("Offline parser cannot transcribe audio")

    def _extract_from_image(
        self,
        image: bytes,
        mime_type: str,
        language: str,
    ) -> dict[str, Any]:
        return {}

    def _extract_from_text(self, text: str, language: str) -> dict[str, Any]:
        lowered = text.lower()

        date_hint = next((hint for hint in DATE_HINTS if hint in lowered), None)
        date_match = DATE_RE.search(lowered)
        if date_match:
            date_hint = date_match.group(1)
            # keep the date's digits away from the amount search
            lowered = lowered.replace(date_match.group(1), " ")

        currency = self._currency_for(lowered, language)
        amount = find_amount(lowered, currency_exponent(currency))

        is_income = any(_contains_word(lowered, word) for word in INCOME_KEYWORDS)
        category_hint = _first_keyword(lowered, CATEGORY_KEYWORDS)
        account_hint = _first_keyword(lowered, ACCOUNT_KEYWORDS)

        confidence = 0.5
        if amount is not None:
            confidence += 0.2
        if category_hint:
            confidence += 0.1

        return {
            "type": "income" if is_income else "expense",
            "amount": amount,
            "currency": currency,
            "description": text[:255],
            "category_hint": category_hint,
            "account_hint": account_hint,
            "date_hint": date_hint,
            "confidence": round(confidence, 2),
            "raw_text": text,
        }
