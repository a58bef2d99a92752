"""
Category/Account Matcher

Resolves a free-text hint from a parser ("food", "cafe", "tiền mặt") to a
category or account the acting user actually owns.

Matching policy, first hit wins:
1. Exact name match (case-insensitive)
2. Containment (hint inside the name, or the name inside the hint)
3. Synonym table (English + Vietnamese keywords -> usual category names)
4. Fuzzy match (rapidfuzz WRatio) above the configured threshold

No match is a valid answer: we return None and the caller asks the user.
We never invent a category and never fall back to "the first one".

CRITICAL: Candidates come only from a user-scoped storage query, and
every result is re-checked against the acting user before it is returned.
A matcher that leaks another user's record is a security bug, not a
quality issue.
"""

import re
from typing import Optional, Sequence, TypeVar, Union

import structlog
from rapidfuzz import fuzz, process

from smart_input.models.finance import Account, AccountType, Category, TransactionType
from smart_input.storage.interface import FinanceStorageInterface


logger = structlog.get_logger(__name__)

Record = TypeVar("Record", Category, Account)

# Minimum length for substring matching; "an" inside "Transport" is noise
MIN_CONTAINMENT_LENGTH = 3

# Keyword in the hint -> category names it usually refers to
CATEGORY_SYNONYMS = {
    "ăn": ["food", "ăn uống", "thực phẩm"],
    "food": ["food", "ăn uống", "thực phẩm", "groceries", "dining"],
    "cafe": ["food", "ăn uống", "coffee"],
    "coffee": ["coffee", "food", "ăn uống"],
    "cà phê": ["coffee", "food", "ăn uống"],
    "xăng": ["transport", "di chuyển"],
    "transport": ["transport", "transportation", "di chuyển"],
    "điện": ["utilities", "tiện ích", "điện nước"],
    "nước": ["utilities", "tiện ích", "điện nước"],
    "utilities": ["utilities", "tiện ích", "điện nước", "bills"],
    "lương": ["salary", "thu nhập", "income"],
    "salary": ["salary", "thu nhập", "income"],
    "thuê": ["rent", "nhà ở", "housing"],
    "rent": ["rent", "nhà ở", "housing"],
    "mua sắm": ["shopping", "mua sắm"],
    "shopping": ["shopping", "mua sắm"],
    "giải trí": ["entertainment", "giải trí"],
    "entertainment": ["entertainment", "giải trí"],
    "health": ["health", "healthcare", "sức khỏe", "y tế"],
}

# Keyword in the hint -> account type it usually refers to
ACCOUNT_TYPE_KEYWORDS = {
    "tiền mặt": AccountType.CASH,
    "cash": AccountType.CASH,
    "thẻ": AccountType.CREDIT_CARD,
    "card": AccountType.CREDIT_CARD,
    "credit": AccountType.CREDIT_CARD,
    "ngân hàng": AccountType.BANK,
    "bank": AccountType.BANK,
    "chuyển khoản": AccountType.BANK,
    "transfer": AccountType.BANK,
    "ví": AccountType.E_WALLET,
    "wallet": AccountType.E_WALLET,
    "momo": AccountType.E_WALLET,
    "tiết kiệm": AccountType.SAVINGS,
    "saving": AccountType.SAVINGS,
}


def _normalize(text: str) -> str:
    return " ".join(text.casefold().split())


def _has_keyword(text: str, keyword: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(keyword)}(?!\w)", text) is not None


class CategoryAccountMatcher:
    """
    Read-only resolver of parser hints to user-owned records.

    Safe to call repeatedly and concurrently: it holds no state between
    calls and every call reads the user's records fresh.
    """

    def __init__(self, storage: FinanceStorageInterface, threshold: float = 85.0):
        self._storage = storage
        self._threshold = threshold

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def match_category(
        self,
        hint: Optional[str],
        user_id: int,
        transaction_type: Union[TransactionType, str] = TransactionType.EXPENSE,
    ) -> Optional[Category]:
        """
        Find the user's category for a hint.

        Only active categories of `transaction_type` (or 'both') are candidates.
        """
        if not hint or not hint.strip():
            return None

        transaction_type = TransactionType(transaction_type)
        candidates = self._owned(
            self._storage.list_categories(user_id, transaction_type=transaction_type),
            user_id,
        )
        if not candidates:
            return None

        needle = _normalize(hint)
        match = (
            self._exact(needle, candidates)
            or self._containment(needle, candidates)
            or self._category_synonym(needle, candidates)
            or self._fuzzy(needle, candidates)
        )

        logger.debug(
            "category_match",
            user_id=user_id,
            hint=hint,
            category_id=match.id if match else None,
        )
        return self._verified(match, user_id)

    def match_account(self, hint: Optional[str], user_id: int) -> Optional[Account]:
        """Find the user's account for a hint such as "cash" or "Vietcombank"."""
        if not hint or not hint.strip():
            return None

        candidates = self._owned(self._storage.list_accounts(user_id), user_id)
        if not candidates:
            return None

        needle = _normalize(hint)
        match = (
            self._exact(needle, candidates)
            or self._containment(needle, candidates)
            or self._account_type(needle, candidates)
            or self._fuzzy(needle, candidates)
        )

        logger.debug(
            "account_match",
            user_id=user_id,
            hint=hint,
            account_id=match.id if match else None,
        )
        return self._verified(match, user_id)

    # -------------------------------------------------------------------------
    # Ownership
    # -------------------------------------------------------------------------

    @staticmethod
    def _owned(records: Sequence[Record], user_id: int) -> list[Record]:
        return [record for record in records if record.user_id == user_id]

    @staticmethod
    def _verified(match: Optional[Record], user_id: int) -> Optional[Record]:
        if match is not None and match.user_id != user_id:
            logger.error(
                "cross_user_match_blocked",
                user_id=user_id,
                record_owner=match.user_id,
            )
            return None
        return match

    # -------------------------------------------------------------------------
    # Strategies
    # -------------------------------------------------------------------------

    @staticmethod
    def _exact(needle: str, candidates: Sequence[Record]) -> Optional[Record]:
        for record in candidates:
            if _normalize(record.name) == needle:
                return record
        return None

    @staticmethod
    def _containment(needle: str, candidates: Sequence[Record]) -> Optional[Record]:
        if len(needle) < MIN_CONTAINMENT_LENGTH:
            return None

        hits = []
        for record in candidates:
            name = _normalize(record.name)
            if len(name) < MIN_CONTAINMENT_LENGTH:
                continue
            if needle in name or name in needle:
                hits.append((fuzz.ratio(needle, name), record))

        if not hits:
            return None
        # Closest by plain ratio; ties keep storage order
        return max(hits, key=lambda hit: hit[0])[1]

    @staticmethod
    def _category_synonym(needle: str, candidates: Sequence[Category]) -> Optional[Category]:
        by_name = {}
        for category in candidates:
            by_name.setdefault(_normalize(category.name), category)

        for keyword, names in CATEGORY_SYNONYMS.items():
            if not _has_keyword(needle, keyword):
                continue
            for name in names:
                if name in by_name:
                    return by_name[name]
        return None

    @staticmethod
    def _account_type(needle: str, candidates: Sequence[Account]) -> Optional[Account]:
        for keyword, account_type in ACCOUNT_TYPE_KEYWORDS.items():
            if not _has_keyword(needle, keyword):
                continue
            for account in candidates:
                if account.account_type == account_type:
                    return account
        return None

    def _fuzzy(self, needle: str, candidates: Sequence[Record]) -> Optional[Record]:
        choices = {index: _normalize(record.name) for index, record in enumerate(candidates)}
        result = process.extractOne(
            needle,
            choices,
            scorer=fuzz.WRatio,
            score_cutoff=self._threshold,
        )
        if result is None:
            return None

        _, score, index = result
        logger.debug("fuzzy_match", hint=needle, score=score, name=candidates[index].name)
        return candidates[index]
