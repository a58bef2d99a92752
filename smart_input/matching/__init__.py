"""
Hint Matching Package

Resolves parser hints to categories and accounts owned by the acting user.
"""

from smart_input.matching.matcher import (
    ACCOUNT_TYPE_KEYWORDS,
    CATEGORY_SYNONYMS,
    CategoryAccountMatcher,
)

__all__ = [
    "ACCOUNT_TYPE_KEYWORDS",
    "CATEGORY_SYNONYMS",
    "CategoryAccountMatcher",
]
