"""
Tests for hint -> category/account matching.

Alice and Bob both own a "Food" category and only Bob owns "Coffee",
so a leak across users would show up as a Bob id in Alice's results.
"""

import pytest

from conftest import ALICE, BOB
from smart_input.matching import CategoryAccountMatcher
from smart_input.models import TransactionType


@pytest.fixture
def matcher(storage):
    return CategoryAccountMatcher(storage, threshold=85)


class TestCategoryMatching:
    """Tests for match_category."""

    def test_exact_match_is_case_insensitive(self, matcher, seeded):
        """Test that 'FOOD' finds Alice's Food, not Bob's."""
        match = matcher.match_category("FOOD", ALICE)
        assert match.id == seeded.alice_food.id

    def test_containment(self, matcher, seeded):
        """Test that a hint inside a category name matches."""
        assert matcher.match_category("util", ALICE).id == seeded.alice_utilities.id
        assert matcher.match_category("public transport", ALICE).id == seeded.alice_transport.id

    def test_vietnamese_synonym(self, matcher, seeded):
        """Test that 'ăn sáng' (breakfast) maps to Food."""
        assert matcher.match_category("ăn sáng", ALICE).id == seeded.alice_food.id

    def test_english_synonym(self, matcher, seeded):
        """Test that 'cafe' maps to Food."""
        assert matcher.match_category("cafe", ALICE).id == seeded.alice_food.id

    def test_fuzzy_match(self, matcher, seeded):
        """Test that a typo still matches above the threshold."""
        assert matcher.match_category("Foood", ALICE).id == seeded.alice_food.id

    def test_no_match_is_none(self, matcher, seeded):
        """Test that an unrelated hint is not forced onto a category."""
        assert matcher.match_category("xyzzy", ALICE) is None

    @pytest.mark.parametrize("hint", [None, "", "   "])
    def test_blank_hint_is_none(self, matcher, seeded, hint):
        """Test that a missing hint matches nothing."""
        assert matcher.match_category(hint, ALICE) is None

    def test_never_returns_another_users_category(self, matcher, seeded):
        """Test that Bob's Coffee is invisible to Alice."""
        match = matcher.match_category("coffee", ALICE)
        assert match is not None
        assert match.user_id == ALICE
        assert match.id != seeded.bob_coffee.id

    def test_each_user_gets_their_own(self, matcher, seeded):
        """Test that the same hint resolves per user."""
        assert matcher.match_category("coffee", BOB).id == seeded.bob_coffee.id
        assert matcher.match_category("food", BOB).id == seeded.bob_food.id

    def test_user_without_categories(self, matcher, seeded):
        """Test that a user with no categories gets None."""
        assert matcher.match_category("food", 99) is None

    def test_type_filter(self, matcher, seeded):
        """Test that income categories are not offered for expenses."""
        assert matcher.match_category("salary", ALICE, TransactionType.EXPENSE) is None
        match = matcher.match_category("salary", ALICE, TransactionType.INCOME)
        assert match.id == seeded.alice_salary.id

    def test_type_accepts_string(self, matcher, seeded):
        """Test that the transaction type may be passed by value."""
        assert matcher.match_category("lương", ALICE, "income").id == seeded.alice_salary.id

    @pytest.mark.parametrize("transaction_type", list(TransactionType))
    def test_both_category_matches_either_direction(self, matcher, seeded, transaction_type):
        """Test that a 'both' category is a candidate for income and expense."""
        match = matcher.match_category("gifts", ALICE, transaction_type)
        assert match.id == seeded.alice_gifts.id


class TestAccountMatching:
    """Tests for match_account."""

    def test_exact(self, matcher, seeded):
        """Test an exact account name."""
        assert matcher.match_account("cash", ALICE).id == seeded.alice_cash.id

    def test_containment(self, matcher, seeded):
        """Test part of an account name."""
        assert matcher.match_account("chase", ALICE).id == seeded.alice_bank.id

    @pytest.mark.parametrize("hint,attr", [
        ("card", "alice_card"),
        ("thẻ", "alice_card"),
        ("bank transfer", "alice_bank"),
        ("tiền mặt", "alice_cash"),
    ])
    def test_account_type_keywords(self, matcher, seeded, hint, attr):
        """Test that payment-method words find an account of that type."""
        assert matcher.match_account(hint, ALICE).id == getattr(seeded, attr).id

    def test_missing_account_type_is_none(self, matcher, seeded):
        """Test that 'momo' finds nothing when Alice has no e-wallet."""
        assert matcher.match_account("momo", ALICE) is None

    def test_no_fallback_to_first_account(self, matcher, seeded):
        """Test that an unmatched hint is None, not the first account."""
        assert matcher.match_account("brokerage", ALICE) is None

    def test_never_returns_another_users_account(self, matcher, seeded):
        """Test that naming Bob's account still yields only Alice's records."""
        match = matcher.match_account("Bob Cash", ALICE)
        assert match is None or match.user_id == ALICE
        assert matcher.match_account("Bob Cash", BOB).id == seeded.bob_cash.id


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
