"""
Integration tests for the smart input flow.

The parser is a fake with canned fields; storage, matching, validation,
events and audit are the real thing on in-memory SQLite.
"""

import pytest
from datetime import date

from conftest import ALICE, BOB, TODAY, FakeParser
from smart_input.config import Settings
from smart_input.models import (
    Account,
    AccountType,
    CurrencyMismatch,
    Money,
    SourceModality,
    TransactionType,
)
from smart_input.models.audit import AuditEventType
from smart_input.orchestrator import (
    AccountRequired,
    AlreadyConfirmed,
    DraftRejected,
    InputRejected,
    SmartInputFlow,
    create_app_components,
)
from smart_input.parsing import NoTransactionFound, ParserUnavailable, UnsupportedAudioFormat
from smart_input.policies import AccessDenied
from smart_input.services import CategoryTypeMismatch
from smart_input.audit import create_correlation_id
from test_parsing import WAV, make_image


COFFEE = {
    "amount": 25.5,
    "description": "Coffee",
    "category_hint": "food",
    "account_hint": "card",
}


@pytest.fixture
def make_flow(storage, transaction_service, validator, audit_logger, app_settings):
    def build(parser, settings=None):
        return SmartInputFlow(
            parser,
            storage,
            transaction_service,
            validator=validator,
            audit_logger=audit_logger,
            settings=settings or app_settings,
        )
    return build


@pytest.fixture
def coffee_flow(make_flow, normalizer):
    parser = FakeParser(normalizer, text_fields=COFFEE)
    return make_flow(parser)


def event_types(audit_storage, correlation_id) -> list:
    return [e.event_type for e in audit_storage.get_events_by_correlation_id(correlation_id)]


class TestPreview:
    """Tests for parse -> validate -> match -> preview."""

    def test_text_preview(self, coffee_flow, storage, seeded, audit_storage):
        """Test that a parsed note comes back with the user's own suggestions."""
        correlation_id = create_correlation_id()
        preview = coffee_flow.parse_text(ALICE, "Coffee 25.50 on card", correlation_id=correlation_id)

        assert preview.draft.amount == Money(amount=2550, currency="USD")
        assert preview.draft.source_modality == SourceModality.TEXT
        assert preview.suggested_category.id == seeded.alice_food.id
        assert preview.suggested_account.id == seeded.alice_card.id
        assert preview.validation.is_valid

        types = event_types(audit_storage, correlation_id)
        assert AuditEventType.DRAFT_PARSED in types
        assert AuditEventType.HINTS_MATCHED in types

    def test_preview_never_saves_a_transaction(self, coffee_flow, storage, seeded):
        """Test that parsing alone writes no transaction and moves no balance."""
        coffee_flow.parse_text(ALICE, "Coffee 25.50")
        assert storage.list_transactions(ALICE) == []
        assert storage.get_account(seeded.alice_card.id).balance == 0

    def test_ingestion_record_is_kept(self, coffee_flow, storage, seeded):
        """Test that every successful parse lands in the ingestion history."""
        preview = coffee_flow.parse_text(ALICE, "Coffee 25.50")
        record = storage.get_ingestion(preview.ingestion_id)
        assert record.user_id == ALICE
        assert record.provider == "fake"
        assert record.raw_text == "Coffee 25.50"
        assert record.parsed_result["amount"] == {"amount": 2550, "currency": "USD"}
        assert not record.transaction_saved

    def test_suggestions_are_per_user(self, coffee_flow, seeded):
        """Test that Bob's preview points at Bob's category and account."""
        preview = coffee_flow.parse_text(BOB, "Coffee 25.50")
        assert preview.suggested_category.id == seeded.bob_food.id
        assert preview.suggested_account.id == seeded.bob_cash.id

    def test_fallback_to_first_account(self, make_flow, normalizer, seeded):
        """Test that no account hint suggests the user's first active account."""
        parser = FakeParser(normalizer, text_fields={"amount": 10, "description": "Gift"})
        preview = make_flow(parser).parse_text(ALICE, "Gift 10")
        assert preview.suggested_account.id == seeded.alice_cash.id
        assert preview.suggested_category is None

    def test_voice_preview(self, make_flow, normalizer, seeded):
        """Test that voice is transcribed, then extracted as text."""
        parser = FakeParser(normalizer, transcript="coffee twenty five fifty", text_fields=COFFEE)
        preview = make_flow(parser).parse_voice(ALICE, WAV)
        assert parser.calls == ["transcribe:audio/wav", "text"]
        assert preview.draft.source_modality == SourceModality.VOICE
        assert preview.draft.raw_text == "coffee twenty five fifty"

    def test_receipt_quality_warnings(self, make_flow, normalizer, seeded):
        """Test that a small dark photo is previewed with quality warnings."""
        parser = FakeParser(normalizer, image_fields={"amount": "45.00", "description": "Dinner"})
        image = make_image("PNG", size=(120, 120), color=(5, 5, 5))
        preview = make_flow(parser).parse_receipt(ALICE, image)
        assert preview.draft.amount == Money(amount=4500, currency="USD")
        assert "Image resolution is low, text may be hard to read" in preview.validation.warnings
        assert "Image is very dark" in preview.validation.warnings

    def test_text_with_image_prefers_text(self, make_flow, normalizer, seeded):
        """Test that the typed amount wins over the receipt's."""
        parser = FakeParser(
            normalizer,
            text_fields={"amount": 30, "description": "Team lunch"},
            image_fields={"amount": 45, "description": "RESTAURANT", "category_hint": "food"},
        )
        preview = make_flow(parser).parse_text_with_image(ALICE, "team lunch 30", make_image("JPEG"))
        assert preview.draft.amount == Money(amount=3000, currency="USD")
        assert preview.draft.description == "Team lunch"
        assert preview.draft.source_modality == SourceModality.TEXT_WITH_IMAGE
        assert preview.suggested_category.id == seeded.alice_food.id

    def test_duplicate_warning_in_preview(self, coffee_flow, transaction_service, seeded):
        """Test that re-entering a saved transaction warns about a duplicate."""
        transaction_service.record_expense(
            ALICE, seeded.alice_card.id, Money(amount=2550, currency="USD"),
            description="Coffee", occurred_at=TODAY,
        )
        preview = coffee_flow.parse_text(ALICE, "Coffee 25.50")
        assert any("may already exist" in warning for warning in preview.validation.warnings)


class TestInputRejection:
    """Tests for checks made before the parser is called."""

    def test_unsupported_language(self, make_flow, normalizer, audit_storage, seeded):
        """Test that an unsupported language is refused and audited."""
        parser = FakeParser(normalizer, text_fields=COFFEE)
        correlation_id = create_correlation_id()
        with pytest.raises(InputRejected, match="Unsupported language"):
            make_flow(parser).parse_text(ALICE, "Café 25", language="fr", correlation_id=correlation_id)
        assert parser.calls == []
        assert event_types(audit_storage, correlation_id) == [AuditEventType.INPUT_REJECTED]

    def test_language_is_case_insensitive(self, make_flow, normalizer, seeded):
        """Test that 'VI' is accepted as Vietnamese."""
        parser = FakeParser(normalizer, text_fields={"amount": 50000, "currency": "VND"})
        preview = make_flow(parser).parse_text(ALICE, "Cafe 50k", language="VI")
        assert preview.draft.language == "vi"

    def test_upload_too_large(self, make_flow, normalizer, app_settings, seeded):
        """Test that an oversized recording is refused before transcription."""
        parser = FakeParser(normalizer, transcript="x", text_fields=COFFEE)
        settings = app_settings.model_copy(update={"max_upload_size_mb": 1})
        audio = WAV + b"\x00" * (1024 * 1024)
        with pytest.raises(InputRejected, match="exceeds 1 MB"):
            make_flow(parser, settings).parse_voice(ALICE, audio)
        assert parser.calls == []

    def test_anonymous_user(self, coffee_flow):
        """Test that parsing requires a user."""
        with pytest.raises(AccessDenied):
            coffee_flow.parse_text(None, "Coffee 25.50")


class TestParseFailures:
    """Tests for parser errors surfacing through the flow."""

    def test_no_transaction_found(self, make_flow, normalizer, storage, audit_storage, seeded):
        """Test that a parse without an amount is audited and not recorded."""
        parser = FakeParser(normalizer, text_fields={"description": "hello"})
        correlation_id = create_correlation_id()
        with pytest.raises(NoTransactionFound):
            make_flow(parser).parse_text(ALICE, "hello there", correlation_id=correlation_id)

        assert event_types(audit_storage, correlation_id) == [AuditEventType.PARSE_FAILED]
        assert storage.list_ingestions(ALICE) == []

    def test_unrecognized_audio(self, make_flow, normalizer, audit_storage, seeded):
        """Test that junk audio is UnsupportedAudioFormat, not a transcription attempt."""
        parser = FakeParser(normalizer, transcript="x")
        correlation_id = create_correlation_id()
        with pytest.raises(UnsupportedAudioFormat):
            make_flow(parser).parse_voice(ALICE, b"definitely not audio", correlation_id=correlation_id)
        assert parser.calls == []
        assert event_types(audit_storage, correlation_id) == [AuditEventType.PARSE_FAILED]

    def test_parser_unavailable(self, make_flow, normalizer, audit_storage, seeded):
        """Test that an outage is audited as an external service error."""
        parser = FakeParser(normalizer, error=ParserUnavailable("Gemini is down"))
        correlation_id = create_correlation_id()
        with pytest.raises(ParserUnavailable):
            make_flow(parser).parse_text(ALICE, "Coffee 25.50", correlation_id=correlation_id)

        events = audit_storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in events] == [AuditEventType.EXTERNAL_SERVICE_ERROR]
        assert events[0].details["service"] == "fake"


class TestConfirm:
    """Tests for turning a preview into a transaction."""

    def test_confirm_saves_suggestions(self, coffee_flow, storage, seeded, wired, audit_storage):
        """Test that confirming books the draft on the suggested account and category."""
        correlation_id = create_correlation_id()
        preview = coffee_flow.parse_text(ALICE, "Coffee 25.50 card", correlation_id=correlation_id)
        transaction = coffee_flow.confirm(ALICE, preview, correlation_id=correlation_id)

        assert transaction.amount == Money(amount=2550, currency="USD")
        assert transaction.account_id == seeded.alice_card.id
        assert transaction.category_id == seeded.alice_food.id
        assert storage.get_account(seeded.alice_card.id).balance == -2550

        record = storage.get_ingestion(preview.ingestion_id)
        assert record.transaction_saved
        assert record.transaction_id == transaction.id
        assert AuditEventType.TRANSACTION_CREATED in event_types(audit_storage, correlation_id)

    def test_confirm_with_overrides(self, coffee_flow, storage, seeded):
        """Test that the user's edits win over the parsed values."""
        preview = coffee_flow.parse_text(ALICE, "Coffee 25.50")
        transaction = coffee_flow.confirm(ALICE, preview, overrides={
            "amount": "30.00",
            "account_id": seeded.alice_bank.id,
            "category_id": None,
            "description": "Coffee beans",
            "occurred_at": "2026-03-14",
            "notes": "for the office",
        })
        assert transaction.amount == Money(amount=3000, currency="USD")
        assert transaction.account_id == seeded.alice_bank.id
        assert transaction.category_id is None
        assert transaction.description == "Coffee beans"
        assert transaction.occurred_at == date(2026, 3, 14)
        assert transaction.notes == "for the office"

    def test_confirm_type_override(self, coffee_flow, seeded):
        """Test that the direction can be flipped on review."""
        preview = coffee_flow.parse_text(ALICE, "Coffee 25.50")
        transaction = coffee_flow.confirm(
            ALICE, preview, overrides={"type": "income", "category_id": seeded.alice_gifts.id},
        )
        assert transaction.type == TransactionType.INCOME

    def test_type_override_drops_expense_category(self, coffee_flow, seeded):
        """Test that flipping to income re-matches the hint among income categories."""
        preview = coffee_flow.parse_text(ALICE, "Coffee 25.50")
        assert preview.suggested_category.id == seeded.alice_food.id

        transaction = coffee_flow.confirm(ALICE, preview, overrides={"type": "income"})
        assert transaction.type == TransactionType.INCOME
        assert transaction.category_id is None

    def test_type_override_with_mismatched_category(self, coffee_flow, storage, seeded):
        """Test that an explicit expense category on income is refused and the preview stays open."""
        preview = coffee_flow.parse_text(ALICE, "Coffee 25.50")
        with pytest.raises(CategoryTypeMismatch):
            coffee_flow.confirm(
                ALICE, preview, overrides={"type": "income", "category_id": seeded.alice_food.id},
            )
        assert not storage.get_ingestion(preview.ingestion_id).transaction_saved

        transaction = coffee_flow.confirm(ALICE, preview)
        assert storage.get_ingestion(preview.ingestion_id).transaction_id == transaction.id

    def test_confirm_twice(self, coffee_flow, storage, seeded):
        """Test that one preview can't be saved as two transactions."""
        preview = coffee_flow.parse_text(ALICE, "Coffee 25.50")
        coffee_flow.confirm(ALICE, preview)
        with pytest.raises(AlreadyConfirmed):
            coffee_flow.confirm(ALICE, preview)
        assert len(storage.list_transactions(ALICE)) == 1

    def test_confirm_with_stale_read(self, coffee_flow, storage, seeded, monkeypatch):
        """Test that a second confirm that read the record before the first saved still loses."""
        preview = coffee_flow.parse_text(ALICE, "Coffee 25.50")
        unsaved = storage.get_ingestion(preview.ingestion_id)
        coffee_flow.confirm(ALICE, preview)

        monkeypatch.setattr(storage, "get_ingestion", lambda ingestion_id: unsaved)
        with pytest.raises(AlreadyConfirmed):
            coffee_flow.confirm(ALICE, preview)
        assert len(storage.list_transactions(ALICE)) == 1
        assert storage.get_account(seeded.alice_card.id).balance == -2550

    def test_confirm_other_users_preview(self, coffee_flow, storage, seeded):
        """Test that Bob can't confirm Alice's preview."""
        preview = coffee_flow.parse_text(ALICE, "Coffee 25.50")
        with pytest.raises(AccessDenied):
            coffee_flow.confirm(BOB, preview, overrides={"account_id": seeded.bob_cash.id})
        assert storage.list_transactions(BOB) == []

    def test_future_date_rejected(self, coffee_flow, storage, seeded):
        """Test that an edited date in the future blocks saving."""
        preview = coffee_flow.parse_text(ALICE, "Coffee 25.50")
        with pytest.raises(DraftRejected) as exc_info:
            coffee_flow.confirm(ALICE, preview, overrides={"occurred_at": date(2026, 4, 30)})
        assert "future" in str(exc_info.value)
        assert storage.list_transactions(ALICE) == []

    def test_unknown_override(self, coffee_flow, seeded):
        """Test that only reviewable fields can be overridden."""
        preview = coffee_flow.parse_text(ALICE, "Coffee 25.50")
        with pytest.raises(ValueError):
            coffee_flow.confirm(ALICE, preview, overrides={"user_id": BOB})

    def test_account_required(self, coffee_flow, seeded):
        """Test that a user without accounts must pick one."""
        preview = coffee_flow.parse_text(99, "Coffee 25.50")
        assert preview.suggested_account is None
        with pytest.raises(AccountRequired):
            coffee_flow.confirm(99, preview)


class TestQuickEntry:
    """Tests for form-based entry."""

    def test_quick_entry_defaults(self, coffee_flow, storage, seeded):
        """Test that the first account and a matched category are used."""
        transaction = coffee_flow.quick_entry(ALICE, "expense", "12.50", "food court lunch")
        assert transaction.account_id == seeded.alice_cash.id
        assert transaction.category_id == seeded.alice_food.id
        assert transaction.amount == Money(amount=1250, currency="USD")
        assert storage.get_account(seeded.alice_cash.id).balance == 10_000 - 1250

    def test_quick_entry_other_users_account(self, coffee_flow, seeded):
        """Test that an account id from someone else is refused."""
        with pytest.raises(AccessDenied):
            coffee_flow.quick_entry(ALICE, "expense", "1", "x", account_id=seeded.bob_cash.id)

    def test_quick_entry_without_accounts(self, coffee_flow, seeded):
        """Test that a user with no accounts gets AccountRequired."""
        with pytest.raises(AccountRequired):
            coffee_flow.quick_entry(99, "expense", "1", "x")

    def test_quick_entry_currency_mismatch(self, coffee_flow, seeded):
        """Test that VND can't be booked on a USD account."""
        with pytest.raises(CurrencyMismatch):
            coffee_flow.quick_entry(ALICE, "expense", "50000", "Phở", currency="VND")


class TestOfflineSync:
    """Tests for replaying queued entries."""

    def test_failures_are_isolated(self, coffee_flow, storage, seeded):
        """Test that bad items are reported and good items still save."""
        results = coffee_flow.sync_offline(ALICE, [
            {"client_id": "a", "type": "expense", "amount": "5.00", "description": "Bus"},
            {"client_id": "b", "type": "expense", "amount": "abc", "description": "Bad"},
            {"client_id": "c", "type": "expense", "amount": "1", "account_id": seeded.bob_cash.id},
            {"client_id": "d", "amount": "1", "description": "No type"},
            {"client_id": "e", "type": "expense", "amount": "500.00", "description": "Too much"},
            {"client_id": "f", "type": "income", "amount": "100", "occurred_at": "2026-03-10"},
        ])

        assert [r.success for r in results] == [True, False, False, False, False, True]
        assert [r.client_id for r in results] == ["a", "b", "c", "d", "e", "f"]
        assert results[1].error.startswith("InvalidAmount")
        assert results[2].error.startswith("AccessDenied")
        assert results[3].error.startswith("KeyError")
        assert results[4].error.startswith("InsufficientFundsError")

        saved = storage.list_transactions(ALICE)
        assert {t.id for t in saved} == {results[0].transaction_id, results[5].transaction_id}
        assert storage.get_transaction(results[5].transaction_id).occurred_at == date(2026, 3, 10)

    def test_empty_batch(self, coffee_flow):
        """Test that nothing in means nothing out."""
        assert coffee_flow.sync_offline(ALICE, []) == []


class TestAppComponents:
    """Tests for wiring from environment settings."""

    @pytest.fixture
    def env(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("DATABASE_URL", "sqlite://")
        monkeypatch.setenv("EVENT_WORKERS", "0")
        monkeypatch.setenv("DEFAULT_CURRENCY", "USD")
        monkeypatch.setenv("PARSER_PROVIDER", "rules")
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        return monkeypatch

    def test_end_to_end_with_rules_parser(self, env):
        """Test parse -> confirm through fully wired components."""
        components = create_app_components(Settings())
        try:
            account = components.storage.add_account(Account(
                user_id=ALICE, name="Wallet", account_type=AccountType.CASH,
                currency="USD", balance=10_000,
            ))

            preview = components.flow.parse_text(ALICE, "Spent 25.50 on coffee")
            assert preview.suggested_account.id == account.id

            transaction = components.flow.confirm(ALICE, preview)
            assert components.storage.get_account(account.id).balance == 10_000 - 2550
            assert components.storage.get_ingestion(preview.ingestion_id).provider == "rules"
            assert transaction.id is not None
        finally:
            components.dispatcher.close()

    def test_missing_gemini_key_falls_back_to_rules(self, env):
        """Test that an unconfigured Gemini parser doesn't stop startup."""
        env.setenv("PARSER_PROVIDER", "gemini")
        components = create_app_components(Settings())
        try:
            preview = components.flow.parse_text(ALICE, "Lunch 12.00")
            assert components.storage.get_ingestion(preview.ingestion_id).provider == "rules"
        finally:
            components.dispatcher.close()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
