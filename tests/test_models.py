"""
Tests for Smart Input

Test strategy:
1. Unit tests for individual components (models, validators)
2. Integration tests for flows (with fake parsers and in-memory storage)
3. No real API calls in tests (use fakes)
"""

import pytest
from datetime import date
from uuid import uuid4

from smart_input.models import (
    Account,
    AccountType,
    Category,
    CategoryType,
    Money,
    SavingsGoal,
    SavingsGoalStatus,
    SourceModality,
    Transaction,
    TransactionDraft,
    TransactionType,
    ValidationIssue,
    ValidationResult,
)
from smart_input.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestDraftModels:
    """Tests for the parser output model."""

    def test_draft_creation(self):
        """Test TransactionDraft model creation."""
        draft = TransactionDraft(
            amount=Money(amount=2550, currency="USD"),
            occurred_at=date(2026, 3, 15),
            description="  Coffee  ",
            source_modality=SourceModality.TEXT,
            language="en",
        )
        assert draft.type == TransactionType.EXPENSE
        assert draft.description == "Coffee"
        assert draft.raw_category_hint is None

    def test_draft_rejects_zero_amount(self):
        """Test that a zero-amount draft cannot exist."""
        with pytest.raises(ValueError, match="greater than zero"):
            TransactionDraft(
                amount=Money(amount=0, currency="USD"),
                occurred_at=date(2026, 3, 15),
                source_modality=SourceModality.TEXT,
                language="en",
            )

    def test_draft_confidence_bounds(self):
        """Test that confidence must be between 0 and 1."""
        with pytest.raises(ValueError):
            TransactionDraft(
                amount=Money(amount=100, currency="USD"),
                occurred_at=date(2026, 3, 15),
                source_modality=SourceModality.VOICE,
                language="en",
                confidence=1.5,
            )

    def test_text_with_image_modality_value(self):
        """Test the stored value of the combined modality."""
        assert SourceModality.TEXT_WITH_IMAGE.value == "text+image"


class TestFinanceModels:
    """Tests for persistent record models."""

    def test_expense_signed_amount_is_negative(self):
        """Test that an expense debits its account."""
        transaction = Transaction(
            user_id=1,
            account_id=1,
            amount=Money(amount=500, currency="USD"),
            type=TransactionType.EXPENSE,
            occurred_at=date(2026, 3, 15),
        )
        assert transaction.signed_amount().amount == -500

    def test_income_signed_amount_is_positive(self):
        """Test that income credits its account."""
        transaction = Transaction(
            user_id=1,
            account_id=1,
            amount=Money(amount=500, currency="USD"),
            type=TransactionType.INCOME,
            occurred_at=date(2026, 3, 15),
        )
        assert transaction.signed_amount().amount == 500

    def test_category_applies_to(self):
        """Test that 'both' categories apply to either direction."""
        both = Category(user_id=1, name="Gifts", type=CategoryType.BOTH)
        expense = Category(user_id=1, name="Food", type=CategoryType.EXPENSE)
        assert both.applies_to(TransactionType.INCOME)
        assert both.applies_to(TransactionType.EXPENSE)
        assert not expense.applies_to(TransactionType.INCOME)

    def test_account_balance_money(self):
        """Test that the integer balance is wrapped in the account currency."""
        account = Account(
            user_id=1, name="Cash", account_type=AccountType.CASH,
            currency="VND", balance=50000,
        )
        assert account.balance_money() == Money(amount=50000, currency="VND")

    def test_savings_goal_progress(self):
        """Test progress and remaining amount of a goal."""
        goal = SavingsGoal(
            user_id=1, name="Laptop", target_amount=100_000,
            current_amount=25_000, currency="USD",
        )
        assert goal.progress_percent == 25.0
        assert goal.remaining_money().amount == 75_000
        assert not goal.has_reached_target()
        assert goal.status == SavingsGoalStatus.ACTIVE

    def test_savings_goal_progress_caps_at_100(self):
        """Test that overshooting the target reports 100%."""
        goal = SavingsGoal(
            user_id=1, name="Trip", target_amount=100,
            current_amount=150, currency="USD",
        )
        assert goal.progress_percent == 100.0
        assert goal.remaining_money().amount == 0
        assert goal.has_reached_target()

    def test_savings_goal_rejects_zero_target(self):
        """Test that a goal needs a positive target."""
        with pytest.raises(ValueError):
            SavingsGoal(user_id=1, name="Nothing", target_amount=0, currency="USD")


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        """Test AuditEvent creation."""
        event = AuditEvent(
            event_type=AuditEventType.DRAFT_PARSED,
            description="Parsed text input",
        )
        assert event.event_type == AuditEventType.DRAFT_PARSED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        correlation_id = uuid4()
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            user_id=1,
            entity_type="transaction",
            entity_id="42",
            correlation_id=correlation_id,
            description="Transaction saved",
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "transaction_created"
        assert log_dict["user_id"] == 1
        assert log_dict["correlation_id"] == str(correlation_id)

    def test_audit_event_builder_parse_failed(self):
        """Test AuditEventBuilder.parse_failed."""
        correlation_id = uuid4()
        event = AuditEventBuilder.parse_failed(
            user_id=1,
            input_type="voice",
            error_type="TranscriptionFailed",
            error_message="silence",
            correlation_id=correlation_id,
        )
        assert event.event_type == AuditEventType.PARSE_FAILED
        assert event.severity == AuditSeverity.WARNING
        assert event.details["error_type"] == "TranscriptionFailed"

    def test_audit_event_builder_access_denied(self):
        """Test AuditEventBuilder.access_denied."""
        event = AuditEventBuilder.access_denied(
            user_id=2,
            action="delete",
            entity_type="transaction",
            entity_id=7,
        )
        assert event.event_type == AuditEventType.ACCESS_DENIED
        assert event.user_id == 2
        assert event.entity_id == "7"


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            schema_valid=False,
            semantic_valid=False,
            is_valid=False,
            can_proceed_with_review=False,
            issues=[
                ValidationIssue(
                    field="amount",
                    issue_type="invalid_value",
                    message="Amount must be greater than zero",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors
        assert result.error_count == 1

    def test_validation_result_warnings_only(self):
        """Test result with only warnings."""
        result = ValidationResult(
            schema_valid=True,
            semantic_valid=True,
            is_valid=True,
            can_proceed_with_review=True,
            issues=[
                ValidationIssue(
                    field="description",
                    issue_type="missing",
                    message="No description was extracted",
                    severity="warning",
                ),
            ],
            warnings=["No description was extracted"],
        )
        assert not result.has_errors
        assert result.error_count == 0

    def test_validation_issue_severity_pattern(self):
        """Test that severity is restricted to known levels."""
        with pytest.raises(ValueError):
            ValidationIssue(field="x", issue_type="y", message="z", severity="fatal")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
