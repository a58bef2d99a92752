"""
Two-Stage Draft Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Positive amount in a known currency
- Description presence
- Parser confidence
- This catches transcription and OCR misreads

STAGE 2 - SEMANTIC VALIDATION:
- Future date detection
- Very old dates
- Unusually large amounts
- Duplicate detection
- This catches logically impossible or suspicious data

Stage 2 only runs when stage 1 passes, and only stage 2 needs storage.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them for human review.
"""

from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

import structlog

from smart_input.config import AppSettings, get_settings
from smart_input.models.finance import (
    TransactionDraft,
    ValidationIssue,
    ValidationResult,
)
from smart_input.storage.interface import FinanceStorageInterface, StorageError


logger = structlog.get_logger(__name__)


class DraftValidator:
    """
    Validates parsed drafts before they are shown for confirmation.

    Stage 1: Schema validation (can run without storage)
    Stage 2: Semantic validation (may need storage for duplicate checks)
    """

    def __init__(
        self,
        storage: Optional[FinanceStorageInterface] = None,
        settings: Optional[AppSettings] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        """
        Initialize validator.

        Args:
            storage: Storage interface for duplicate checking.
                     If None, duplicate checking is skipped.
            settings: Thresholds; defaults to the cached app settings.
            today: Clock override for tests.
        """
        self._storage = storage
        self._settings = settings or get_settings().app
        self._today = today or date.today

    @property
    def max_amount(self) -> Decimal:
        try:
            return Decimal(self._settings.max_transaction_amount)
        except InvalidOperation:
            raise ValueError(
                f"max_transaction_amount is not a number: {self._settings.max_transaction_amount!r}"
            )

    def _validate_schema(
        self,
        draft: TransactionDraft,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if draft.amount.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero",
                severity="error",
                suggested_fix="Check if the amount was heard or read correctly",
            ))

        if not draft.description:
            issues.append(ValidationIssue(
                field="description",
                issue_type="missing",
                message="No description was extracted",
                severity="warning",  # Warning because user can type one
                suggested_fix="Add a short description before saving",
            ))

        if draft.confidence < self._settings.min_confidence:
            issues.append(ValidationIssue(
                field="confidence",
                issue_type="low_confidence",
                message=f"Extraction confidence is low ({draft.confidence:.0%})",
                severity="warning",
                suggested_fix="Please review all fields carefully",
            ))

        if draft.language not in self._settings.supported_languages_list:
            issues.append(ValidationIssue(
                field="language",
                issue_type="unsupported",
                message=f"Language '{draft.language}' is not one of the supported languages",
                severity="info",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        draft: TransactionDraft,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        today = self._today()

        max_future_date = today + timedelta(days=self._settings.future_date_tolerance_days)
        if draft.occurred_at > max_future_date:
            issues.append(ValidationIssue(
                field="occurred_at",
                issue_type="future_date",
                message=f"Transaction date ({draft.occurred_at}) is in the future",
                severity="error",
                suggested_fix="Please correct the date",
            ))

        # Very old date check (might be a misheard year)
        if draft.occurred_at < today - timedelta(days=365):
            issues.append(ValidationIssue(
                field="occurred_at",
                issue_type="suspicious_date",
                message=f"Transaction date ({draft.occurred_at}) is more than a year ago",
                severity="warning",
                suggested_fix="Please verify the date",
            ))

        if draft.amount.to_decimal() > self.max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({draft.amount}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _check_duplicates(
        self,
        draft: TransactionDraft,
        user_id: Optional[int],
    ) -> list[ValidationIssue]:
        """Flag a draft that matches an existing transaction of the same user."""
        if self._storage is None or user_id is None:
            return []

        try:
            is_duplicate = self._storage.transaction_exists(
                user_id=user_id,
                amount=draft.amount.amount,
                currency=draft.amount.currency,
                occurred_at=draft.occurred_at,
                description=draft.description,
            )
        except StorageError as e:
            # Don't fail validation due to storage errors
            logger.warning("duplicate_check_failed", error=str(e))
            return []

        if not is_duplicate:
            return []

        return [ValidationIssue(
            field="duplicate",
            issue_type="potential_duplicate",
            message=(
                f"A transaction of {draft.amount} on {draft.occurred_at} "
                "may already exist"
            ),
            severity="warning",
            suggested_fix="Please verify this isn't a duplicate entry",
        )]

    def validate(
        self,
        draft: TransactionDraft,
        user_id: Optional[int] = None,
        check_duplicates: bool = True,
    ) -> ValidationResult:
        """
        Run full two-stage validation pipeline.

        Args:
            draft: The parsed draft to validate
            user_id: Owner for the duplicate check
            check_duplicates: Whether to check for duplicates (requires storage)

        Returns:
            ValidationResult with all issues found
        """
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(draft)
        all_issues.extend(schema_issues)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(draft)
            all_issues.extend(semantic_issues)

            if check_duplicates:
                all_issues.extend(self._check_duplicates(draft, user_id))

        warnings = [issue.message for issue in all_issues if issue.severity == "warning"]

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            can_proceed_with_review=not any(issue.severity == "error" for issue in all_issues),
            issues=all_issues,
            warnings=warnings,
        )

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show next to the draft preview.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed! Please review the details below."

        lines = []

        if result.has_errors:
            lines.append("❌ Some details need fixing:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        lines.append("")
        if result.can_proceed_with_review:
            lines.append("You can still save, but please review carefully.")
        else:
            lines.append("Please fix the issues above before saving.")

        return "\n".join(lines)
