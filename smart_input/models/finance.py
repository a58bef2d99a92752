"""
Core Data Models for Smart Input

These models define the strict schemas for all data flowing through the
ingestion pipeline. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Keep every persistent record tied to its owning user

DESIGN DECISION: Amounts are Money value objects (integer minor units),
never floats. Balances and goal amounts are plain integers in the
currency's minor units, wrapped into Money on demand.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from smart_input.models.money import Money


def utcnow() -> datetime:
    return datetime.utcnow()


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """Direction of a transaction."""
    INCOME = "income"
    EXPENSE = "expense"


class CategoryType(str, Enum):
    """Which transaction types a category applies to."""
    INCOME = "income"
    EXPENSE = "expense"
    BOTH = "both"


class AccountType(str, Enum):
    """Kinds of money containers a user can own."""
    CASH = "cash"
    BANK = "bank"
    CREDIT_CARD = "credit_card"
    E_WALLET = "e_wallet"
    SAVINGS = "savings"


class SourceModality(str, Enum):
    """
    How the raw input reached the parser.

    The value is what gets stored on the ingestion record.
    """
    VOICE = "voice"
    RECEIPT = "receipt"
    TEXT = "text"
    TEXT_WITH_IMAGE = "text+image"


class SavingsGoalStatus(str, Enum):
    """
    Savings goal lifecycle.

    CRITICAL: COMPLETED is terminal for progress changes. A goal never
    reopens automatically when its balance dips below target.
    """
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ContributionKind(str, Enum):
    """Whether a contribution was typed in or came from a transaction."""
    MANUAL = "manual"
    LINKED = "linked"


# =============================================================================
# PARSER OUTPUT
# =============================================================================

class TransactionDraft(BaseModel):
    """
    Structured transaction proposed by a parser.

    CRITICAL: This is PROPOSED data, NOT a transaction.
    It is never persisted as-is; the user (or the quick-entry path)
    confirms it into a Transaction.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    amount: Money = Field(
        ...,
        description="Positive amount; direction is carried by `type`"
    )
    type: TransactionType = Field(
        default=TransactionType.EXPENSE,
        description="income or expense"
    )
    occurred_at: date = Field(
        ...,
        description="Date the transaction happened"
    )
    raw_category_hint: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Free-text category suggestion from the parser"
    )
    raw_account_hint: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Free-text payment method/account suggestion"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=255,
    )
    source_modality: SourceModality
    language: str = Field(
        ...,
        min_length=2,
        max_length=10,
    )
    confidence: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Parser confidence in the extraction (0-1)"
    )
    raw_text: Optional[str] = Field(
        default=None,
        description="Transcript or OCR text the draft was built from"
    )

    @model_validator(mode="after")
    def positive_amount(self) -> "TransactionDraft":
        if self.amount.amount <= 0:
            raise ValueError("Draft amount must be greater than zero")
        return self


# =============================================================================
# PERSISTENT RECORDS
# =============================================================================

class Category(BaseModel):
    """A user's income/expense category."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = None
    user_id: int
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType = CategoryType.EXPENSE
    is_active: bool = True

    def applies_to(self, transaction_type: TransactionType) -> bool:
        return self.type == CategoryType.BOTH or self.type.value == transaction_type.value


class Account(BaseModel):
    """A user's money container (wallet, bank account, card)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = None
    user_id: int
    name: str = Field(..., min_length=1, max_length=100)
    account_type: AccountType = AccountType.CASH
    currency: str = Field(..., min_length=3, max_length=3)
    balance: int = Field(
        default=0,
        description="Current balance in minor units"
    )
    is_active: bool = True

    def balance_money(self) -> Money:
        return Money(amount=self.balance, currency=self.currency)


class Transaction(BaseModel):
    """
    A persisted transaction.

    Mutated only through authorized update paths; deletion is a hard
    removal gated by the same ownership check.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = None
    user_id: int
    account_id: int
    category_id: Optional[int] = None
    amount: Money
    type: TransactionType
    occurred_at: date
    description: str = Field(default="", max_length=255)
    notes: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=utcnow)

    def signed_amount(self) -> Money:
        """Balance delta this transaction applies to its account."""
        if self.type == TransactionType.EXPENSE:
            return self.amount.negate()
        return self.amount


class SavingsGoal(BaseModel):
    """
    A target amount the user is saving towards.

    Amounts are minor units in `currency`.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = None
    user_id: int
    target_account_id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    target_amount: int = Field(..., gt=0)
    current_amount: int = Field(default=0, ge=0)
    currency: str = Field(..., min_length=3, max_length=3)
    target_date: Optional[date] = None
    status: SavingsGoalStatus = SavingsGoalStatus.ACTIVE
    completed_at: Optional[datetime] = None

    def target_money(self) -> Money:
        return Money(amount=self.target_amount, currency=self.currency)

    def current_money(self) -> Money:
        return Money(amount=self.current_amount, currency=self.currency)

    def remaining_money(self) -> Money:
        return Money(
            amount=max(self.target_amount - self.current_amount, 0),
            currency=self.currency,
        )

    @property
    def progress_percent(self) -> float:
        return min(self.current_amount * 100 / self.target_amount, 100.0)

    def has_reached_target(self) -> bool:
        return self.current_amount >= self.target_amount

    def is_completed(self) -> bool:
        return self.status == SavingsGoalStatus.COMPLETED


class SavingsContribution(BaseModel):
    """Money moved into (positive) or out of (negative) a savings goal."""

    id: Optional[int] = None
    savings_goal_id: int
    transaction_id: Optional[int] = None
    amount: int = Field(..., description="Minor units; negative for withdrawals")
    contribution_date: date
    notes: Optional[str] = None
    kind: ContributionKind = ContributionKind.MANUAL


class IngestionRecord(BaseModel):
    """
    History of one smart-input parse.

    Kept whether or not the user goes on to save a transaction,
    so failed or abandoned inputs can be reviewed.
    """

    id: Optional[int] = None
    user_id: int
    input_type: SourceModality
    raw_text: Optional[str] = None
    parsed_result: dict[str, Any] = Field(default_factory=dict)
    provider: str
    language: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    transaction_saved: bool = False
    transaction_id: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'future_date', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage draft validation.

    Stage 1: Schema validation (required fields, value ranges)
    Stage 2: Semantic validation (dates, plausibility, duplicates)
    """

    validated_at: datetime = Field(default_factory=utcnow)

    schema_valid: bool
    semantic_valid: bool
    is_valid: bool
    can_proceed_with_review: bool

    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")


# =============================================================================
# PIPELINE OUTPUT
# =============================================================================

class IngestionPreview(BaseModel):
    """
    What the user reviews before confirming.

    The suggestions are None when nothing matched; the caller must then
    ask the user to pick manually.
    """

    draft: TransactionDraft
    suggested_category: Optional[Category] = None
    suggested_account: Optional[Account] = None
    validation: ValidationResult
    ingestion_id: Optional[int] = None
