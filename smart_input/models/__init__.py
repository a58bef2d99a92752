"""
Data Models Package

This package contains the value objects and Pydantic models used by Smart Input.
All data flowing through the pipeline must conform to these schemas.
"""

from smart_input.models.money import (
    CurrencyMismatch,
    InvalidAmount,
    InvalidCurrency,
    Money,
    MoneyError,
)
from smart_input.models.finance import (
    Account,
    AccountType,
    Category,
    CategoryType,
    ContributionKind,
    IngestionPreview,
    IngestionRecord,
    SavingsContribution,
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

__all__ = [
    # Money
    "CurrencyMismatch",
    "InvalidAmount",
    "InvalidCurrency",
    "Money",
    "MoneyError",
    # Finance models
    "Account",
    "AccountType",
    "Category",
    "CategoryType",
    "ContributionKind",
    "IngestionPreview",
    "IngestionRecord",
    "SavingsContribution",
    "SavingsGoal",
    "SavingsGoalStatus",
    "SourceModality",
    "Transaction",
    "TransactionDraft",
    "TransactionType",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
