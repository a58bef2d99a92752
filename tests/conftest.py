"""
Shared fixtures.

Every test gets a fresh in-memory SQLite database with two users:
- Alice (1): cash, credit card and bank accounts in USD, plus a few categories
- Bob (2): one cash account and his own "Food" category

Events are delivered inline so assertions can run right after a write.
No fixture talks to the network.
"""

from datetime import date
from types import SimpleNamespace
from typing import Any, Optional

import pytest

from smart_input.audit import AuditLogger
from smart_input.config import AppSettings
from smart_input.events import EventDispatcher, register_listeners
from smart_input.models import Account, AccountType, Category, CategoryType
from smart_input.parsing import DraftNormalizer, TransactionParser
from smart_input.services import SavingsGoalService, TransactionService
from smart_input.storage import SqlAuditStorage, SqlFinanceStorage, create_storage_engine
from smart_input.validation import DraftValidator


TODAY = date(2026, 3, 15)
ALICE = 1
BOB = 2


def fixed_today() -> date:
    return TODAY


class FakeParser(TransactionParser):
    """
    Parser with canned capability output.

    `text_fields` / `image_fields` are returned by the extraction
    primitives; `error` is raised by all of them when set.
    """

    provider_name = "fake"

    def __init__(
        self,
        normalizer: DraftNormalizer,
        transcript: str = "",
        text_fields: Optional[dict[str, Any]] = None,
        image_fields: Optional[dict[str, Any]] = None,
        error: Optional[Exception] = None,
    ):
        super().__init__(normalizer)
        self.transcript = transcript
        self.text_fields = text_fields or {}
        self.image_fields = image_fields or {}
        self.error = error
        self.calls: list[str] = []

    def _transcribe(self, audio: bytes, mime_type: str, language: str) -> str:
        self.calls.append(f"transcribe:{mime_type}")
        if self.error:
            raise self.error
        return self.transcript

    def _extract_from_text(self, text: str, language: str) -> dict[str, Any]:
        self.calls.append("text")
        if self.error:
            raise self.error
        return dict(self.text_fields)

    def _extract_from_image(self, image: bytes, mime_type: str, language: str) -> dict[str, Any]:
        self.calls.append(f"image:{mime_type}")
        if self.error:
            raise self.error
        return dict(self.image_fields)


@pytest.fixture
def app_settings():
    return AppSettings(_env_file=None, default_currency="USD", parser_provider="rules")


@pytest.fixture
def normalizer():
    return DraftNormalizer("USD", today=fixed_today)


@pytest.fixture
def engine():
    return create_storage_engine("sqlite://")


@pytest.fixture
def storage(engine):
    return SqlFinanceStorage(engine)


@pytest.fixture
def audit_storage(engine):
    return SqlAuditStorage(engine)


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def dispatcher(audit_logger):
    dispatcher = EventDispatcher(max_workers=0, audit_logger=audit_logger)
    yield dispatcher
    dispatcher.close()


@pytest.fixture
def transaction_service(storage, dispatcher, audit_logger):
    return TransactionService(storage, dispatcher, audit_logger)


@pytest.fixture
def savings_service(storage, dispatcher, audit_logger, transaction_service):
    return SavingsGoalService(storage, dispatcher, audit_logger, transactions=transaction_service)


@pytest.fixture
def wired(dispatcher, audit_logger, savings_service):
    """Built-in listeners subscribed on the inline dispatcher."""
    register_listeners(dispatcher, audit_logger, savings_service)
    return dispatcher


@pytest.fixture
def validator(storage, app_settings):
    return DraftValidator(storage, app_settings, today=fixed_today)


@pytest.fixture
def seeded(storage):
    """Accounts and categories for Alice and Bob."""
    data = SimpleNamespace()

    data.alice_cash = storage.add_account(Account(
        user_id=ALICE, name="Cash", account_type=AccountType.CASH,
        currency="USD", balance=10_000,
    ))
    data.alice_card = storage.add_account(Account(
        user_id=ALICE, name="Visa", account_type=AccountType.CREDIT_CARD,
        currency="USD", balance=0,
    ))
    data.alice_bank = storage.add_account(Account(
        user_id=ALICE, name="Chase Checking", account_type=AccountType.BANK,
        currency="USD", balance=500_000,
    ))
    data.bob_cash = storage.add_account(Account(
        user_id=BOB, name="Bob Cash", account_type=AccountType.CASH,
        currency="USD", balance=5_000,
    ))

    data.alice_food = storage.add_category(Category(
        user_id=ALICE, name="Food", type=CategoryType.EXPENSE,
    ))
    data.alice_transport = storage.add_category(Category(
        user_id=ALICE, name="Transport", type=CategoryType.EXPENSE,
    ))
    data.alice_utilities = storage.add_category(Category(
        user_id=ALICE, name="Utilities", type=CategoryType.EXPENSE,
    ))
    data.alice_salary = storage.add_category(Category(
        user_id=ALICE, name="Salary", type=CategoryType.INCOME,
    ))
    data.alice_gifts = storage.add_category(Category(
        user_id=ALICE, name="Gifts", type=CategoryType.BOTH,
    ))
    data.bob_food = storage.add_category(Category(
        user_id=BOB, name="Food", type=CategoryType.EXPENSE,
    ))
    data.bob_coffee = storage.add_category(Category(
        user_id=BOB, name="Coffee", type=CategoryType.EXPENSE,
    ))
    return data
