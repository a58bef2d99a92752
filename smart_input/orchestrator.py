"""
Main Orchestrator for Smart Input

This module ties together all the components and defines the
end-to-end flows for:
1. Smart input (voice / receipt / text / text+image → draft → validate
   → match → preview → confirm → save)
2. Quick entry (amount + description typed into a form)
3. Offline sync (a batch of quick entries queued on a device)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No transaction persists without confirmation (preview first)
- Suggestions only ever point at the acting user's own records
- Every step is audited under one correlation id

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Callable, NamedTuple, Optional, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, ValidationError

from smart_input.audit import AuditLogger, create_correlation_id
from smart_input.config import AppSettings, Settings, get_settings
from smart_input.events import EventDispatcher, register_listeners
from smart_input.matching import CategoryAccountMatcher
from smart_input.models.finance import (
    Account,
    IngestionPreview,
    IngestionRecord,
    SourceModality,
    Transaction,
    TransactionDraft,
    TransactionType,
    ValidationResult,
)
from smart_input.models.money import Money, MoneyError
from smart_input.parsing import (
    ParserUnavailable,
    ParsingError,
    RuleBasedTransactionParser,
    TransactionParser,
    create_parser,
)
from smart_input.parsing.media import assess_image_quality
from smart_input.parsing.normalizer import DraftNormalizer
from smart_input.policies import AccessDenied, authorize
from smart_input.services import SavingsGoalService, TransactionService
from smart_input.storage import (
    FinanceStorageInterface,
    NotFoundError,
    SqlAuditStorage,
    SqlFinanceStorage,
    StorageError,
    create_storage_engine,
)
from smart_input.validation import DraftValidator


logger = structlog.get_logger(__name__)


class IngestionError(Exception):
    """Base exception for the smart input flow."""
    pass


class InputRejected(IngestionError):
    """Input refused before parsing (size, language)."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class AccountRequired(IngestionError):
    """Nothing tells us which account to book the transaction on."""
    pass


class AlreadyConfirmed(IngestionError):
    """The preview was already saved as a transaction."""

    def __init__(self, ingestion_id: int, transaction_id: Optional[int]):
        self.ingestion_id = ingestion_id
        self.transaction_id = transaction_id
        super().__init__(f"Ingestion {ingestion_id} was already saved as transaction {transaction_id}")


class DraftRejected(IngestionError):
    """The confirmed draft still has validation errors."""

    def __init__(self, validation: ValidationResult):
        self.validation = validation
        messages = "; ".join(i.message for i in validation.issues if i.severity == "error")
        super().__init__(f"Draft cannot be saved: {messages}")


class SyncResult(BaseModel):
    """Outcome of one offline item."""

    index: int
    client_id: Optional[str] = None
    success: bool
    transaction_id: Optional[int] = None
    error: Optional[str] = None


# Fields the user may change on the preview before saving
CONFIRM_OVERRIDES = {
    "amount",
    "type",
    "occurred_at",
    "description",
    "category_id",
    "account_id",
    "notes",
}


class SmartInputFlow:
    """
    Orchestrates the smart input flow.

    Flow:
    1. Check → language supported, upload within size
    2. Parse → TransactionDraft (typed ParsingError on failure)
    3. Validate → Two-stage validation
    4. Match → Category and account suggestions, owned by the user
    5. Record → IngestionRecord saved for history
    6. Review → Preview returned to the caller (PAUSE)
    7. Confirm → Transaction saved through TransactionService

    Step 7 is MANDATORY for smart input.
    The flow NEVER saves a parsed transaction on its own.
    """

    def __init__(
        self,
        parser: TransactionParser,
        storage: FinanceStorageInterface,
        transactions: TransactionService,
        matcher: Optional[CategoryAccountMatcher] = None,
        validator: Optional[DraftValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._settings = settings or get_settings().app
        self._parser = parser
        self._storage = storage
        self._transactions = transactions
        self._matcher = matcher or CategoryAccountMatcher(
            storage, threshold=self._settings.match_threshold
        )
        self._validator = validator or DraftValidator(storage, self._settings)
        self._audit_logger = audit_logger

    # -------------------------------------------------------------------------
    # Input checks
    # -------------------------------------------------------------------------

    def _reject(self, user_id: int, modality: SourceModality, reason: str, correlation_id: UUID):
        if self._audit_logger:
            self._audit_logger.log_input_rejected(user_id, modality.value, reason, correlation_id)
        raise InputRejected(reason)

    def _check_input(
        self,
        user_id: int,
        modality: SourceModality,
        language: Optional[str],
        payload: Optional[bytes],
        correlation_id: UUID,
    ) -> str:
        """Returns the language to parse in."""
        language = (language or self._settings.default_language).strip().lower()
        if language not in self._settings.supported_languages_list:
            self._reject(user_id, modality, f"Unsupported language: {language}", correlation_id)

        if payload is not None and len(payload) > self._settings.max_upload_size_bytes:
            self._reject(
                user_id,
                modality,
                f"Upload exceeds {self._settings.max_upload_size_mb} MB",
                correlation_id,
            )
        return language

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def _parse(
        self,
        user_id: int,
        modality: SourceModality,
        parse: Callable[[], TransactionDraft],
        correlation_id: UUID,
    ) -> TransactionDraft:
        try:
            draft = parse()
        except ParserUnavailable as e:
            if self._audit_logger:
                self._audit_logger.log_external_service_error(
                    service=self._parser.provider_name,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise
        except ParsingError as e:
            if self._audit_logger:
                self._audit_logger.log_parse_failed(user_id, modality.value, e, correlation_id)
            raise

        if self._audit_logger:
            self._audit_logger.log_draft_parsed(
                user_id, modality.value, draft.confidence, correlation_id
            )
        return draft

    def _fallback_account(self, user_id: int) -> Optional[Account]:
        accounts = self._storage.list_accounts(user_id)
        return accounts[0] if accounts else None

    def _build_preview(
        self,
        user_id: int,
        draft: TransactionDraft,
        correlation_id: UUID,
        extra_warnings: Optional[list[str]] = None,
    ) -> IngestionPreview:
        validation = self._validator.validate(draft, user_id=user_id)
        if extra_warnings:
            validation = validation.model_copy(
                update={"warnings": validation.warnings + extra_warnings}
            )

        if self._audit_logger and not validation.is_valid:
            issues = [
                {"field": i.field, "type": i.issue_type, "message": i.message}
                for i in validation.issues
            ]
            self._audit_logger.log_validation_failed(user_id, issues, correlation_id)

        category = self._matcher.match_category(draft.raw_category_hint, user_id, draft.type)
        account = self._matcher.match_account(draft.raw_account_hint, user_id)
        if account is None:
            account = self._fallback_account(user_id)

        if self._audit_logger:
            self._audit_logger.log_hints_matched(
                user_id,
                category.id if category else None,
                account.id if account else None,
                correlation_id,
            )

        record = self._storage.save_ingestion(
            IngestionRecord(
                user_id=user_id,
                input_type=draft.source_modality,
                raw_text=draft.raw_text,
                parsed_result=draft.model_dump(mode="json"),
                provider=self._parser.provider_name,
                language=draft.language,
                confidence=draft.confidence,
            )
        )

        logger.info(
            "preview_ready",
            user_id=user_id,
            ingestion_id=record.id,
            modality=draft.source_modality.value,
            category_id=category.id if category else None,
            account_id=account.id if account else None,
            correlation_id=str(correlation_id),
        )

        return IngestionPreview(
            draft=draft,
            suggested_category=category,
            suggested_account=account,
            validation=validation,
            ingestion_id=record.id,
        )

    # -------------------------------------------------------------------------
    # Smart input entry points
    # -------------------------------------------------------------------------

    def parse_voice(
        self,
        user_id: int,
        audio: bytes,
        language: Optional[str] = None,
        mime_type: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> IngestionPreview:
        correlation_id = correlation_id or create_correlation_id()
        authorize("create", user_id)
        language = self._check_input(user_id, SourceModality.VOICE, language, audio, correlation_id)

        draft = self._parse(
            user_id,
            SourceModality.VOICE,
            lambda: self._parser.parse_voice(audio, language, mime_type),
            correlation_id,
        )
        return self._build_preview(user_id, draft, correlation_id)

    def parse_receipt(
        self,
        user_id: int,
        image: bytes,
        language: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> IngestionPreview:
        correlation_id = correlation_id or create_correlation_id()
        authorize("create", user_id)
        language = self._check_input(user_id, SourceModality.RECEIPT, language, image, correlation_id)

        draft = self._parse(
            user_id,
            SourceModality.RECEIPT,
            lambda: self._parser.parse_receipt(image, language),
            correlation_id,
        )
        return self._build_preview(
            user_id, draft, correlation_id, extra_warnings=assess_image_quality(image)
        )

    def parse_text(
        self,
        user_id: int,
        text: str,
        language: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> IngestionPreview:
        correlation_id = correlation_id or create_correlation_id()
        authorize("create", user_id)
        language = self._check_input(user_id, SourceModality.TEXT, language, None, correlation_id)

        draft = self._parse(
            user_id,
            SourceModality.TEXT,
            lambda: self._parser.parse_text(text, language),
            correlation_id,
        )
        return self._build_preview(user_id, draft, correlation_id)

    def parse_text_with_image(
        self,
        user_id: int,
        text: str,
        image: bytes,
        mime_type: Optional[str] = None,
        language: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> IngestionPreview:
        correlation_id = correlation_id or create_correlation_id()
        authorize("create", user_id)
        language = self._check_input(
            user_id, SourceModality.TEXT_WITH_IMAGE, language, image, correlation_id
        )

        draft = self._parse(
            user_id,
            SourceModality.TEXT_WITH_IMAGE,
            lambda: self._parser.parse_text_with_image(text, image, mime_type, language),
            correlation_id,
        )
        return self._build_preview(
            user_id, draft, correlation_id, extra_warnings=assess_image_quality(image)
        )

    # -------------------------------------------------------------------------
    # Confirmation
    # -------------------------------------------------------------------------

    def confirm(
        self,
        user_id: int,
        preview: IngestionPreview,
        overrides: Optional[dict[str, Any]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Save a reviewed preview as a transaction.

        CRITICAL: This is called ONLY after explicit user confirmation.

        Args:
            overrides: Fields the user edited (see CONFIRM_OVERRIDES)

        Raises:
            DraftRejected: The edited draft still has validation errors
            AlreadyConfirmed: The preview was saved before
            AccountRequired: No account suggested and none chosen
            AccessDenied: Preview, account or category of another user
        """
        correlation_id = correlation_id or create_correlation_id()
        overrides = dict(overrides or {})
        unknown = set(overrides) - CONFIRM_OVERRIDES
        if unknown:
            raise ValueError(f"Cannot override fields: {sorted(unknown)}")

        record = None
        if preview.ingestion_id is not None:
            record = self._storage.get_ingestion(preview.ingestion_id)
            if record is None:
                raise NotFoundError(f"Ingestion not found: {preview.ingestion_id}")
            authorize("update", user_id, record)
            if record.transaction_saved:
                raise AlreadyConfirmed(record.id, record.transaction_id)

        draft_changes = {
            key: overrides[key]
            for key in ("amount", "type", "occurred_at", "description")
            if key in overrides
        }
        if "type" in draft_changes:
            draft_changes["type"] = TransactionType(draft_changes["type"])
        if "amount" in draft_changes and not isinstance(draft_changes["amount"], Money):
            draft_changes["amount"] = Money.from_decimal(
                draft_changes["amount"], preview.draft.amount.currency
            )
        if isinstance(draft_changes.get("occurred_at"), str):
            draft_changes["occurred_at"] = date.fromisoformat(draft_changes["occurred_at"])
        draft = preview.draft.model_copy(update=draft_changes)

        validation = self._validator.validate(draft, user_id=user_id, check_duplicates=False)
        if validation.has_errors:
            raise DraftRejected(validation)

        account_id = overrides.get("account_id")
        if account_id is None and preview.suggested_account is not None:
            account_id = preview.suggested_account.id
        if account_id is None:
            raise AccountRequired("Choose an account before saving")

        category_id = overrides.get("category_id")
        if "category_id" not in overrides:
            if draft.type != preview.draft.type:
                # the suggestion was matched for the other type
                category = self._matcher.match_category(draft.raw_category_hint, user_id, draft.type)
                category_id = category.id if category else None
            elif preview.suggested_category is not None:
                category_id = preview.suggested_category.id

        if record is not None and not self._storage.claim_ingestion(record.id):
            latest = self._storage.get_ingestion(record.id)
            raise AlreadyConfirmed(record.id, latest.transaction_id if latest else None)

        try:
            transaction = self._transactions.record(
                user_id=user_id,
                account_id=account_id,
                amount=draft.amount,
                transaction_type=draft.type,
                occurred_at=draft.occurred_at,
                category_id=category_id,
                description=draft.description or "",
                notes=overrides.get("notes"),
                correlation_id=correlation_id,
            )
        except Exception:
            if record is not None:
                self._storage.release_ingestion(record.id)
            raise

        if record is not None:
            self._storage.mark_ingestion_saved(record.id, transaction.id)
        return transaction

    # -------------------------------------------------------------------------
    # Quick entry
    # -------------------------------------------------------------------------

    def quick_entry(
        self,
        user_id: int,
        transaction_type: Union[TransactionType, str],
        amount: Union[Money, Decimal, str, int],
        description: str,
        account_id: Optional[int] = None,
        currency: Optional[str] = None,
        occurred_at: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Record a transaction straight from a form.

        Decimal amounts are read in the account's currency unless one is
        given. The category is matched from the description.
        """
        transaction_type = TransactionType(transaction_type)

        if account_id is None:
            account = self._fallback_account(user_id)
            if account is None:
                raise AccountRequired("User has no active account")
            account_id = account.id
        else:
            account = self._storage.get_account(account_id)
            if account is None:
                raise NotFoundError(f"Account not found: {account_id}")
            authorize("update", user_id, account)

        if not isinstance(amount, Money):
            amount = Money.from_decimal(amount, currency or account.currency)

        category = self._matcher.match_category(description, user_id, transaction_type)

        return self._transactions.record(
            user_id=user_id,
            account_id=account_id,
            amount=amount,
            transaction_type=transaction_type,
            occurred_at=occurred_at,
            category_id=category.id if category else None,
            description=description,
            correlation_id=correlation_id,
        )

    def sync_offline(self, user_id: int, items: list[dict[str, Any]]) -> list[SyncResult]:
        """
        Replay quick entries queued while offline.

        Each item is recorded on its own; one bad item does not stop
        the rest. Item keys: type, amount, description, and optionally
        account_id, currency, occurred_at, client_id.
        """
        correlation_id = create_correlation_id()
        results = []

        for index, item in enumerate(items):
            client_id = item.get("client_id")
            try:
                occurred_at = item.get("occurred_at")
                if isinstance(occurred_at, str):
                    occurred_at = date.fromisoformat(occurred_at)

                transaction = self.quick_entry(
                    user_id=user_id,
                    transaction_type=item["type"],
                    amount=item["amount"],
                    description=item.get("description", ""),
                    account_id=item.get("account_id"),
                    currency=item.get("currency"),
                    occurred_at=occurred_at,
                    correlation_id=correlation_id,
                )
            except (KeyError, ValueError, MoneyError, StorageError, AccessDenied, IngestionError) as e:
                logger.warning(
                    "offline_item_failed",
                    user_id=user_id,
                    index=index,
                    client_id=client_id,
                    error=str(e),
                )
                results.append(SyncResult(
                    index=index,
                    client_id=client_id,
                    success=False,
                    error=f"{type(e).__name__}: {e}",
                ))
                continue

            results.append(SyncResult(
                index=index,
                client_id=client_id,
                success=True,
                transaction_id=transaction.id,
            ))

        logger.info(
            "offline_sync_finished",
            user_id=user_id,
            total=len(results),
            failed=sum(1 for r in results if not r.success),
        )
        return results


class AppComponents(NamedTuple):
    flow: SmartInputFlow
    transactions: TransactionService
    savings: SavingsGoalService
    storage: FinanceStorageInterface
    dispatcher: EventDispatcher
    audit_logger: AuditLogger


def create_app_components(
    settings: Optional[Settings] = None,
    parser: Optional[TransactionParser] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Defaults to the cached environment settings
        parser: Overrides the configured parser (tests inject a fake)
    """
    settings = settings or get_settings()
    app_settings = settings.app
    database_settings = settings.database

    engine = create_storage_engine(database_settings.url, echo=database_settings.echo)
    storage = SqlFinanceStorage(engine)
    audit_logger = AuditLogger(SqlAuditStorage(engine))

    if parser is None:
        try:
            parser = create_parser(app_settings.parser_provider, settings=settings)
        except ValidationError as e:
            # Gemini not configured - continue with the offline parser
            logger.warning("parser_not_configured", error=str(e))
            audit_logger.log_error("parser_not_configured", str(e))
            parser = RuleBasedTransactionParser(
                DraftNormalizer(app_settings.default_currency)
            )

    dispatcher = EventDispatcher(
        max_workers=app_settings.event_workers,
        audit_logger=audit_logger,
    )
    transactions = TransactionService(storage, dispatcher, audit_logger)
    savings = SavingsGoalService(storage, dispatcher, audit_logger, transactions=transactions)
    register_listeners(dispatcher, audit_logger, savings)

    flow = SmartInputFlow(
        parser=parser,
        storage=storage,
        transactions=transactions,
        audit_logger=audit_logger,
        settings=app_settings,
    )

    return AppComponents(
        flow=flow,
        transactions=transactions,
        savings=savings,
        storage=storage,
        dispatcher=dispatcher,
        audit_logger=audit_logger,
    )
