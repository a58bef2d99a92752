"""
SQL Storage Implementation

DESIGN DECISION: SQLAlchemy 2.0 ORM over any SQLAlchemy URL, SQLite by default.
1. Real transactions: a transaction row and its balance change commit together
2. Conditional UPDATEs give us race-free balance checks and
   exactly-once goal completion without application locks
3. Same interface as any other backend, so business logic doesn't care

Every public method opens its own session and commits before returning,
so a successful write is visible to the next read.
"""

from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterator, Optional
from uuid import UUID

import structlog
from sqlalchemy import and_, create_engine, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from smart_input.models.audit import AuditEvent, AuditEventType, AuditSeverity
from smart_input.models.finance import (
    Account,
    AccountType,
    Category,
    CategoryType,
    ContributionKind,
    IngestionRecord,
    SavingsContribution,
    SavingsGoal,
    SavingsGoalStatus,
    SourceModality,
    Transaction,
    TransactionType,
)
from smart_input.models.money import Money
from smart_input.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    FinanceStorageInterface,
    InsufficientFundsError,
    NotFoundError,
    StorageError,
)
from smart_input.storage.tables import (
    AccountRow,
    AuditEventRow,
    Base,
    CategoryRow,
    IngestionRow,
    SavingsContributionRow,
    SavingsGoalRow,
    TransactionRow,
)


logger = structlog.get_logger(__name__)


def create_storage_engine(url: str, echo: bool = False) -> Engine:
    """
    Create an engine and make sure the tables exist.

    In-memory SQLite gets a single shared connection; otherwise every
    session would see its own empty database.
    """
    if url in ("sqlite://", "sqlite:///:memory:"):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(url, echo=echo)
    Base.metadata.create_all(engine)
    return engine


class _SqlStorageBase:
    def __init__(self, engine: Engine):
        self._engine = engine
        self._sessions = sessionmaker(engine, expire_on_commit=False)

    @contextmanager
    def _unit_of_work(self, action: str) -> Iterator[Session]:
        """Session that commits on success and maps driver errors to StorageError."""
        try:
            with self._sessions.begin() as session:
                yield session
        except StorageError:
            raise
        except IntegrityError as e:
            raise DuplicateError(f"Failed to {action}: {e.orig}") from e
        except SQLAlchemyError as e:
            logger.error("storage_error", action=action, error=str(e))
            raise StorageError(f"Failed to {action}: {e}") from e


# =============================================================================
# Row <-> model conversion
# =============================================================================

def _category(row: CategoryRow) -> Category:
    return Category(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        type=CategoryType(row.type),
        is_active=row.is_active,
    )


def _account(row: AccountRow) -> Account:
    return Account(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        account_type=AccountType(row.account_type),
        currency=row.currency,
        balance=row.balance,
        is_active=row.is_active,
    )


def _transaction(row: TransactionRow) -> Transaction:
    return Transaction(
        id=row.id,
        user_id=row.user_id,
        account_id=row.account_id,
        category_id=row.category_id,
        amount=Money(amount=row.amount_minor, currency=row.currency),
        type=TransactionType(row.type),
        occurred_at=row.occurred_at,
        description=row.description,
        notes=row.notes,
        created_at=row.created_at,
    )


def _goal(row: SavingsGoalRow) -> SavingsGoal:
    return SavingsGoal(
        id=row.id,
        user_id=row.user_id,
        target_account_id=row.target_account_id,
        name=row.name,
        description=row.description,
        target_amount=row.target_amount,
        current_amount=row.current_amount,
        currency=row.currency,
        target_date=row.target_date,
        status=SavingsGoalStatus(row.status),
        completed_at=row.completed_at,
    )


def _contribution(row: SavingsContributionRow) -> SavingsContribution:
    return SavingsContribution(
        id=row.id,
        savings_goal_id=row.savings_goal_id,
        transaction_id=row.transaction_id,
        amount=row.amount,
        contribution_date=row.contribution_date,
        notes=row.notes,
        kind=ContributionKind(row.kind),
    )


def _ingestion(row: IngestionRow) -> IngestionRecord:
    return IngestionRecord(
        id=row.id,
        user_id=row.user_id,
        input_type=SourceModality(row.input_type),
        raw_text=row.raw_text,
        parsed_result=row.parsed_result,
        provider=row.provider,
        language=row.language,
        confidence=row.confidence,
        transaction_saved=row.transaction_saved,
        transaction_id=row.transaction_id,
        created_at=row.created_at,
    )


def _balance_delta(transaction_type: str, amount_minor: int) -> int:
    if transaction_type == TransactionType.EXPENSE.value:
        return -amount_minor
    return amount_minor


class SqlFinanceStorage(_SqlStorageBase, FinanceStorageInterface):
    """
    SQLAlchemy implementation of finance storage.
    """

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    def add_category(self, category: Category) -> Category:
        with self._unit_of_work("add category") as session:
            row = CategoryRow(
                user_id=category.user_id,
                name=category.name,
                type=category.type.value,
                is_active=category.is_active,
            )
            session.add(row)
            session.flush()
            return _category(row)

    def get_category(self, category_id: int) -> Optional[Category]:
        with self._unit_of_work("get category") as session:
            row = session.get(CategoryRow, category_id)
            return _category(row) if row else None

    def list_categories(
        self,
        user_id: int,
        transaction_type: Optional[TransactionType] = None,
        active_only: bool = True,
    ) -> list[Category]:
        stmt = select(CategoryRow).where(CategoryRow.user_id == user_id)
        if transaction_type is not None:
            stmt = stmt.where(
                CategoryRow.type.in_([transaction_type.value, CategoryType.BOTH.value])
            )
        if active_only:
            stmt = stmt.where(CategoryRow.is_active.is_(True))
        stmt = stmt.order_by(CategoryRow.name, CategoryRow.id)

        with self._unit_of_work("list categories") as session:
            return [_category(row) for row in session.scalars(stmt)]

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    def add_account(self, account: Account) -> Account:
        with self._unit_of_work("add account") as session:
            row = AccountRow(
                user_id=account.user_id,
                name=account.name,
                account_type=account.account_type.value,
                currency=account.currency,
                balance=account.balance,
                is_active=account.is_active,
            )
            session.add(row)
            session.flush()
            return _account(row)

    def get_account(self, account_id: int) -> Optional[Account]:
        with self._unit_of_work("get account") as session:
            row = session.get(AccountRow, account_id)
            return _account(row) if row else None

    def list_accounts(self, user_id: int, active_only: bool = True) -> list[Account]:
        stmt = select(AccountRow).where(AccountRow.user_id == user_id)
        if active_only:
            stmt = stmt.where(AccountRow.is_active.is_(True))
        stmt = stmt.order_by(AccountRow.id)

        with self._unit_of_work("list accounts") as session:
            return [_account(row) for row in session.scalars(stmt)]

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def _apply_delta(
        self,
        session: Session,
        account_id: int,
        delta: int,
        allow_overdraft: bool = True,
    ) -> None:
        stmt = (
            update(AccountRow)
            .where(AccountRow.id == account_id)
            .values(balance=AccountRow.balance + delta)
        )
        if delta < 0 and not allow_overdraft:
            # Check and debit in one statement
            stmt = stmt.where(AccountRow.balance >= -delta)

        result = session.execute(stmt)
        if result.rowcount == 1:
            return

        row = session.get(AccountRow, account_id)
        if row is None:
            raise NotFoundError(f"Account not found: {account_id}")
        raise InsufficientFundsError(account_id, row.balance, -delta)

    def create_transaction(
        self,
        transaction: Transaction,
        allow_overdraft: bool = True,
    ) -> Transaction:
        with self._unit_of_work("create transaction") as session:
            self._apply_delta(
                session,
                transaction.account_id,
                transaction.signed_amount().amount,
                allow_overdraft=allow_overdraft,
            )
            row = TransactionRow(
                user_id=transaction.user_id,
                account_id=transaction.account_id,
                category_id=transaction.category_id,
                amount_minor=transaction.amount.amount,
                currency=transaction.amount.currency,
                type=transaction.type.value,
                occurred_at=transaction.occurred_at,
                description=transaction.description,
                notes=transaction.notes,
                created_at=transaction.created_at,
            )
            session.add(row)
            session.flush()
            created = _transaction(row)

        logger.info(
            "transaction_stored",
            transaction_id=created.id,
            account_id=created.account_id,
            amount=created.amount.amount,
            currency=created.amount.currency,
        )
        return created

    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        with self._unit_of_work("get transaction") as session:
            row = session.get(TransactionRow, transaction_id)
            return _transaction(row) if row else None

    def list_transactions(
        self,
        user_id: int,
        account_id: Optional[int] = None,
        category_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Transaction]:
        stmt = select(TransactionRow).where(TransactionRow.user_id == user_id)
        if account_id is not None:
            stmt = stmt.where(TransactionRow.account_id == account_id)
        if category_id is not None:
            stmt = stmt.where(TransactionRow.category_id == category_id)
        if date_from is not None:
            stmt = stmt.where(TransactionRow.occurred_at >= date_from)
        if date_to is not None:
            stmt = stmt.where(TransactionRow.occurred_at <= date_to)
        stmt = (
            stmt.order_by(TransactionRow.occurred_at.desc(), TransactionRow.id.desc())
            .offset(offset)
            .limit(limit)
        )

        with self._unit_of_work("list transactions") as session:
            return [_transaction(row) for row in session.scalars(stmt)]

    def update_transaction(self, transaction: Transaction) -> Transaction:
        if transaction.id is None:
            raise NotFoundError("Transaction has no id")

        with self._unit_of_work("update transaction") as session:
            row = session.get(TransactionRow, transaction.id)
            if row is None:
                raise NotFoundError(f"Transaction not found: {transaction.id}")

            self._apply_delta(session, row.account_id, -_balance_delta(row.type, row.amount_minor))
            self._apply_delta(session, transaction.account_id, transaction.signed_amount().amount)

            row.account_id = transaction.account_id
            row.category_id = transaction.category_id
            row.amount_minor = transaction.amount.amount
            row.currency = transaction.amount.currency
            row.type = transaction.type.value
            row.occurred_at = transaction.occurred_at
            row.description = transaction.description
            row.notes = transaction.notes
            session.flush()
            return _transaction(row)

    def delete_transaction(self, transaction_id: int) -> bool:
        with self._unit_of_work("delete transaction") as session:
            row = session.get(TransactionRow, transaction_id)
            if row is None:
                return False
            self._apply_delta(session, row.account_id, -_balance_delta(row.type, row.amount_minor))
            # SQLite leaves foreign keys unenforced unless asked, so unlink here
            session.execute(
                update(SavingsContributionRow)
                .where(SavingsContributionRow.transaction_id == transaction_id)
                .values(transaction_id=None)
            )
            session.delete(row)
            return True

    def transaction_exists(
        self,
        user_id: int,
        amount: int,
        currency: str,
        occurred_at: date,
        description: Optional[str],
    ) -> bool:
        stmt = select(func.count(TransactionRow.id)).where(
            and_(
                TransactionRow.user_id == user_id,
                TransactionRow.amount_minor == amount,
                TransactionRow.currency == currency,
                TransactionRow.occurred_at == occurred_at,
            )
        )
        if description:
            stmt = stmt.where(func.lower(TransactionRow.description) == description.lower())

        with self._unit_of_work("check duplicate transaction") as session:
            return session.scalar(stmt) > 0

    # -------------------------------------------------------------------------
    # Savings goals
    # -------------------------------------------------------------------------

    def add_savings_goal(self, goal: SavingsGoal) -> SavingsGoal:
        with self._unit_of_work("add savings goal") as session:
            row = SavingsGoalRow(
                user_id=goal.user_id,
                target_account_id=goal.target_account_id,
                name=goal.name,
                description=goal.description,
                target_amount=goal.target_amount,
                current_amount=goal.current_amount,
                currency=goal.currency,
                target_date=goal.target_date,
                status=goal.status.value,
                completed_at=goal.completed_at,
            )
            session.add(row)
            session.flush()
            return _goal(row)

    def get_savings_goal(self, goal_id: int) -> Optional[SavingsGoal]:
        with self._unit_of_work("get savings goal") as session:
            row = session.get(SavingsGoalRow, goal_id)
            return _goal(row) if row else None

    def list_savings_goals(self, user_id: int) -> list[SavingsGoal]:
        stmt = (
            select(SavingsGoalRow)
            .where(SavingsGoalRow.user_id == user_id)
            .order_by(SavingsGoalRow.id)
        )
        with self._unit_of_work("list savings goals") as session:
            return [_goal(row) for row in session.scalars(stmt)]

    def update_savings_goal(self, goal: SavingsGoal) -> SavingsGoal:
        # current_amount is owned by recalculate_goal_progress
        with self._unit_of_work("update savings goal") as session:
            row = session.get(SavingsGoalRow, goal.id)
            if row is None:
                raise NotFoundError(f"Savings goal not found: {goal.id}")
            row.target_account_id = goal.target_account_id
            row.name = goal.name
            row.description = goal.description
            row.target_amount = goal.target_amount
            row.target_date = goal.target_date
            row.status = goal.status.value
            row.completed_at = goal.completed_at
            session.flush()
            return _goal(row)

    def add_contribution(self, contribution: SavingsContribution) -> SavingsContribution:
        with self._unit_of_work("add contribution") as session:
            if session.get(SavingsGoalRow, contribution.savings_goal_id) is None:
                raise NotFoundError(f"Savings goal not found: {contribution.savings_goal_id}")
            row = SavingsContributionRow(
                savings_goal_id=contribution.savings_goal_id,
                transaction_id=contribution.transaction_id,
                amount=contribution.amount,
                contribution_date=contribution.contribution_date,
                notes=contribution.notes,
                kind=contribution.kind.value,
            )
            session.add(row)
            session.flush()
            return _contribution(row)

    def get_contribution(self, contribution_id: int) -> Optional[SavingsContribution]:
        with self._unit_of_work("get contribution") as session:
            row = session.get(SavingsContributionRow, contribution_id)
            return _contribution(row) if row else None

    def delete_contribution(self, contribution_id: int) -> bool:
        with self._unit_of_work("delete contribution") as session:
            row = session.get(SavingsContributionRow, contribution_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def list_contributions(self, goal_id: int) -> list[SavingsContribution]:
        stmt = (
            select(SavingsContributionRow)
            .where(SavingsContributionRow.savings_goal_id == goal_id)
            .order_by(SavingsContributionRow.contribution_date, SavingsContributionRow.id)
        )
        with self._unit_of_work("list contributions") as session:
            return [_contribution(row) for row in session.scalars(stmt)]

    def recalculate_goal_progress(self, goal_id: int) -> SavingsGoal:
        with self._unit_of_work("recalculate savings goal") as session:
            row = session.get(SavingsGoalRow, goal_id)
            if row is None:
                raise NotFoundError(f"Savings goal not found: {goal_id}")
            total = session.scalar(
                select(func.coalesce(func.sum(SavingsContributionRow.amount), 0)).where(
                    SavingsContributionRow.savings_goal_id == goal_id
                )
            )
            row.current_amount = max(int(total), 0)
            session.flush()
            return _goal(row)

    def mark_goal_completed(self, goal_id: int, completed_at: datetime) -> bool:
        stmt = (
            update(SavingsGoalRow)
            .where(
                SavingsGoalRow.id == goal_id,
                SavingsGoalRow.status == SavingsGoalStatus.ACTIVE.value,
                SavingsGoalRow.current_amount >= SavingsGoalRow.target_amount,
            )
            .values(status=SavingsGoalStatus.COMPLETED.value, completed_at=completed_at)
        )
        with self._unit_of_work("complete savings goal") as session:
            return session.execute(stmt).rowcount == 1

    # -------------------------------------------------------------------------
    # Ingestion history
    # -------------------------------------------------------------------------

    def save_ingestion(self, record: IngestionRecord) -> IngestionRecord:
        with self._unit_of_work("save ingestion") as session:
            row = IngestionRow(
                user_id=record.user_id,
                input_type=record.input_type.value,
                raw_text=record.raw_text,
                parsed_result=record.parsed_result,
                provider=record.provider,
                language=record.language,
                confidence=record.confidence,
                transaction_saved=record.transaction_saved,
                transaction_id=record.transaction_id,
                created_at=record.created_at,
            )
            session.add(row)
            session.flush()
            return _ingestion(row)

    def get_ingestion(self, ingestion_id: int) -> Optional[IngestionRecord]:
        with self._unit_of_work("get ingestion") as session:
            row = session.get(IngestionRow, ingestion_id)
            return _ingestion(row) if row else None

    def list_ingestions(self, user_id: int, limit: int = 50) -> list[IngestionRecord]:
        stmt = (
            select(IngestionRow)
            .where(IngestionRow.user_id == user_id)
            .order_by(IngestionRow.created_at.desc(), IngestionRow.id.desc())
            .limit(limit)
        )
        with self._unit_of_work("list ingestions") as session:
            return [_ingestion(row) for row in session.scalars(stmt)]

    def claim_ingestion(self, ingestion_id: int) -> bool:
        stmt = (
            update(IngestionRow)
            .where(
                IngestionRow.id == ingestion_id,
                IngestionRow.transaction_saved.is_(False),
            )
            .values(transaction_saved=True)
        )
        with self._unit_of_work("claim ingestion") as session:
            return session.execute(stmt).rowcount == 1

    def release_ingestion(self, ingestion_id: int) -> bool:
        stmt = (
            update(IngestionRow)
            .where(
                IngestionRow.id == ingestion_id,
                IngestionRow.transaction_id.is_(None),
            )
            .values(transaction_saved=False)
        )
        with self._unit_of_work("release ingestion") as session:
            return session.execute(stmt).rowcount == 1

    def mark_ingestion_saved(self, ingestion_id: int, transaction_id: int) -> bool:
        stmt = (
            update(IngestionRow)
            .where(IngestionRow.id == ingestion_id)
            .values(transaction_saved=True, transaction_id=transaction_id)
        )
        with self._unit_of_work("mark ingestion saved") as session:
            return session.execute(stmt).rowcount == 1


class SqlAuditStorage(_SqlStorageBase, AuditStorageInterface):
    """
    SQL implementation of audit storage.

    Audit events are append-only rows.
    """

    def _to_row(self, event: AuditEvent) -> AuditEventRow:
        return AuditEventRow(
            event_id=str(event.event_id),
            timestamp=event.timestamp,
            event_type=event.event_type.value,
            severity=event.severity.value,
            user_id=event.user_id,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            correlation_id=str(event.correlation_id) if event.correlation_id else None,
            description=event.description,
            details=event.details,
            error_message=event.error_message,
            is_user_action=event.is_user_action,
        )

    def _to_event(self, row: AuditEventRow) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row.event_id),
            timestamp=row.timestamp,
            event_type=AuditEventType(row.event_type),
            severity=AuditSeverity(row.severity),
            user_id=row.user_id,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            correlation_id=UUID(row.correlation_id) if row.correlation_id else None,
            description=row.description,
            details=row.details or {},
            error_message=row.error_message,
            is_user_action=row.is_user_action,
        )

    def append_event(self, event: AuditEvent) -> bool:
        with self._unit_of_work("append audit event") as session:
            session.add(self._to_row(event))
        return True

    def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        stmt = (
            select(AuditEventRow)
            .where(AuditEventRow.correlation_id == str(correlation_id))
            .order_by(AuditEventRow.timestamp)
        )
        with self._unit_of_work("get audit events") as session:
            return [self._to_event(row) for row in session.scalars(stmt)]

    def get_events_by_entity(self, entity_type: str, entity_id: str) -> list[AuditEvent]:
        stmt = (
            select(AuditEventRow)
            .where(
                AuditEventRow.entity_type == entity_type,
                AuditEventRow.entity_id == entity_id,
            )
            .order_by(AuditEventRow.timestamp)
        )
        with self._unit_of_work("get audit events") as session:
            return [self._to_event(row) for row in session.scalars(stmt)]

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        stmt = select(AuditEventRow).order_by(AuditEventRow.timestamp.desc()).limit(limit)
        with self._unit_of_work("get audit events") as session:
            return [self._to_event(row) for row in session.scalars(stmt)]
