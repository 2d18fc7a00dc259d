"""Credit ledger: balances and movements of spendable referral credits."""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.ledger.models import CreditLedgerEntry, LedgerSource
from marketplace.logging_config import get_logger
from marketplace.policy.snapshot import CreditType
from marketplace.storage.db import Database, db, is_unique_violation
from marketplace.storage.models import UserAccount
from marketplace.timeutils import to_naive_utc, utcnow

logger = get_logger(__name__)


class InsufficientCreditsError(Exception):
    """Raised when user has insufficient credits."""

    def __init__(self, credit_type: str, required: float, available: float):
        self.credit_type = credit_type
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient {credit_type}: required {required}, available {available}"
        )


class SpendConflictError(Exception):
    """Raised when a spend reference was already used for a different spend."""

    def __init__(self, reference: str, credit_type: str, amount: float):
        self.reference = reference
        self.credit_type = credit_type
        self.amount = amount
        super().__init__(
            f"Reference {reference!r} was already spent as {amount} {credit_type}"
        )


@dataclass
class SpendResult:
    """Outcome of a spend; `replayed` is True when the reference was already spent."""
    entry: CreditLedgerEntry
    balance_after: float
    replayed: bool = False


def _balance_query(user_id: int, credit_type: str):
    return select(func.coalesce(func.sum(CreditLedgerEntry.delta), 0.0)).where(
        CreditLedgerEntry.user_id == user_id,
        CreditLedgerEntry.credit_type == credit_type,
    )


class CreditLedger:
    """Service for reading and appending credit ledger entries.

    Operations:
    - Append earned credits (reward engine, milestones)
    - Spend credits (listing publish, featured placement)
    - Balances and history
    """

    def __init__(self, database: Database | None = None):
        self.db = database or db
        self.logger = get_logger(__name__)

    def append_entry(
        self,
        session: Session,
        user_id: int,
        credit_type: CreditType | str,
        delta: float,
        source: LedgerSource,
        source_ref: str,
        reward_id: int | None = None,
        description: str | None = None,
        issued_at: datetime | None = None,
    ) -> CreditLedgerEntry:
        """Add an entry inside the caller's transaction.

        The caller owns commit/rollback so the entry lands atomically with
        whatever caused it.
        """
        if delta == 0:
            raise ValueError("Ledger entries require a non-zero delta")

        entry = CreditLedgerEntry(
            user_id=user_id,
            credit_type=CreditType(credit_type).value,
            delta=delta,
            source=source.value,
            source_ref=source_ref,
            reward_id=reward_id,
            description=description,
            issued_at=to_naive_utc(issued_at) if issued_at else utcnow(),
        )
        session.add(entry)
        session.flush()
        return entry

    def get_balance(self, user_id: int, credit_type: CreditType | str) -> float:
        """Current balance of one credit type."""
        credit_type = CreditType(credit_type).value
        with self.db.session() as session:
            return float(session.scalar(_balance_query(user_id, credit_type)) or 0.0)

    def get_balances(self, user_id: int) -> dict[str, float]:
        """Balances of every credit type, zero-filled."""
        balances = {credit_type.value: 0.0 for credit_type in CreditType}
        with self.db.session() as session:
            rows = session.execute(
                select(CreditLedgerEntry.credit_type, func.sum(CreditLedgerEntry.delta))
                .where(CreditLedgerEntry.user_id == user_id)
                .group_by(CreditLedgerEntry.credit_type)
            ).all()
        for credit_type, total in rows:
            balances[credit_type] = float(total or 0.0)
        return balances

    def _find_spend(self, session: Session, user_id: int, reference: str):
        return session.scalars(
            select(CreditLedgerEntry).where(
                CreditLedgerEntry.user_id == user_id,
                CreditLedgerEntry.source == LedgerSource.SPEND.value,
                CreditLedgerEntry.source_ref == reference,
            )
        ).first()

    def _replay(self, session: Session, existing: CreditLedgerEntry, credit_type: str, amount: float) -> SpendResult:
        if existing.credit_type != credit_type or -existing.delta != amount:
            raise SpendConflictError(existing.source_ref, existing.credit_type, -existing.delta)
        balance = float(session.scalar(_balance_query(existing.user_id, credit_type)) or 0.0)
        return SpendResult(entry=existing, balance_after=balance, replayed=True)

    def spend(
        self,
        user_id: int,
        credit_type: CreditType | str,
        amount: float,
        reference: str,
        description: str | None = None,
    ) -> SpendResult:
        """Spend credits for a feature, once per reference.

        Args:
            user_id: User ID
            credit_type: Credit type to draw from
            amount: Amount to spend (positive)
            reference: Stable identifier of what is being paid for
            description: Optional description

        Returns:
            Spend result

        Raises:
            InsufficientCreditsError: If not enough credits
            SpendConflictError: If the reference was spent with another type or amount
        """
        if amount <= 0:
            raise ValueError("Amount must be positive")
        if not reference or not reference.strip():
            raise ValueError("Spend reference is required")

        credit_type = CreditType(credit_type).value
        reference = reference.strip()

        try:
            with self.db.session() as session:
                # Lock the user row so concurrent spends see each other's balance
                session.scalars(
                    select(UserAccount).where(UserAccount.id == user_id).with_for_update()
                ).first()

                existing = self._find_spend(session, user_id, reference)
                if existing is not None:
                    return self._replay(session, existing, credit_type, amount)

                available = float(session.scalar(_balance_query(user_id, credit_type)) or 0.0)
                if available < amount:
                    raise InsufficientCreditsError(credit_type, amount, available)

                entry = self.append_entry(
                    session,
                    user_id=user_id,
                    credit_type=credit_type,
                    delta=-amount,
                    source=LedgerSource.SPEND,
                    source_ref=reference,
                    description=description,
                )
                balance_after = available - amount
        except IntegrityError as e:
            if not is_unique_violation(e):
                raise
            # A concurrent spend with the same reference committed first
            with self.db.session() as session:
                existing = self._find_spend(session, user_id, reference)
                if existing is None:
                    raise
                return self._replay(session, existing, credit_type, amount)

        self.logger.info(
            "credits_spent",
            user_id=user_id,
            credit_type=credit_type,
            amount=amount,
            reference=reference,
            new_balance=balance_after,
        )
        return SpendResult(entry=entry, balance_after=balance_after)

    def history(self, user_id: int, limit: int = 50, offset: int = 0) -> list[CreditLedgerEntry]:
        """Get user's ledger entries, newest first."""
        with self.db.session() as session:
            return list(
                session.scalars(
                    select(CreditLedgerEntry)
                    .where(CreditLedgerEntry.user_id == user_id)
                    .order_by(CreditLedgerEntry.issued_at.desc(), CreditLedgerEntry.id.desc())
                    .limit(limit)
                    .offset(offset)
                )
            )


# Singleton instance
credit_ledger = CreditLedger()
