"""Gem ledger — append-only currency ledger with atomic debit and credit.

The cached ``gems`` balance on ``user_progression`` only ever moves together
with a ledger row, in the same transaction.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .database import ProgressionChange
from .models import LedgerAudit, LedgerEntry, LedgerOutcome, LedgerReason, ResultKind
from .utils import parse_timestamp, retry_on_conflict

if TYPE_CHECKING:
    from .clock import Clock
    from .config import ProgressionConfig
    from .database import ProgressionDatabase


class GemLedger:
    """Debit, credit and audit a user's gems."""

    def __init__(
        self,
        config: ProgressionConfig,
        database: ProgressionDatabase,
        clock: Clock,
        logger: logging.Logger,
    ) -> None:
        self._config = config
        self._db = database
        self._clock = clock
        self._logger = logger

    # ══════════════════════════════════════════════════════════
    #  Staging (pure)
    # ══════════════════════════════════════════════════════════

    @staticmethod
    def debit(
        change: ProgressionChange, amount: int, reason: LedgerReason, reference: str | None = None,
    ) -> bool:
        """Stage a debit on *change*. Returns False if the balance is too low."""
        if amount <= 0:
            raise ValueError("Debit amount must be positive")
        if change.gems < amount:
            return False
        change.add_ledger(-amount, reason, reference)
        return True

    @staticmethod
    def credit_change(
        change: ProgressionChange, amount: int, reason: LedgerReason, reference: str | None = None,
    ) -> None:
        if amount <= 0:
            raise ValueError("Credit amount must be positive")
        change.add_ledger(amount, reason, reference)

    # ══════════════════════════════════════════════════════════
    #  Public API
    # ══════════════════════════════════════════════════════════

    async def balance(self, user_id: str) -> int | None:
        row = await self._db.get_progression(user_id)
        return row["gems"] if row else None

    async def consume(
        self,
        user_id: str,
        amount: int,
        reason: LedgerReason = LedgerReason.CONSUMPTION,
        reference: str | None = None,
    ) -> LedgerOutcome:
        """Debit *amount* gems, re-checking the balance on every attempt."""
        if amount <= 0:
            raise ValueError("Debit amount must be positive")

        async def attempt() -> LedgerOutcome:
            row = await self._db.get_progression(user_id)
            if row is None:
                return LedgerOutcome(kind=ResultKind.NOT_FOUND)
            change = ProgressionChange.from_row(row, self._clock.now())
            if not self.debit(change, amount, reason, reference):
                return LedgerOutcome(kind=ResultKind.INSUFFICIENT_FUNDS, balance=change.gems)
            await self._db.commit_change(change)
            self._logger.info(
                "Debited %d gems from %s (%s), balance %d", amount, user_id, reason.value, change.gems,
            )
            return LedgerOutcome(kind=ResultKind.OK, balance=change.gems, entry_delta=-amount)

        return await retry_on_conflict(
            attempt, self._config.engine.max_retries, self._logger,
            lambda: LedgerOutcome(kind=ResultKind.CONCURRENCY_CONFLICT),
        )

    async def credit(
        self,
        user_id: str,
        amount: int,
        reason: LedgerReason = LedgerReason.ADMIN_ADJUSTMENT,
        reference: str | None = None,
    ) -> LedgerOutcome:
        """Credit *amount* gems. Always succeeds for a known user."""
        if amount <= 0:
            raise ValueError("Credit amount must be positive")

        async def attempt() -> LedgerOutcome:
            row = await self._db.get_progression(user_id)
            if row is None:
                return LedgerOutcome(kind=ResultKind.NOT_FOUND)
            change = ProgressionChange.from_row(row, self._clock.now())
            self.credit_change(change, amount, reason, reference)
            await self._db.commit_change(change)
            self._logger.info(
                "Credited %d gems to %s (%s), balance %d", amount, user_id, reason.value, change.gems,
            )
            return LedgerOutcome(kind=ResultKind.OK, balance=change.gems, entry_delta=amount)

        return await retry_on_conflict(
            attempt, self._config.engine.max_retries, self._logger,
            lambda: LedgerOutcome(kind=ResultKind.CONCURRENCY_CONFLICT),
        )

    async def history(self, user_id: str, limit: int = 20) -> list[LedgerEntry]:
        """Newest-first ledger entries."""
        rows = await self._db.get_ledger(user_id, limit)
        return [
            LedgerEntry(
                id=r["id"],
                user_id=r["user_id"],
                delta=r["delta"],
                reason=LedgerReason(r["reason"]),
                balance_after=r["balance_after"],
                created_at=parse_timestamp(r["created_at"]),
                reference=r["reference"],
            )
            for r in rows
        ]

    async def verify(self, user_id: str) -> LedgerAudit | None:
        """Reconcile the cached balance against the ledger sum."""
        row = await self._db.get_progression(user_id)
        if row is None:
            return None
        totals = await self._db.get_ledger_totals(user_id)
        audit = LedgerAudit(
            user_id=user_id,
            cached_balance=row["gems"],
            ledger_sum=totals["total"],
            entries=totals["entries"],
        )
        if not audit.consistent:
            self._logger.warning(
                "Gem drift for %s: cached %d, ledger %d",
                user_id, audit.cached_balance, audit.ledger_sum,
            )
        return audit
