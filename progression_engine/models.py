"""Domain types shared by the engine components.

Outcomes are frozen dataclasses carrying a ``ResultKind``; recoverable
failures are reported through them instead of being raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Mapping


class ResultKind(Enum):
    OK = "ok"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    ALREADY_COMPLETED = "already_completed"
    ALREADY_PROTECTED = "already_protected"
    NO_FREEZES_AVAILABLE = "no_freezes_available"
    NOT_FOUND = "not_found"
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    NOT_READY = "not_ready"
    EXPIRED = "expired"
    PRICE_MISMATCH = "price_mismatch"
    LIVES_FULL = "lives_full"
    OUT_OF_STOCK = "out_of_stock"


class LedgerReason(Enum):
    PURCHASE = "purchase"
    ACHIEVEMENT_REWARD = "achievement_reward"
    CHALLENGE_REWARD = "challenge_reward"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    CONSUMPTION = "consumption"
    WELCOME_BONUS = "welcome_bonus"


class LeaderboardWindow(Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all_time"


class StreakState(Enum):
    NO_STREAK = "no_streak"
    ACTIVE_TODAY = "active_today"
    AT_RISK = "at_risk"
    BROKEN = "broken"


class ChallengeStatus(Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CLAIMED = "claimed"


# ══════════════════════════════════════════════════════════
#  Snapshots
# ══════════════════════════════════════════════════════════

@dataclass(frozen=True)
class UserProgression:
    user_id: str
    total_xp: int
    level: int
    gems: int
    lives: int
    max_lives: int
    streak_current: int
    streak_longest: int
    streak_freezes: int
    last_active_date: date | None
    streak_state: StreakState
    version: int = 0


@dataclass(frozen=True)
class ActivityMeta:
    """What the caller knows about the activity that earned XP."""
    questions: int = 0
    correct: int = 0
    category: str | None = None
    social: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.questions < 0 or self.correct < 0:
            raise ValueError("questions and correct must be non-negative")
        if self.correct > self.questions:
            raise ValueError("correct cannot exceed questions")

    @property
    def accuracy(self) -> float:
        """Accuracy as a fraction in [0, 1]; 0 when no questions were answered."""
        if self.questions == 0:
            return 0.0
        return self.correct / self.questions

    @property
    def is_perfect(self) -> bool:
        return self.questions > 0 and self.correct == self.questions


@dataclass(frozen=True)
class AchievementStats:
    total_xp: int = 0
    level: int = 1
    streak_current: int = 0
    streak_longest: int = 0
    total_questions: int = 0
    correct_answers: int = 0
    perfect_quizzes: int = 0
    recent_accuracies: tuple[float, ...] = ()  # percent, newest first
    category_questions: Mapping[str, int] = field(default_factory=dict)
    social: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class AchievementProgress:
    achievement_id: str
    current: float
    target: float
    unlocked: bool

    @property
    def progress(self) -> float:
        """Completion fraction in [0, 1]."""
        if self.target <= 0:
            return 1.0
        return min(1.0, self.current / self.target)


@dataclass(frozen=True)
class UserAchievement:
    user_id: str
    achievement_id: str
    earned_at: datetime | None


@dataclass(frozen=True)
class ChallengeRewards:
    xp: int = 0
    gems: int = 0
    lives: int = 0


@dataclass(frozen=True)
class DailyChallenge:
    id: str
    title: str
    description: str
    requirement_type: str
    target: int
    rewards: ChallengeRewards
    valid_date: date


@dataclass(frozen=True)
class ChallengeProgress:
    challenge: DailyChallenge
    progress: int
    status: ChallengeStatus
    completed_at: datetime | None = None
    claimed_at: datetime | None = None


@dataclass(frozen=True)
class StoreItem:
    id: str
    name: str
    kind: str
    cost: int


@dataclass(frozen=True)
class LedgerEntry:
    id: int
    user_id: str
    delta: int
    reason: LedgerReason
    balance_after: int
    created_at: datetime | None
    reference: str | None = None


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    user_id: str
    window: LeaderboardWindow
    period: str
    xp_in_window: int
    reached_at: datetime | None


# ══════════════════════════════════════════════════════════
#  Outcomes
# ══════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ProgressionOutcome:
    kind: ResultKind
    progression: UserProgression | None = None


@dataclass(frozen=True)
class ActivityOutcome:
    kind: ResultKind
    xp_gained: int = 0
    bonus_xp: int = 0
    new_xp: int = 0
    new_level: int = 0
    leveled_up: bool = False
    newly_unlocked: tuple[str, ...] = ()
    streak_current: int = 0
    freezes_used: int = 0
    gems: int = 0
    challenges_advanced: tuple[str, ...] = ()


@dataclass(frozen=True)
class FreezeOutcome:
    kind: ResultKind
    day: date | None = None
    freezes_left: int = 0


@dataclass(frozen=True)
class PurchaseOutcome:
    kind: ResultKind
    item_id: str | None = None
    quantity: int = 0
    charged: int = 0
    remaining_gems: int = 0


@dataclass(frozen=True)
class ItemUseOutcome:
    kind: ResultKind
    item_id: str
    used: int = 0
    remaining: int = 0


@dataclass(frozen=True)
class InventoryOutcome:
    kind: ResultKind
    items: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ListingOutcome:
    """Read-only query result; ``items`` is empty unless ``kind`` is OK."""
    kind: ResultKind
    items: tuple = ()


@dataclass(frozen=True)
class ChallengeOutcome:
    kind: ResultKind
    challenge_id: str
    rewards: ChallengeRewards | None = None
    newly_unlocked: tuple[str, ...] = ()
    new_xp: int = 0
    new_level: int = 0
    leveled_up: bool = False


@dataclass(frozen=True)
class LedgerOutcome:
    kind: ResultKind
    balance: int = 0
    entry_delta: int = 0


@dataclass(frozen=True)
class LedgerAudit:
    user_id: str
    cached_balance: int
    ledger_sum: int
    entries: int

    @property
    def consistent(self) -> bool:
        return self.cached_balance == self.ledger_sum
