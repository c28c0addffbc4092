"""Mastery engine: turns attempt history into a difficulty recommendation."""

import logging
from typing import Sequence

from .config import (
    HISTORY_WINDOW_MULTIPLIER,
    HINT_PENALTY_PER_HINT, HINT_PENALTY_CAP,
    INCORRECT_PENALTY_PER_ATTEMPT, INCORRECT_PENALTY_CAP,
    STRUGGLING_THRESHOLD, FALLBACK_THRESHOLD
)
from .interfaces import Storage
from .models import Difficulty, MasteryLevels, MasteryState, MasteryThresholds, ProblemAttempt
from .utils import clamp

logger = logging.getLogger(__name__)


class MasteryEngine:
    """Rolling-window performance model over easy/medium/hard tiers.

    Attempts are taken in the order given; nothing is re-sorted by timestamp,
    so "most recent" means "last in the sequence".
    """

    def __init__(self, thresholds: MasteryThresholds = None):
        self.thresholds = thresholds or MasteryThresholds()

    @property
    def history_limit(self) -> int:
        return self.thresholds.max_attempts_window * HISTORY_WINDOW_MULTIPLIER

    def _attempts_at(self, attempts: Sequence[ProblemAttempt], difficulty: Difficulty,
                     limit: int) -> list[ProblemAttempt]:
        relevant = [a for a in attempts if a.difficulty == difficulty]
        if limit <= 0:
            return []
        return relevant[-limit:]

    def calculate_mastery(self, attempts: Sequence[ProblemAttempt], difficulty: Difficulty) -> float:
        """Score a tier in [0, 1] from its last max_attempts_window attempts.

        Solve rate minus a hint penalty (0.1 per average hint, capped at 0.3) and an
        incorrect-attempt penalty (0.05 per average wrong attempt, capped at 0.2).
        """
        relevant = self._attempts_at(attempts, Difficulty(difficulty), self.thresholds.max_attempts_window)
        if not relevant:
            return 0.0

        count = len(relevant)
        solve_rate = sum(1 for a in relevant if a.solved) / count
        avg_hints = sum(a.hints_used for a in relevant) / count
        avg_incorrect = sum(a.incorrect_attempts for a in relevant) / count

        hint_penalty = min(avg_hints * HINT_PENALTY_PER_HINT, HINT_PENALTY_CAP)
        incorrect_penalty = min(avg_incorrect * INCORRECT_PENALTY_PER_ATTEMPT, INCORRECT_PENALTY_CAP)

        return clamp(solve_rate - hint_penalty - incorrect_penalty)

    def calculate_mastery_levels(self, attempts: Sequence[ProblemAttempt]) -> MasteryLevels:
        return MasteryLevels(
            easy=self.calculate_mastery(attempts, Difficulty.EASY),
            medium=self.calculate_mastery(attempts, Difficulty.MEDIUM),
            hard=self.calculate_mastery(attempts, Difficulty.HARD)
        )

    def should_advance_difficulty(self, attempts: Sequence[ProblemAttempt],
                                  current_difficulty: Difficulty) -> bool:
        current_difficulty = Difficulty(current_difficulty)
        if current_difficulty == Difficulty.HARD:
            return False

        if self.calculate_mastery(attempts, current_difficulty) < self.thresholds.advance_threshold:
            return False

        required = self.thresholds.consecutive_solved_to_advance
        trailing = self._attempts_at(attempts, current_difficulty, required)
        if len(trailing) < required:
            return False
        return all(a.solved for a in trailing)

    def get_recommended_difficulty(self, attempts: Sequence[ProblemAttempt],
                                   current_difficulty: Difficulty) -> Difficulty:
        current_difficulty = Difficulty(current_difficulty)
        levels = self.calculate_mastery_levels(attempts)

        # Struggling: step down only if the lower tier is comfortably mastered
        if levels.get(current_difficulty) < STRUGGLING_THRESHOLD:
            if current_difficulty == Difficulty.HARD and levels.medium > FALLBACK_THRESHOLD:
                return Difficulty.MEDIUM
            if current_difficulty == Difficulty.MEDIUM and levels.easy > FALLBACK_THRESHOLD:
                return Difficulty.EASY
            return current_difficulty

        if self.should_advance_difficulty(attempts, current_difficulty):
            if current_difficulty == Difficulty.EASY:
                return Difficulty.MEDIUM
            if current_difficulty == Difficulty.MEDIUM:
                return Difficulty.HARD

        return current_difficulty

    def update_mastery_state(self, state: MasteryState, new_attempt: ProblemAttempt) -> MasteryState:
        """Pure transition: returns a new state, the input is left untouched."""
        limit = self.history_limit
        recent_attempts = (tuple(state.recent_attempts) + (new_attempt,))[-limit:] if limit > 0 else ()
        consecutive_solved = state.consecutive_solved + 1 if new_attempt.solved else 0

        new_state = MasteryState(
            recent_attempts=recent_attempts,
            mastery_levels=self.calculate_mastery_levels(recent_attempts),
            consecutive_solved=consecutive_solved,
            should_advance=self.should_advance_difficulty(recent_attempts, new_attempt.difficulty),
            recommended_difficulty=self.get_recommended_difficulty(recent_attempts, new_attempt.difficulty)
        )
        if new_state.recommended_difficulty != new_attempt.difficulty:
            logger.info(f"Recommended difficulty changed: {new_attempt.difficulty.value} -> "
                        f"{new_state.recommended_difficulty.value}")
        return new_state


def load_mastery_state(storage: Storage, user_id: str = "default") -> MasteryState:
    """Load a user's snapshot, falling back to a zeroed default on any failure."""
    try:
        data = storage.load_mastery_state(user_id)
        if data:
            return MasteryState.from_dict(data)
    except Exception as e:
        logger.error(f"Error loading mastery state for {user_id}: {type(e).__name__}: {e}")
    return MasteryState.default()


def save_mastery_state(storage: Storage, state: MasteryState, user_id: str = "default") -> None:
    """Persist a snapshot. Backend errors propagate to the caller."""
    storage.save_mastery_state(state.to_dict(), user_id)
