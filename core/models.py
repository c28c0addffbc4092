"""Domain models for the tutoring policy engine."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from .config import (
    MIN_TIME_BETWEEN_QUESTIONS, MAX_QUESTIONS_PER_MINUTE, SPEAKING_COOLDOWN,
    STRATEGIC_QUESTION_PROBABILITY, ALWAYS_ASK_ON_STRATEGIC_MOMENT, CHECK_IN_ON_INACTIVITY,
    ADVANCE_THRESHOLD, CONSECUTIVE_SOLVED_TO_ADVANCE, MAX_ATTEMPTS_WINDOW
)
from .utils import parse_timestamp


class Difficulty(str, Enum):
    """Problem difficulty tier."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


# Ordered lowest to highest; advancement moves one step at a time
DIFFICULTY_LEVELS = [Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD]


class DialogueMode(str, Enum):
    SILENT = "silent"                  # No proactive questions
    HINTS_ONLY = "hints_only"          # Only respond when the student asks
    CONVERSATIONAL = "conversational"  # Guiding questions enabled


class ConversationState(str, Enum):
    IDLE = "idle"            # No recent activity
    WORKING = "working"      # Student actively solving
    PAUSED = "paused"        # Student paused but not timed out
    STUCK = "stuck"          # Multiple incorrect attempts
    LISTENING = "listening"  # Waiting for a spoken answer
    SPEAKING = "speaking"    # Speech output in progress


@dataclass(frozen=True)
class DialogueConfig:
    """Recognized dialogue options. Replace, never mutate."""

    mode: DialogueMode = DialogueMode.CONVERSATIONAL
    min_time_between_questions: float = MIN_TIME_BETWEEN_QUESTIONS
    max_questions_per_minute: int = MAX_QUESTIONS_PER_MINUTE
    speaking_cooldown: float = SPEAKING_COOLDOWN
    strategic_question_probability: float = STRATEGIC_QUESTION_PROBABILITY
    always_ask_on_strategic_moment: bool = ALWAYS_ASK_ON_STRATEGIC_MOMENT
    check_in_on_inactivity: bool = CHECK_IN_ON_INACTIVITY

    def __post_init__(self):
        object.__setattr__(self, 'mode', DialogueMode(self.mode))

    def merged(self, **updates) -> 'DialogueConfig':
        """Shallow-merge updates into a new config.

        Options passed as None keep their previous value. Unknown option names
        raise TypeError.
        """
        changes = {key: value for key, value in updates.items() if value is not None}
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            'mode': self.mode.value,
            'min_time_between_questions': self.min_time_between_questions,
            'max_questions_per_minute': self.max_questions_per_minute,
            'speaking_cooldown': self.speaking_cooldown,
            'strategic_question_probability': self.strategic_question_probability,
            'always_ask_on_strategic_moment': self.always_ask_on_strategic_moment,
            'check_in_on_inactivity': self.check_in_on_inactivity
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'DialogueConfig':
        return cls().merged(**data)


@dataclass(frozen=True)
class DialogueState:
    """Read-only snapshot of the dialogue gate."""

    conversation_state: ConversationState = ConversationState.IDLE
    last_question_time: Optional[float] = None
    last_speech_end_time: Optional[float] = None
    is_waiting_for_response: bool = False
    questions_asked_in_last_minute: int = 0
    current_question: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'conversation_state': self.conversation_state.value,
            'last_question_time': self.last_question_time,
            'last_speech_end_time': self.last_speech_end_time,
            'is_waiting_for_response': self.is_waiting_for_response,
            'questions_asked_in_last_minute': self.questions_asked_in_last_minute,
            'current_question': self.current_question
        }


@dataclass(frozen=True)
class CheckIn:
    """An inactivity threshold crossing."""

    level: int
    elapsed_seconds: int


@dataclass(frozen=True)
class ProblemAttempt:
    """One completed (or abandoned) problem."""

    problem_id: str
    difficulty: Difficulty
    solved: bool
    time_spent: float = 0.0  # seconds
    hints_used: int = 0
    incorrect_attempts: int = 0
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        object.__setattr__(self, 'difficulty', Difficulty(self.difficulty))

    def to_dict(self) -> dict:
        return {
            'problem_id': self.problem_id,
            'difficulty': self.difficulty.value,
            'solved': self.solved,
            'time_spent': self.time_spent,
            'hints_used': self.hints_used,
            'incorrect_attempts': self.incorrect_attempts,
            'timestamp': self.timestamp.isoformat()
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ProblemAttempt':
        return cls(
            problem_id=data['problem_id'],
            difficulty=Difficulty(data['difficulty']),
            solved=bool(data['solved']),
            time_spent=data.get('time_spent', 0.0),
            hints_used=data.get('hints_used', 0),
            incorrect_attempts=data.get('incorrect_attempts', 0),
            timestamp=parse_timestamp(data['timestamp']) if data.get('timestamp') else datetime.now()
        )


@dataclass(frozen=True)
class MasteryLevels:
    """Per-tier mastery scores in [0, 1]."""

    easy: float = 0.0
    medium: float = 0.0
    hard: float = 0.0

    def get(self, difficulty: Difficulty) -> float:
        return getattr(self, Difficulty(difficulty).value)

    def to_dict(self) -> dict:
        return {'easy': self.easy, 'medium': self.medium, 'hard': self.hard}

    @classmethod
    def from_dict(cls, data: dict) -> 'MasteryLevels':
        return cls(
            easy=data.get('easy', 0.0),
            medium=data.get('medium', 0.0),
            hard=data.get('hard', 0.0)
        )


@dataclass(frozen=True)
class MasteryThresholds:
    advance_threshold: float = ADVANCE_THRESHOLD
    consecutive_solved_to_advance: int = CONSECUTIVE_SOLVED_TO_ADVANCE
    max_attempts_window: int = MAX_ATTEMPTS_WINDOW

    def merged(self, **updates) -> 'MasteryThresholds':
        changes = {key: value for key, value in updates.items() if value is not None}
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            'advance_threshold': self.advance_threshold,
            'consecutive_solved_to_advance': self.consecutive_solved_to_advance,
            'max_attempts_window': self.max_attempts_window
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'MasteryThresholds':
        return cls().merged(**data)


@dataclass(frozen=True)
class MasteryState:
    """Rolling performance snapshot. Transitions build a new instance."""

    recent_attempts: tuple[ProblemAttempt, ...] = ()
    mastery_levels: MasteryLevels = field(default_factory=MasteryLevels)
    consecutive_solved: int = 0
    should_advance: bool = False
    recommended_difficulty: Difficulty = Difficulty.EASY

    def __post_init__(self):
        object.__setattr__(self, 'recent_attempts', tuple(self.recent_attempts))
        object.__setattr__(self, 'recommended_difficulty', Difficulty(self.recommended_difficulty))

    @classmethod
    def default(cls) -> 'MasteryState':
        return cls()

    def to_dict(self) -> dict:
        return {
            'recent_attempts': [a.to_dict() for a in self.recent_attempts],
            'mastery_levels': self.mastery_levels.to_dict(),
            'consecutive_solved': self.consecutive_solved,
            'should_advance': self.should_advance,
            'recommended_difficulty': self.recommended_difficulty.value
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'MasteryState':
        return cls(
            recent_attempts=tuple(ProblemAttempt.from_dict(a) for a in data.get('recent_attempts', [])),
            mastery_levels=MasteryLevels.from_dict(data.get('mastery_levels', {})),
            consecutive_solved=data.get('consecutive_solved', 0),
            should_advance=data.get('should_advance', False),
            recommended_difficulty=Difficulty(data.get('recommended_difficulty', Difficulty.EASY.value))
        )
