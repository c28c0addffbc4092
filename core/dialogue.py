"""Dialogue gate: decides when the tutor may speak unprompted."""

import logging
import random
from typing import Callable, Optional

from .config import QUESTION_RATE_WINDOW, STUCK_ERROR_COUNT, CHECK_IN_RESPONSE_LEVELS
from .interfaces import Clock
from .models import ConversationState, DialogueConfig, DialogueMode, DialogueState
from .utils import SystemClock

logger = logging.getLogger(__name__)


class DialogueGate:
    """Conversation state machine with cooldowns and a per-minute question cap.

    One instance belongs to one tutoring session. Calls are expected to be
    serialized by the owning session; the gate does no locking.

    Args:
        config: Initial configuration (defaults from core.config).
        clock: Source of monotonic "now" in seconds.
        random_source: Zero-argument callable returning a float in [0, 1).
    """

    def __init__(self, config: DialogueConfig = None, clock: Clock = None,
                 random_source: Callable[[], float] = None):
        self.config = config or DialogueConfig()
        self.clock = clock or SystemClock()
        self.random_source = random_source or random.random
        self.conversation_state = ConversationState.IDLE
        self.last_question_time: Optional[float] = None
        self.last_speech_end_time: Optional[float] = None
        self.is_waiting_for_response = False
        self.current_question: Optional[str] = None
        self.question_timestamps: list[float] = []

    def update_config(self, **updates) -> DialogueConfig:
        """Shallow-merge recognized options into the current config."""
        self.config = self.config.merged(**updates)
        logger.info(f"Dialogue config updated: {updates}")
        return self.config

    def update_state(self, state: ConversationState) -> None:
        """Force the conversation state (e.g. mark the student as stuck)."""
        self.conversation_state = ConversationState(state)
        logger.debug(f"Conversation state: {self.conversation_state.value}")

    # Events

    def on_speech_start(self) -> None:
        self.conversation_state = ConversationState.SPEAKING

    def on_speech_end(self) -> None:
        self.last_speech_end_time = self.clock.now()
        if self.is_waiting_for_response:
            self.conversation_state = ConversationState.LISTENING
        else:
            self.conversation_state = ConversationState.WORKING

    def on_student_activity(self) -> None:
        # Never interrupt speech output
        if self.conversation_state == ConversationState.SPEAKING:
            return
        self.conversation_state = ConversationState.WORKING
        self.is_waiting_for_response = False

    def on_student_pause(self) -> None:
        if self.conversation_state == ConversationState.WORKING:
            self.conversation_state = ConversationState.PAUSED

    def on_student_response(self, response: str) -> None:
        self.is_waiting_for_response = False
        self.conversation_state = ConversationState.WORKING
        logger.debug(f"Student response received: {response!r}")

    # Decisions

    def should_ask_question(self, is_strategic_moment: bool = False, is_correct_step: bool = False,
                            consecutive_errors: int = 0) -> bool:
        """Decide whether a proactive question may be asked right now.

        Hard gates (mode, speaking/listening, speech cooldown, question spacing,
        per-minute cap) are checked first; the stuck override, strategic moments
        and the probability draw only apply once all of them pass.
        """
        if self.config.mode in (DialogueMode.SILENT, DialogueMode.HINTS_ONLY):
            return False

        if self.conversation_state in (ConversationState.SPEAKING, ConversationState.LISTENING):
            return False

        now = self.clock.now()

        if self.last_speech_end_time is not None:
            since_speech = now - self.last_speech_end_time
            if since_speech < self.config.speaking_cooldown:
                logger.debug(f"Skipping question: cooldown active "
                             f"({since_speech:.1f}s < {self.config.speaking_cooldown}s)")
                return False

        if self.last_question_time is not None:
            since_question = now - self.last_question_time
            if since_question < self.config.min_time_between_questions:
                logger.debug(f"Skipping question: too soon since last "
                             f"({since_question:.1f}s < {self.config.min_time_between_questions}s)")
                return False

        self._prune_question_timestamps(now)
        if len(self.question_timestamps) >= self.config.max_questions_per_minute:
            logger.debug(f"Skipping question: rate limit reached "
                         f"({len(self.question_timestamps)}/{self.config.max_questions_per_minute} per minute)")
            return False

        if consecutive_errors >= STUCK_ERROR_COUNT:
            logger.debug("Asking question: student appears stuck")
            return True

        if is_strategic_moment and self.config.always_ask_on_strategic_moment:
            logger.debug("Asking question: strategic moment detected")
            return True

        if is_correct_step:
            should_ask = self.random_source() < self.config.strategic_question_probability
            logger.debug(f"{'Asking' if should_ask else 'Skipping'} question: "
                         f"random chance ({self.config.strategic_question_probability})")
            return should_ask

        return False

    def record_question(self, question: str, expects_response: bool = False) -> None:
        """Record that a question was surfaced to the student."""
        now = self.clock.now()
        self.last_question_time = now
        self.current_question = question
        self.is_waiting_for_response = expects_response
        self.question_timestamps.append(now)
        self._prune_question_timestamps(now)
        logger.debug(f"Question recorded. {len(self.question_timestamps)}/"
                     f"{self.config.max_questions_per_minute} in last minute")

    def should_respond_to_check_in(self, inactivity_duration: float, check_in_level: int) -> bool:
        """Only the first and third inactivity check-ins get a response."""
        if not self.config.check_in_on_inactivity:
            return False
        return check_in_level in CHECK_IN_RESPONSE_LEVELS

    def get_state(self) -> DialogueState:
        return DialogueState(
            conversation_state=self.conversation_state,
            last_question_time=self.last_question_time,
            last_speech_end_time=self.last_speech_end_time,
            is_waiting_for_response=self.is_waiting_for_response,
            questions_asked_in_last_minute=len(self.question_timestamps),
            current_question=self.current_question
        )

    def get_config(self) -> DialogueConfig:
        return self.config

    def reset(self) -> None:
        """Return to idle and clear all timers (a new problem is starting)."""
        self.conversation_state = ConversationState.IDLE
        self.last_question_time = None
        self.last_speech_end_time = None
        self.is_waiting_for_response = False
        self.current_question = None
        self.question_timestamps = []
        logger.info("Dialogue gate reset")

    def _prune_question_timestamps(self, now: float) -> None:
        cutoff = now - QUESTION_RATE_WINDOW
        self.question_timestamps = [t for t in self.question_timestamps if t > cutoff]
