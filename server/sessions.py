"""Per-student tutoring sessions owning their own gate and engine."""

import logging
import uuid
from typing import Callable, Optional, Sequence

from core.config import CHECK_IN_INTERVALS, SESSION_IDLE_TIMEOUT
from core.dialogue import DialogueGate
from core.inactivity import InactivityTracker
from core.interfaces import Clock, Storage
from core.mastery import MasteryEngine, load_mastery_state, save_mastery_state
from core.models import CheckIn, DialogueConfig, MasteryState, MasteryThresholds, ProblemAttempt
from core.utils import SystemClock

logger = logging.getLogger(__name__)


class TutoringSession:
    """One student solving one problem at a time.

    The session is the only owner of its DialogueGate, MasteryEngine and
    InactivityTracker. Callers must serialize calls on a session.
    """

    def __init__(self, session_id: str, user_id: str, storage: Storage,
                 dialogue_config: DialogueConfig = None, thresholds: MasteryThresholds = None,
                 check_in_intervals: Sequence[float] = CHECK_IN_INTERVALS,
                 clock: Clock = None, random_source: Callable[[], float] = None):
        self.session_id = session_id
        self.user_id = user_id
        self.storage = storage
        clock = clock or SystemClock()
        self.dialogue = DialogueGate(dialogue_config, clock=clock, random_source=random_source)
        self.mastery = MasteryEngine(thresholds)
        self.inactivity = InactivityTracker(check_in_intervals, clock=clock)
        self.last_used = clock.now()
        self.mastery_state = load_mastery_state(storage, user_id)

    def log_event(self, event: str, **data) -> None:
        """Record an event if the storage keeps an event log. Failures are logged, never raised."""
        if not hasattr(self.storage, 'log_event'):
            return
        try:
            self.storage.log_event(event, self.user_id, self.session_id, **data)
        except Exception as e:
            logger.error(f"Failed to log {event} for session {self.session_id}: {type(e).__name__}: {e}")

    def start_problem(self) -> None:
        """A new problem starts: clear dialogue timers and the inactivity timer."""
        self.dialogue.reset()
        self.inactivity.record_activity()
        self.log_event('problem.start')

    def student_activity(self) -> None:
        self.dialogue.on_student_activity()
        self.inactivity.record_activity()

    def poll_inactivity(self) -> tuple[Optional[CheckIn], bool]:
        """Returns (new check-in or None, whether the tutor should respond to it)."""
        check_in = self.inactivity.poll()
        if check_in is None:
            return None, False
        respond = self.dialogue.should_respond_to_check_in(self.inactivity.inactive_duration, check_in.level)
        self.log_event('inactivity.check_in', level=check_in.level, respond=respond)
        return check_in, respond

    def record_attempt(self, attempt: ProblemAttempt) -> bool:
        """Apply an attempt and persist the result. Returns False if the save failed.

        The in-memory state is updated before saving and kept regardless of the
        save outcome.
        """
        self.mastery_state = self.mastery.update_mastery_state(self.mastery_state, attempt)
        try:
            save_mastery_state(self.storage, self.mastery_state, self.user_id)
            saved = True
        except Exception as e:
            logger.error(f"Failed to save mastery state for {self.user_id}: {type(e).__name__}: {e}")
            saved = False
        self.log_event('mastery.attempt', problem_id=attempt.problem_id,
                       difficulty=attempt.difficulty.value, solved=attempt.solved,
                       recommended=self.mastery_state.recommended_difficulty.value, saved=saved)
        return saved

    def reset_mastery(self) -> None:
        """Forget the in-memory history; storage is cleared by the caller."""
        self.mastery_state = MasteryState.default()
        self.log_event('mastery.reset')


class SessionRegistry:
    """Creates, looks up and disposes tutoring sessions.

    Sessions untouched for ``idle_timeout`` seconds are dropped the next time
    the registry is used. Pass ``idle_timeout=None`` to keep them until disposed.
    """

    def __init__(self, storage: Storage, dialogue_defaults: DialogueConfig = None,
                 threshold_defaults: MasteryThresholds = None,
                 check_in_intervals: Sequence[float] = CHECK_IN_INTERVALS,
                 clock: Clock = None, random_source: Callable[[], float] = None,
                 idle_timeout: Optional[float] = SESSION_IDLE_TIMEOUT):
        self.storage = storage
        self.check_in_intervals = tuple(check_in_intervals)
        self.dialogue_defaults = dialogue_defaults or DialogueConfig()
        self.threshold_defaults = threshold_defaults or MasteryThresholds()
        self.clock = clock or SystemClock()
        self.random_source = random_source
        self.idle_timeout = idle_timeout
        self._sessions: dict[str, TutoringSession] = {}

    def create(self, user_id: str = "default", dialogue_overrides: dict = None,
               threshold_overrides: dict = None) -> TutoringSession:
        self.expire_idle()
        session_id = str(uuid.uuid4())[:8]
        session = TutoringSession(
            session_id, user_id, self.storage,
            dialogue_config=self.dialogue_defaults.merged(**(dialogue_overrides or {})),
            thresholds=self.threshold_defaults.merged(**(threshold_overrides or {})),
            check_in_intervals=self.check_in_intervals,
            clock=self.clock,
            random_source=self.random_source
        )
        self._sessions[session_id] = session
        logger.info(f"Session {session_id} started for {user_id}")
        session.log_event('session.start')
        return session

    def get(self, session_id: str) -> Optional[TutoringSession]:
        """Look up a live session and mark it as used."""
        self.expire_idle()
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_used = self.clock.now()
        return session

    def dispose(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.log_event('session.end')
        logger.info(f"Session {session_id} ended for {session.user_id}")
        return True

    def expire_idle(self) -> int:
        """Drop sessions idle for longer than the timeout. Returns how many were dropped."""
        if self.idle_timeout is None:
            return 0
        now = self.clock.now()
        expired = [sid for sid, s in self._sessions.items() if now - s.last_used >= self.idle_timeout]
        for session_id in expired:
            session = self._sessions.pop(session_id)
            session.log_event('session.expired')
            logger.info(f"Session {session_id} expired for {session.user_id}")
        return len(expired)

    def sessions_for_user(self, user_id: str) -> list[TutoringSession]:
        self.expire_idle()
        return [s for s in self._sessions.values() if s.user_id == user_id]

    def __len__(self) -> int:
        return len(self._sessions)
