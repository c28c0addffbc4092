from .models import (
    Difficulty, DIFFICULTY_LEVELS, DialogueMode, ConversationState,
    DialogueConfig, DialogueState, CheckIn,
    ProblemAttempt, MasteryLevels, MasteryState, MasteryThresholds
)
from .interfaces import Clock, Storage
from .utils import SystemClock, clamp, parse_timestamp
from .dialogue import DialogueGate
from .mastery import MasteryEngine, load_mastery_state, save_mastery_state
from .inactivity import InactivityTracker

__all__ = [
    'Difficulty', 'DIFFICULTY_LEVELS', 'DialogueMode', 'ConversationState',
    'DialogueConfig', 'DialogueState', 'CheckIn',
    'ProblemAttempt', 'MasteryLevels', 'MasteryState', 'MasteryThresholds',
    'Clock', 'Storage',
    'SystemClock', 'clamp', 'parse_timestamp',
    'DialogueGate',
    'MasteryEngine', 'load_mastery_state', 'save_mastery_state',
    'InactivityTracker'
]
