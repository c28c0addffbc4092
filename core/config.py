"""Configuration constants for the tutoring policy engine."""

# Dialogue timing (seconds)
MIN_TIME_BETWEEN_QUESTIONS = 15.0   # Prevent rapid-fire questions
MAX_QUESTIONS_PER_MINUTE = 3        # Don't overwhelm the student
SPEAKING_COOLDOWN = 2.0             # Wait after speech output finishes
QUESTION_RATE_WINDOW = 60.0         # Trailing window for the per-minute cap

# Dialogue strategy
STRATEGIC_QUESTION_PROBABILITY = 0.4  # Chance of asking at a plain correct step
ALWAYS_ASK_ON_STRATEGIC_MOMENT = True
CHECK_IN_ON_INACTIVITY = True
STUCK_ERROR_COUNT = 2                 # Consecutive errors that mark a student as stuck
CHECK_IN_RESPONSE_LEVELS = (1, 3)     # Level 2 is skipped on purpose to avoid nagging

# Inactivity check-ins (seconds since last activity)
CHECK_IN_INTERVALS = (30.0, 60.0, 90.0)

# Mastery advancement
ADVANCE_THRESHOLD = 0.75           # Mastery needed to advance
CONSECUTIVE_SOLVED_TO_ADVANCE = 3  # Trailing solved attempts needed to advance
MAX_ATTEMPTS_WINDOW = 10           # Most recent attempts per tier that feed mastery
HISTORY_WINDOW_MULTIPLIER = 3      # Stored history = MAX_ATTEMPTS_WINDOW * this

# Mastery scoring
HINT_PENALTY_PER_HINT = 0.1
HINT_PENALTY_CAP = 0.3
INCORRECT_PENALTY_PER_ATTEMPT = 0.05
INCORRECT_PENALTY_CAP = 0.2

# Regression criteria
STRUGGLING_THRESHOLD = 0.5   # Below this the current tier is "struggling"
FALLBACK_THRESHOLD = 0.6     # Lower tier mastery needed to step back down

# Sessions
SESSION_IDLE_TIMEOUT = 1800.0  # Seconds without a request before a session is dropped
