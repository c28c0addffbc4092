"""FastAPI server driving tutoring sessions over HTTP."""

import logging
import os
from datetime import datetime
from enum import Enum
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from core.config import CHECK_IN_INTERVALS, SESSION_IDLE_TIMEOUT
from core.models import (
    Difficulty, DialogueMode, DialogueConfig, MasteryThresholds, ProblemAttempt
)
from server.file_storage import FileStorage
from server.postgres_storage import PostgresStorage
from server.sessions import SessionRegistry, TutoringSession

logger = logging.getLogger(__name__)


# Pydantic models for API
class DialogueConfigUpdate(BaseModel):
    model_config = ConfigDict(extra='forbid')

    mode: Optional[DialogueMode] = None
    min_time_between_questions: Optional[float] = Field(None, ge=0)
    max_questions_per_minute: Optional[int] = Field(None, ge=0)
    speaking_cooldown: Optional[float] = Field(None, ge=0)
    strategic_question_probability: Optional[float] = Field(None, ge=0, le=1)
    always_ask_on_strategic_moment: Optional[bool] = None
    check_in_on_inactivity: Optional[bool] = None


class ThresholdsUpdate(BaseModel):
    model_config = ConfigDict(extra='forbid')

    advance_threshold: Optional[float] = Field(None, ge=0, le=1)
    consecutive_solved_to_advance: Optional[int] = Field(None, ge=1)
    max_attempts_window: Optional[int] = Field(None, ge=1)


class CreateSessionRequest(BaseModel):
    user_id: str = "default"
    dialogue: Optional[DialogueConfigUpdate] = None
    mastery: Optional[ThresholdsUpdate] = None


class ShouldAskRequest(BaseModel):
    is_strategic_moment: bool = False
    is_correct_step: bool = False
    consecutive_errors: int = Field(0, ge=0)


class QuestionRequest(BaseModel):
    question: str
    expects_response: bool = False


class StudentResponseRequest(BaseModel):
    text: str = ""


class CheckInRequest(BaseModel):
    inactivity_duration: float = Field(ge=0)
    check_in_level: int = Field(ge=0)


class AttemptRequest(BaseModel):
    problem_id: str
    difficulty: Difficulty
    solved: bool
    time_spent: float = Field(0.0, ge=0)
    hints_used: int = Field(0, ge=0)
    incorrect_attempts: int = Field(0, ge=0)
    timestamp: Optional[datetime] = None


class DecisionResponse(BaseModel):
    ask: bool


class CheckInResponse(BaseModel):
    respond: bool


class InactivityResponse(BaseModel):
    inactive_duration: float
    is_inactive: bool
    check_in_level: int
    triggered: bool
    should_respond: bool


class SessionEvent(str, Enum):
    SPEECH_START = "speech-start"
    SPEECH_END = "speech-end"
    ACTIVITY = "activity"
    PAUSE = "pause"
    RESPONSE = "response"


# Global state, created on startup
storage = None
sessions: SessionRegistry = None


app = FastAPI(title="Tutor Policy API", description="Dialogue gating and mastery tracking for tutoring sessions")


def build_storage():
    """Pick a storage backend from the environment."""
    config_file = os.environ.get('TUTOR_CONFIG_FILE')
    if os.environ.get('TUTOR_STORAGE', 'file') == 'postgres':
        logger.info("Using PostgreSQL storage")
        return PostgresStorage(config_file=config_file)
    logger.info("Using file storage")
    return FileStorage(config_file=config_file, state_dir=os.environ.get('TUTOR_STATE_DIR'))


def build_registry(backend) -> SessionRegistry:
    """Create the session registry with deployment defaults from the config file."""
    try:
        config = backend.load_config()
    except FileNotFoundError:
        logger.info("No config file found, using built-in defaults")
        config = {}

    return SessionRegistry(
        backend,
        dialogue_defaults=DialogueConfig.from_dict(config.get('dialogue', {})),
        threshold_defaults=MasteryThresholds.from_dict(config.get('mastery', {})),
        check_in_intervals=config.get('inactivity', {}).get('check_in_intervals', CHECK_IN_INTERVALS),
        idle_timeout=config.get('sessions', {}).get('idle_timeout', SESSION_IDLE_TIMEOUT)
    )


@app.on_event("startup")
async def startup():
    """Initialize storage and the session registry on startup."""
    global storage, sessions
    storage = build_storage()
    sessions = build_registry(storage)


def get_session(session_id: str) -> TutoringSession:
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return session


def session_payload(session: TutoringSession) -> dict:
    return {
        "session_id": session.session_id,
        "user_id": session.user_id,
        "dialogue": session.dialogue.get_state().to_dict(),
        "config": session.dialogue.get_config().to_dict(),
        "thresholds": session.mastery.thresholds.to_dict(),
        "mastery": session.mastery_state.to_dict()
    }


# Session lifecycle
@app.post("/api/sessions")
async def create_session(request: CreateSessionRequest):
    """Start a session, loading the student's saved mastery state."""
    session = sessions.create(
        request.user_id,
        dialogue_overrides=request.dialogue.model_dump(exclude_none=True) if request.dialogue else None,
        threshold_overrides=request.mastery.model_dump(exclude_none=True) if request.mastery else None
    )
    return session_payload(session)


@app.get("/api/sessions/{session_id}")
async def get_session_status(session_id: str):
    return session_payload(get_session(session_id))


@app.delete("/api/sessions/{session_id}")
async def end_session(session_id: str):
    if not sessions.dispose(session_id):
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return {"success": True}


@app.post("/api/sessions/{session_id}/problem")
async def start_problem(session_id: str):
    """A new problem starts: the dialogue gate is reset."""
    session = get_session(session_id)
    session.start_problem()
    return {"dialogue": session.dialogue.get_state().to_dict()}


# Dialogue gate
@app.post("/api/sessions/{session_id}/events/{event}")
async def post_event(session_id: str, event: SessionEvent, request: Optional[StudentResponseRequest] = None):
    session = get_session(session_id)
    if event == SessionEvent.SPEECH_START:
        session.dialogue.on_speech_start()
    elif event == SessionEvent.SPEECH_END:
        session.dialogue.on_speech_end()
    elif event == SessionEvent.ACTIVITY:
        session.student_activity()
    elif event == SessionEvent.PAUSE:
        session.dialogue.on_student_pause()
    elif event == SessionEvent.RESPONSE:
        session.dialogue.on_student_response(request.text if request else "")
        session.inactivity.record_activity()
    return {"dialogue": session.dialogue.get_state().to_dict()}


@app.post("/api/sessions/{session_id}/should-ask", response_model=DecisionResponse)
async def should_ask(session_id: str, request: ShouldAskRequest):
    session = get_session(session_id)
    ask = session.dialogue.should_ask_question(
        is_strategic_moment=request.is_strategic_moment,
        is_correct_step=request.is_correct_step,
        consecutive_errors=request.consecutive_errors
    )
    return DecisionResponse(ask=ask)


@app.post("/api/sessions/{session_id}/questions")
async def record_question(session_id: str, request: QuestionRequest):
    session = get_session(session_id)
    session.dialogue.record_question(request.question, request.expects_response)
    session.log_event('dialogue.question', expects_response=request.expects_response)
    return {"dialogue": session.dialogue.get_state().to_dict()}


@app.post("/api/sessions/{session_id}/check-in", response_model=CheckInResponse)
async def check_in(session_id: str, request: CheckInRequest):
    session = get_session(session_id)
    respond = session.dialogue.should_respond_to_check_in(request.inactivity_duration, request.check_in_level)
    return CheckInResponse(respond=respond)


@app.get("/api/sessions/{session_id}/inactivity", response_model=InactivityResponse)
async def poll_inactivity(session_id: str):
    """Poll the inactivity timer; reports each newly crossed check-in level once."""
    session = get_session(session_id)
    check_in, respond = session.poll_inactivity()
    return InactivityResponse(
        inactive_duration=session.inactivity.inactive_duration,
        is_inactive=session.inactivity.is_inactive,
        check_in_level=session.inactivity.check_in_level,
        triggered=check_in is not None,
        should_respond=respond
    )


@app.get("/api/sessions/{session_id}/dialogue")
async def get_dialogue(session_id: str):
    session = get_session(session_id)
    return {
        "state": session.dialogue.get_state().to_dict(),
        "config": session.dialogue.get_config().to_dict()
    }


@app.patch("/api/sessions/{session_id}/dialogue/config")
async def update_dialogue_config(session_id: str, request: DialogueConfigUpdate):
    session = get_session(session_id)
    config = session.dialogue.update_config(**request.model_dump(exclude_none=True))
    return {"config": config.to_dict()}


# Mastery engine
@app.post("/api/sessions/{session_id}/attempts")
async def record_attempt(session_id: str, request: AttemptRequest):
    """Feed a completed problem into the mastery engine and persist the result."""
    session = get_session(session_id)
    attempt = ProblemAttempt(
        problem_id=request.problem_id,
        difficulty=request.difficulty,
        solved=request.solved,
        time_spent=request.time_spent,
        hints_used=request.hints_used,
        incorrect_attempts=request.incorrect_attempts,
        timestamp=request.timestamp or datetime.now()
    )
    saved = session.record_attempt(attempt)
    return {"mastery": session.mastery_state.to_dict(), "saved": saved}


@app.get("/api/sessions/{session_id}/mastery")
async def get_mastery(session_id: str):
    return {"mastery": get_session(session_id).mastery_state.to_dict()}


@app.delete("/api/users/{user_id}/mastery")
async def reset_mastery(user_id: str):
    """Forget a student's mastery history, including any live sessions."""
    deleted = storage.delete_mastery_state(user_id)
    for session in sessions.sessions_for_user(user_id):
        session.reset_mastery()
    return {"success": True, "deleted": deleted}


@app.get("/api/sessions/{session_id}/events")
async def get_session_events(session_id: str, limit: int = 100):
    get_session(session_id)
    if not hasattr(storage, 'get_session_events'):
        return {"error": "Event logging not available with current storage"}
    return {"events": storage.get_session_events(session_id, limit)}
