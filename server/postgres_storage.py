"""PostgreSQL storage implementation."""

import json
import logging
import os

import psycopg2
from psycopg2.extras import RealDictCursor

from core.interfaces import Storage

logger = logging.getLogger(__name__)


class PostgresStorage(Storage):
    """PostgreSQL-based storage implementation."""

    def __init__(self, config_file: str = None, db_url: str = None):
        self.config_file = os.path.expanduser(config_file or '~/.config/tutor-policy/config.json')
        self.db_url = db_url or os.environ.get(
            'DATABASE_URL',
            'postgresql://localhost:5432/tutor_policy'
        )
        self._conn = None
        self._initialized = False

    @property
    def conn(self):
        """Lazy connection initialization."""
        if self._conn is None or self._conn.closed:
            self._conn = psycopg2.connect(self.db_url)
            if not self._initialized:
                self._init_db()
                self._initialized = True
        return self._conn

    def _init_db(self):
        """Create tables if they don't exist."""
        with self._conn.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS mastery_state (
                    user_id VARCHAR(255) PRIMARY KEY,
                    state JSONB NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id SERIAL PRIMARY KEY,
                    timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    event VARCHAR(50) NOT NULL,
                    user_id VARCHAR(255) NOT NULL,
                    session_id VARCHAR(64),
                    data JSONB
                )
            """)
            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_events_user_id ON events(user_id)
            """)
            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_events_session ON events(session_id)
            """)
        self._conn.commit()

    def _rollback(self):
        """Roll back the open transaction, if there is a connection to roll back."""
        if self._conn and not self._conn.closed:
            try:
                self._conn.rollback()
            except psycopg2.Error as e:
                logger.error(f"Error rolling back: {e}")

    def close(self):
        """Close the database connection."""
        if self._conn and not self._conn.closed:
            self._conn.close()

    def load_config(self) -> dict:
        if not os.path.exists(self.config_file):
            raise FileNotFoundError(f"Config file not found at {self.config_file}")
        with open(self.config_file, 'r') as f:
            return json.load(f)

    def load_mastery_state(self, user_id: str = "default") -> dict | None:
        try:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    "SELECT state FROM mastery_state WHERE user_id = %s",
                    (user_id,)
                )
                row = cur.fetchone()
                if row:
                    return row['state']
                return None
        except psycopg2.Error as e:
            logger.error(f"Error loading mastery state: {e}")
            return None

    def save_mastery_state(self, state: dict, user_id: str = "default") -> None:
        try:
            with self.conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO mastery_state (user_id, state, updated_at)
                    VALUES (%s, %s, CURRENT_TIMESTAMP)
                    ON CONFLICT (user_id)
                    DO UPDATE SET state = EXCLUDED.state, updated_at = CURRENT_TIMESTAMP
                """, (user_id, json.dumps(state)))
            self.conn.commit()
        except psycopg2.Error as e:
            logger.error(f"Error saving mastery state: {e}")
            self._rollback()
            raise

    def delete_mastery_state(self, user_id: str = "default") -> bool:
        try:
            with self.conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM mastery_state WHERE user_id = %s",
                    (user_id,)
                )
                deleted = cur.rowcount > 0
            self.conn.commit()
            return deleted
        except psycopg2.Error as e:
            logger.error(f"Error deleting mastery state: {e}")
            self._rollback()
            return False

    def log_event(self, event: str, user_id: str, session_id: str = None, **data) -> None:
        """Log an event to the database."""
        try:
            with self.conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO events (event, user_id, session_id, data)
                    VALUES (%s, %s, %s, %s)
                """, (event, user_id, session_id, json.dumps(data) if data else None))
            self.conn.commit()
        except psycopg2.Error as e:
            logger.error(f"Error logging event: {e}")
            self._rollback()

    def get_session_events(self, session_id: str, limit: int = 100) -> list[dict]:
        """Get recent events for a session, newest first."""
        try:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT * FROM events
                    WHERE session_id = %s
                    ORDER BY timestamp DESC LIMIT %s
                """, (session_id, limit))
                return [dict(row) for row in cur.fetchall()]
        except psycopg2.Error as e:
            logger.error(f"Error getting events: {e}")
            return []
