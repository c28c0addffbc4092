"""File-based storage implementation."""

import json
import logging
import os

from core.interfaces import Storage

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = '~/.config/tutor-policy/config.json'


class FileStorage(Storage):
    """Stores one JSON mastery snapshot per user in a state directory."""

    def __init__(self, config_file: str = None, state_dir: str = None):
        self.config_file = os.path.expanduser(config_file or DEFAULT_CONFIG_FILE)
        # Project root is one level up from server/
        project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        self.state_dir = state_dir or project_root

    def _get_state_file(self, user_id: str) -> str:
        """Get state file path for a user."""
        if user_id == "default":
            return os.path.join(self.state_dir, 'mastery_state.json')
        return os.path.join(self.state_dir, f'mastery_state_{user_id}.json')

    def load_config(self) -> dict:
        if not os.path.exists(self.config_file):
            raise FileNotFoundError(f"Config file not found at {self.config_file}")
        with open(self.config_file, 'r') as f:
            return json.load(f)

    def load_mastery_state(self, user_id: str = "default") -> dict | None:
        state_file = self._get_state_file(user_id)
        if not os.path.exists(state_file):
            return None
        try:
            with open(state_file, 'r') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error reading {state_file}: {e}")
            return None

    def save_mastery_state(self, state: dict, user_id: str = "default") -> None:
        os.makedirs(self.state_dir, exist_ok=True)
        state_file = self._get_state_file(user_id)
        # Write then rename so a failed write never truncates the previous snapshot
        tmp_file = f"{state_file}.tmp"
        with open(tmp_file, 'w') as f:
            json.dump(state, f, indent=2)
        os.replace(tmp_file, state_file)

    def delete_mastery_state(self, user_id: str = "default") -> bool:
        state_file = self._get_state_file(user_id)
        if os.path.exists(state_file):
            os.remove(state_file)
            return True
        return False
