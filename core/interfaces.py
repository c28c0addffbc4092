"""Abstract base classes for dependency injection."""

from abc import ABC, abstractmethod


class Clock(ABC):
    """Abstract source of the current instant."""

    @abstractmethod
    def now(self) -> float:
        """Return the current monotonic time in seconds."""
        pass


class Storage(ABC):
    """Abstract base class for config and mastery snapshot storage."""

    @abstractmethod
    def load_config(self) -> dict:
        """Load configuration. Returns config dict."""
        pass

    @abstractmethod
    def load_mastery_state(self, user_id: str = "default") -> dict | None:
        """Load the mastery snapshot for a user. Returns a dict or None if not found."""
        pass

    @abstractmethod
    def save_mastery_state(self, state: dict, user_id: str = "default") -> None:
        """Save the mastery snapshot for a user."""
        pass

    @abstractmethod
    def delete_mastery_state(self, user_id: str = "default") -> bool:
        """Remove a user's mastery snapshot. Returns True if one existed."""
        pass
