"""REST API client for the tutor policy server."""

import requests


class TutorAPIClient:
    """Client for communicating with the tutor policy REST API."""

    def __init__(self, base_url: str = "http://localhost:8000", user_id: str = "default"):
        self.base_url = base_url.rstrip('/')
        self.user_id = user_id
        self.session = requests.Session()

    def _get(self, endpoint: str, params: dict = None) -> dict:
        """Make a GET request."""
        response = self.session.get(f"{self.base_url}{endpoint}", params=params or {})
        response.raise_for_status()
        return response.json()

    def _post(self, endpoint: str, data: dict = None) -> dict:
        """Make a POST request."""
        response = self.session.post(f"{self.base_url}{endpoint}", json=data or {})
        response.raise_for_status()
        return response.json()

    def _delete(self, endpoint: str) -> dict:
        """Make a DELETE request."""
        response = self.session.delete(f"{self.base_url}{endpoint}")
        response.raise_for_status()
        return response.json()

    def start_session(self) -> dict:
        """Open a session for this client's user."""
        return self._post("/api/sessions", {'user_id': self.user_id})

    def end_session(self, session_id: str) -> dict:
        return self._delete(f"/api/sessions/{session_id}")

    def get_mastery(self, session_id: str) -> dict:
        return self._get(f"/api/sessions/{session_id}/mastery")

    def submit_attempt(self, session_id: str, attempt: dict) -> dict:
        """Submit a completed problem attempt."""
        return self._post(f"/api/sessions/{session_id}/attempts", attempt)

    def reset_mastery(self) -> dict:
        """Clear this user's saved mastery history."""
        return self._delete(f"/api/users/{self.user_id}/mastery")
