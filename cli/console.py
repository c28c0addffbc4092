"""Console output for the tutor policy CLI."""

from core.config import ADVANCE_THRESHOLD
from core.models import DIFFICULTY_LEVELS
from cli.api_client import TutorAPIClient


class ConsoleUI:
    """Console front end over the tutor policy API."""

    def __init__(self, client: TutorAPIClient):
        self.client = client

    def print_mastery(self, mastery: dict, advance_threshold: float = ADVANCE_THRESHOLD):
        """Print mastery levels and the current recommendation.

        Tiers at or above the advance threshold the server uses are starred.
        """
        print('\n' + '=' * 50)
        print(f'MASTERY SUMMARY ({self.client.user_id})')
        print('=' * 50)
        levels = mastery['mastery_levels']
        for difficulty in DIFFICULTY_LEVELS:
            score = levels[difficulty.value]
            bar = '#' * round(score * 20)
            marker = ' *' if score >= advance_threshold else ''
            print(f'  {difficulty.value:<8} {bar:<20} {score:.2f}{marker}')
        print(f'\nAttempts on record: {len(mastery["recent_attempts"])}')
        print(f'Solved in a row: {mastery["consecutive_solved"]}')
        print(f'Recommended difficulty: {mastery["recommended_difficulty"]}')
        if mastery['should_advance']:
            print('\n*** Ready to advance! ***')
        print('=' * 50)

    def show_status(self):
        session = self.client.start_session()
        try:
            self.print_mastery(session['mastery'], session['thresholds']['advance_threshold'])
        finally:
            self.client.end_session(session['session_id'])

    def submit_attempt(self, attempt: dict):
        session = self.client.start_session()
        try:
            result = self.client.submit_attempt(session['session_id'], attempt)
        finally:
            self.client.end_session(session['session_id'])
        self.print_mastery(result['mastery'], session['thresholds']['advance_threshold'])
        if not result['saved']:
            print('Warning: the server could not save this attempt.')

    def reset(self):
        result = self.client.reset_mastery()
        if result['deleted']:
            print(f'Mastery history cleared for {self.client.user_id}.')
        else:
            print(f'No saved mastery history for {self.client.user_id}.')
