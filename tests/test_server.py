"""Tests for storage backends, sessions and the HTTP API."""

import json
import os
import tempfile
import unittest
from unittest.mock import patch

import psycopg2
from fastapi.testclient import TestClient

import server.app as server_app
from core.models import (
    ConversationState, DialogueConfig, DialogueMode, MasteryState, MasteryThresholds
)
from server.file_storage import FileStorage
from server.postgres_storage import PostgresStorage
from server.sessions import SessionRegistry, TutoringSession

from test_core import FakeClock, MockStorage, SequenceRandom, make_attempt, make_attempts


class EventLogStorage(MockStorage):
    """Mock storage with an event log that can be made to fail."""

    def __init__(self):
        super().__init__()
        self.events = []
        self.fail_log = False

    def log_event(self, event: str, user_id: str, session_id: str = None, **data) -> None:
        if self.fail_log:
            raise ConnectionError("event log unavailable")
        self.events.append((event, user_id, session_id, data))


class TestFileStorage(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.config_file = os.path.join(self.tmp.name, 'config.json')
        self.storage = FileStorage(config_file=self.config_file, state_dir=self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def test_load_missing_state(self):
        self.assertIsNone(self.storage.load_mastery_state("ana"))

    def test_save_and_load_state(self):
        self.storage.save_mastery_state({'consecutive_solved': 2}, "ana")
        self.assertEqual(self.storage.load_mastery_state("ana"), {'consecutive_solved': 2})
        self.assertTrue(os.path.exists(os.path.join(self.tmp.name, 'mastery_state_ana.json')))

    def test_default_user_file(self):
        self.storage.save_mastery_state({'consecutive_solved': 1})
        self.assertTrue(os.path.exists(os.path.join(self.tmp.name, 'mastery_state.json')))

    def test_corrupt_state_returns_none(self):
        with open(os.path.join(self.tmp.name, 'mastery_state_ana.json'), 'w') as f:
            f.write('{not json')
        self.assertIsNone(self.storage.load_mastery_state("ana"))

    def test_delete_state(self):
        self.storage.save_mastery_state({}, "ana")
        self.assertTrue(self.storage.delete_mastery_state("ana"))
        self.assertFalse(self.storage.delete_mastery_state("ana"))
        self.assertIsNone(self.storage.load_mastery_state("ana"))

    def test_load_config_missing_raises(self):
        with self.assertRaises(FileNotFoundError):
            self.storage.load_config()

    def test_load_config(self):
        with open(self.config_file, 'w') as f:
            json.dump({'dialogue': {'mode': 'silent'}}, f)
        self.assertEqual(self.storage.load_config(), {'dialogue': {'mode': 'silent'}})


class TestSessions(unittest.TestCase):

    def setUp(self):
        self.storage = MockStorage()
        self.clock = FakeClock()
        self.registry = SessionRegistry(self.storage, clock=self.clock, random_source=SequenceRandom([0.0] * 5))

    def test_sessions_are_isolated(self):
        first = self.registry.create("ana")
        second = self.registry.create("ben")
        self.assertIsNot(first.dialogue, second.dialogue)
        self.assertIsNot(first.mastery, second.mastery)
        first.dialogue.on_speech_start()
        self.assertEqual(second.dialogue.get_state().conversation_state, ConversationState.IDLE)
        self.assertEqual(len(self.registry), 2)

    def test_create_loads_saved_state(self):
        state = MasteryState(recent_attempts=tuple(make_attempts(2)), consecutive_solved=2)
        self.storage.states["ana"] = state.to_dict()
        session = self.registry.create("ana")
        self.assertEqual(session.mastery_state, state)

    def test_create_falls_back_when_load_fails(self):
        self.storage.fail_load = True
        session = self.registry.create("ana")
        self.assertEqual(session.mastery_state, MasteryState.default())

    def test_create_applies_overrides(self):
        session = self.registry.create("ana", dialogue_overrides={'mode': 'silent'},
                                       threshold_overrides={'max_attempts_window': 4})
        self.assertEqual(session.dialogue.get_config().mode, DialogueMode.SILENT)
        self.assertEqual(session.mastery.thresholds.max_attempts_window, 4)

    def test_record_attempt_saves(self):
        session = self.registry.create("ana")
        self.assertTrue(session.record_attempt(make_attempt()))
        self.assertEqual(self.storage.save_calls[-1][0], "ana")
        self.assertEqual(len(session.mastery_state.recent_attempts), 1)

    def test_failed_save_keeps_memory_state(self):
        session = self.registry.create("ana")
        session.record_attempt(make_attempt(index=0))
        self.storage.fail_save = True
        self.assertFalse(session.record_attempt(make_attempt(index=1)))
        self.assertEqual(len(session.mastery_state.recent_attempts), 2)
        self.assertEqual(session.mastery_state.consecutive_solved, 2)

    def test_start_problem_resets_gate(self):
        session = self.registry.create("ana")
        session.dialogue.record_question("Q1", expects_response=True)
        session.start_problem()
        self.assertEqual(session.dialogue.get_state().conversation_state, ConversationState.IDLE)
        self.assertIsNone(session.dialogue.get_state().last_question_time)

    def test_poll_inactivity_pairs_check_in_with_gate(self):
        session = self.registry.create("ana")
        self.clock.advance(31.0)
        check_in, respond = session.poll_inactivity()
        self.assertEqual(check_in.level, 1)
        self.assertTrue(respond)
        self.clock.advance(30.0)
        check_in, respond = session.poll_inactivity()
        self.assertEqual(check_in.level, 2)
        self.assertFalse(respond)
        self.assertEqual(session.poll_inactivity(), (None, False))

    def test_dispose(self):
        session = self.registry.create("ana")
        self.assertTrue(self.registry.dispose(session.session_id))
        self.assertIsNone(self.registry.get(session.session_id))
        self.assertFalse(self.registry.dispose(session.session_id))

    def test_idle_sessions_expire(self):
        idle = self.registry.create("ana")
        busy = self.registry.create("ben")
        self.clock.advance(1000.0)
        self.assertIs(self.registry.get(busy.session_id), busy)
        self.clock.advance(900.0)
        self.assertIsNone(self.registry.get(idle.session_id))
        self.assertIs(self.registry.get(busy.session_id), busy)
        self.assertEqual(len(self.registry), 1)

    def test_idle_expiry_can_be_disabled(self):
        registry = SessionRegistry(self.storage, clock=self.clock, idle_timeout=None)
        session = registry.create("ana")
        self.clock.advance(100000.0)
        self.assertEqual(registry.expire_idle(), 0)
        self.assertIs(registry.get(session.session_id), session)

    def test_events_are_logged(self):
        storage = EventLogStorage()
        registry = SessionRegistry(storage, clock=self.clock)
        session = registry.create("ana")
        session.record_attempt(make_attempt())
        events = [e[0] for e in storage.events]
        self.assertEqual(events, ['session.start', 'mastery.attempt'])
        self.assertTrue(storage.events[-1][3]['saved'])

    def test_failing_event_log_does_not_break_session(self):
        storage = EventLogStorage()
        storage.fail_log = True
        storage.fail_load = True
        storage.fail_save = True
        registry = SessionRegistry(storage, clock=self.clock)
        session = registry.create("ana")
        self.assertEqual(session.mastery_state, MasteryState.default())
        self.assertFalse(session.record_attempt(make_attempt()))
        self.assertEqual(len(session.mastery_state.recent_attempts), 1)
        session.start_problem()
        self.assertTrue(registry.dispose(session.session_id))


class TestPostgresStorageUnreachable(unittest.TestCase):
    """A refused connection must not escape from the error handlers."""

    def setUp(self):
        patcher = patch('server.postgres_storage.psycopg2.connect',
                        side_effect=psycopg2.OperationalError("connection refused"))
        self.connect = patcher.start()
        self.addCleanup(patcher.stop)
        self.storage = PostgresStorage(db_url='postgresql://127.0.0.1:1/none')

    def test_load_returns_none(self):
        self.assertIsNone(self.storage.load_mastery_state("ana"))

    def test_save_raises_connection_error(self):
        with self.assertRaises(psycopg2.OperationalError):
            self.storage.save_mastery_state(MasteryState.default().to_dict(), "ana")
        self.assertEqual(self.connect.call_count, 1)

    def test_delete_returns_false(self):
        self.assertFalse(self.storage.delete_mastery_state("ana"))

    def test_log_event_does_not_raise(self):
        self.storage.log_event('session.start', 'ana', 's1')
        self.assertEqual(self.connect.call_count, 1)

    def test_session_reports_failed_save(self):
        session = TutoringSession('s1', 'ana', self.storage, clock=FakeClock())
        self.assertEqual(session.mastery_state, MasteryState.default())
        self.assertFalse(session.record_attempt(make_attempt()))
        self.assertEqual(len(session.mastery_state.recent_attempts), 1)

    def test_create_session_over_http(self):
        server_app.storage = self.storage
        server_app.sessions = SessionRegistry(self.storage, clock=FakeClock())
        client = TestClient(server_app.app)
        response = client.post("/api/sessions", json={'user_id': 'ana'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['mastery'], MasteryState.default().to_dict())
        session_id = response.json()['session_id']
        response = client.post(f"/api/sessions/{session_id}/attempts", json={
            'problem_id': 'p1', 'difficulty': 'easy', 'solved': True
        })
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()['saved'])


class TestBuildRegistry(unittest.TestCase):

    def test_defaults_when_config_missing(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        storage = FileStorage(config_file=os.path.join(tmp.name, 'missing.json'), state_dir=tmp.name)
        registry = server_app.build_registry(storage)
        self.assertEqual(registry.dialogue_defaults, DialogueConfig())
        self.assertEqual(registry.threshold_defaults, MasteryThresholds())

    def test_config_sections(self):
        storage = MockStorage()
        storage.config = {
            'dialogue': {'mode': 'hints_only'},
            'mastery': {'advance_threshold': 0.9},
            'inactivity': {'check_in_intervals': [10, 20]}
        }
        registry = server_app.build_registry(storage)
        self.assertEqual(registry.dialogue_defaults.mode, DialogueMode.HINTS_ONLY)
        self.assertEqual(registry.threshold_defaults.advance_threshold, 0.9)
        self.assertEqual(registry.check_in_intervals, (10, 20))


class TestAPI(unittest.TestCase):

    def setUp(self):
        self.storage = MockStorage()
        self.clock = FakeClock()
        server_app.storage = self.storage
        server_app.sessions = SessionRegistry(self.storage, clock=self.clock,
                                              random_source=SequenceRandom([0.0] * 10))
        self.client = TestClient(server_app.app)

    def create_session(self, **body) -> str:
        response = self.client.post("/api/sessions", json={'user_id': 'ana', **body})
        self.assertEqual(response.status_code, 200)
        return response.json()['session_id']

    def test_create_session(self):
        response = self.client.post("/api/sessions", json={'user_id': 'ana'})
        data = response.json()
        self.assertEqual(data['user_id'], 'ana')
        self.assertEqual(data['dialogue']['conversation_state'], 'idle')
        self.assertEqual(data['mastery']['recommended_difficulty'], 'easy')
        self.assertEqual(data['config']['mode'], 'conversational')

    def test_unknown_session_is_404(self):
        self.assertEqual(self.client.get("/api/sessions/nope/mastery").status_code, 404)
        self.assertEqual(self.client.delete("/api/sessions/nope").status_code, 404)

    def test_event_flow(self):
        session_id = self.create_session()
        response = self.client.post(f"/api/sessions/{session_id}/events/activity")
        self.assertEqual(response.json()['dialogue']['conversation_state'], 'working')
        self.client.post(f"/api/sessions/{session_id}/events/speech-start")
        response = self.client.post(f"/api/sessions/{session_id}/events/activity")
        self.assertEqual(response.json()['dialogue']['conversation_state'], 'speaking')
        response = self.client.post(f"/api/sessions/{session_id}/events/speech-end")
        self.assertEqual(response.json()['dialogue']['conversation_state'], 'working')

    def test_unknown_event_is_422(self):
        session_id = self.create_session()
        self.assertEqual(self.client.post(f"/api/sessions/{session_id}/events/shout").status_code, 422)

    def test_should_ask_and_record_question(self):
        session_id = self.create_session()
        response = self.client.post(f"/api/sessions/{session_id}/should-ask",
                                    json={'is_strategic_moment': True})
        self.assertTrue(response.json()['ask'])
        self.client.post(f"/api/sessions/{session_id}/questions",
                         json={'question': 'What comes next?', 'expects_response': True})
        response = self.client.post(f"/api/sessions/{session_id}/should-ask",
                                    json={'consecutive_errors': 3})
        self.assertFalse(response.json()['ask'])
        response = self.client.post(f"/api/sessions/{session_id}/events/response", json={'text': 'add'})
        self.assertFalse(response.json()['dialogue']['is_waiting_for_response'])

    def test_check_in(self):
        session_id = self.create_session()
        response = self.client.post(f"/api/sessions/{session_id}/check-in",
                                    json={'inactivity_duration': 60, 'check_in_level': 2})
        self.assertFalse(response.json()['respond'])
        response = self.client.post(f"/api/sessions/{session_id}/check-in",
                                    json={'inactivity_duration': 90, 'check_in_level': 3})
        self.assertTrue(response.json()['respond'])

    def test_inactivity_poll(self):
        session_id = self.create_session()
        self.clock.advance(35.0)
        data = self.client.get(f"/api/sessions/{session_id}/inactivity").json()
        self.assertTrue(data['triggered'])
        self.assertTrue(data['should_respond'])
        self.assertEqual(data['check_in_level'], 1)
        data = self.client.get(f"/api/sessions/{session_id}/inactivity").json()
        self.assertFalse(data['triggered'])

    def test_update_config(self):
        session_id = self.create_session()
        response = self.client.patch(f"/api/sessions/{session_id}/dialogue/config", json={'mode': 'silent'})
        self.assertEqual(response.json()['config']['mode'], 'silent')
        self.assertEqual(response.json()['config']['max_questions_per_minute'], 3)
        response = self.client.post(f"/api/sessions/{session_id}/should-ask",
                                    json={'consecutive_errors': 5})
        self.assertFalse(response.json()['ask'])

    def test_update_config_rejects_unknown_option(self):
        session_id = self.create_session()
        response = self.client.patch(f"/api/sessions/{session_id}/dialogue/config", json={'volume': 11})
        self.assertEqual(response.status_code, 422)

    def test_record_attempts_and_advance(self):
        session_id = self.create_session()
        for i in range(3):
            response = self.client.post(f"/api/sessions/{session_id}/attempts", json={
                'problem_id': f'p{i}', 'difficulty': 'easy', 'solved': True,
                'time_spent': 40, 'hints_used': 0, 'incorrect_attempts': 0
            })
            self.assertTrue(response.json()['saved'])
        mastery = response.json()['mastery']
        self.assertEqual(mastery['mastery_levels']['easy'], 1.0)
        self.assertTrue(mastery['should_advance'])
        self.assertEqual(mastery['recommended_difficulty'], 'medium')
        self.assertEqual(len(self.storage.states['ana']['recent_attempts']), 3)

    def test_attempt_save_failure_is_reported(self):
        session_id = self.create_session()
        self.storage.fail_save = True
        response = self.client.post(f"/api/sessions/{session_id}/attempts", json={
            'problem_id': 'p1', 'difficulty': 'medium', 'solved': False, 'hints_used': 2
        })
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()['saved'])
        mastery = self.client.get(f"/api/sessions/{session_id}/mastery").json()['mastery']
        self.assertEqual(len(mastery['recent_attempts']), 1)

    def test_invalid_attempt_is_422(self):
        session_id = self.create_session()
        response = self.client.post(f"/api/sessions/{session_id}/attempts", json={
            'problem_id': 'p1', 'difficulty': 'extreme', 'solved': True
        })
        self.assertEqual(response.status_code, 422)
        response = self.client.post(f"/api/sessions/{session_id}/attempts", json={
            'problem_id': 'p1', 'difficulty': 'easy', 'solved': True, 'hints_used': -1
        })
        self.assertEqual(response.status_code, 422)

    def test_reset_mastery(self):
        session_id = self.create_session()
        self.client.post(f"/api/sessions/{session_id}/attempts", json={
            'problem_id': 'p1', 'difficulty': 'easy', 'solved': True
        })
        response = self.client.delete("/api/users/ana/mastery")
        self.assertTrue(response.json()['deleted'])
        self.assertNotIn('ana', self.storage.states)
        mastery = self.client.get(f"/api/sessions/{session_id}/mastery").json()['mastery']
        self.assertEqual(mastery, MasteryState.default().to_dict())

    def test_start_problem(self):
        session_id = self.create_session()
        self.client.post(f"/api/sessions/{session_id}/events/activity")
        response = self.client.post(f"/api/sessions/{session_id}/problem")
        self.assertEqual(response.json()['dialogue']['conversation_state'], 'idle')

    def test_events_unavailable_without_event_log(self):
        session_id = self.create_session()
        response = self.client.get(f"/api/sessions/{session_id}/events")
        self.assertIn('error', response.json())


if __name__ == '__main__':
    unittest.main()
