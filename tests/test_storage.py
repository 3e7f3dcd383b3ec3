"""
Tests for the in-memory storage backend.
"""

import pytest

from utils.errors import StorageError
from utils.models import AgentDecision, CourseEnrollment, InterventionOutcome, UserProfile
from utils.storage import InMemoryStorage
from tests.conftest import make_entry


class TestEntries:

    def test_insert_assigns_id(self, storage):
        stored = storage.insert_entry(make_entry())
        assert stored.id is not None
        assert storage.list_entries('user-1') == [stored]

    def test_entries_are_scoped_per_user(self, storage):
        storage.insert_entry(make_entry(user_id='a'))
        storage.insert_entry(make_entry(user_id='b'))
        assert len(storage.list_entries('a')) == 1

    def test_limit(self, storage):
        for days_ago in range(4):
            storage.insert_entry(make_entry(days_ago=days_ago))
        newest = storage.list_entries('user-1', limit=2)
        assert len(newest) == 2
        assert newest[0].created_at > newest[1].created_at


class TestDecisions:

    def _decisions(self, count, user_id='user-1'):
        return [
            AgentDecision(agent=f'agent-{i}', confidence=0.5, reasoning='r', user_id=user_id)
            for i in range(count)
        ]

    def test_batch_insert_keeps_order_newest_batch_first(self, storage):
        first = storage.insert_decisions(self._decisions(2))
        second = storage.insert_decisions(self._decisions(3))

        listed = storage.list_decisions('user-1')

        assert len(listed) == 5
        assert all(d.id for d in listed)
        assert {d.id for d in listed[:3]} == {d.id for d in second}
        assert {d.id for d in listed[3:]} == {d.id for d in first}

    def test_pagination(self, storage):
        storage.insert_decisions(self._decisions(5))

        page = storage.list_decisions('user-1', limit=2, offset=1)
        everything = storage.list_decisions('user-1')

        assert [d.id for d in page] == [d.id for d in everything[1:3]]
        assert storage.list_decisions('user-1', limit=10, offset=10) == []

    @pytest.mark.parametrize('limit,offset', [(-1, 0), (10, -5)])
    def test_negative_paging_raises(self, storage, limit, offset):
        with pytest.raises(StorageError):
            storage.list_decisions('user-1', limit=limit, offset=offset)

    def test_get_decision(self, storage):
        stored = storage.insert_decisions(self._decisions(1))[0]
        assert storage.get_decision(stored.id) == stored
        assert storage.get_decision('missing') is None


class TestCatalog:

    def test_seeded_from_config(self, storage):
        assert [h.name for h in storage.list_helplines()] == ['Umang Pakistan Mental Health Helpline']
        assert len(storage.list_skill_modules()) == 4
        assert {c.id for c in storage.list_courses()} == {'c_photo', 'c_budget', 'c_english', 'c_freelance'}

    def test_empty_config(self):
        empty = InMemoryStorage()
        assert empty.list_helplines() == []
        assert empty.list_courses() == []

    def test_enrollment_replaces_previous_status(self, storage):
        storage.record_enrollment(CourseEnrollment('user-1', 'c_photo', 'in_progress'))
        storage.record_enrollment(CourseEnrollment('user-1', 'c_photo', 'completed'))
        assert [e.completion_status for e in storage.list_enrollments('user-1')] == ['completed']

    def test_profile_defaults(self, storage):
        assert storage.get_profile('nobody') == UserProfile()
        storage.save_profile('user-1', UserProfile(education_level='none'))
        assert storage.get_profile('user-1').education_level == 'none'


class TestSnapshot:

    def test_round_trip(self, storage, config, tmp_path):
        entry = storage.insert_entry(make_entry(interests=('coding',)))
        decision = storage.insert_decisions([
            AgentDecision(agent='emotional', confidence=0.7, reasoning='r', user_id='user-1',
                          entry_id=entry.id, actions=({'type': 'breathing'},))
        ])[0]
        storage.insert_outcome(InterventionOutcome('user-1', decision.id, 'breathing', True, rating=4))
        storage.get_or_create_memory_record('user-1')
        storage.save_profile('user-1', UserProfile(preferred_language='ur'))

        path = storage.save_snapshot(str(tmp_path / 'state' / 'snapshot.json'))

        restored = InMemoryStorage(config)
        restored.load_snapshot(path)

        assert restored.list_entries('user-1') == [entry]
        assert restored.get_decision(decision.id) == decision
        assert restored.list_outcomes('user-1')[0].rating == 4
        assert restored.get_memory_record('user-1').long_term.stage == 'unknown'
        assert restored.get_profile('user-1').preferred_language == 'ur'

    def test_missing_snapshot_raises(self, storage, tmp_path):
        with pytest.raises(StorageError):
            storage.load_snapshot(str(tmp_path / 'missing.json'))
