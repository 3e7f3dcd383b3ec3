"""
Storage Module

Record-store port used by the pipeline, agents, memory manager and outcome
tracker. Components receive a ``StorageBackend`` in their constructor.

InMemoryStorage is the bundled backend: one lock guards every operation,
catalog tables (helplines, skill modules, courses) are seeded from the
``catalog`` config section, and the whole store can be saved to / loaded
from a JSON snapshot.
"""

import json
import os
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import fields, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from utils.errors import StorageError
from utils.logger import setup_logger
from utils.models import (
    AgentDecision,
    ConfidenceAdjustment,
    Course,
    CourseEnrollment,
    EmotionalEntry,
    EmotionalTier,
    Helpline,
    InterventionOutcome,
    LongTermSummary,
    MemoryRecord,
    SkillModule,
    SkillProgress,
    UserProfile,
    to_jsonable,
)

logger = setup_logger('storage', 'logs/storage.log')


def _new_id() -> str:
    return str(uuid.uuid4())


class StorageBackend(ABC):
    """Operations the check-in system needs from its backing store"""

    # Entries
    @abstractmethod
    def insert_entry(self, entry: EmotionalEntry) -> EmotionalEntry:
        """Persist a complete entry in one write; returns it with id/created_at set"""

    @abstractmethod
    def list_entries(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[EmotionalEntry]:
        """Entries newest first, optionally bounded by time and count"""

    # Long-term memory
    @abstractmethod
    def get_memory_record(self, user_id: str) -> Optional[MemoryRecord]:
        pass

    @abstractmethod
    def get_or_create_memory_record(self, user_id: str) -> MemoryRecord:
        pass

    @abstractmethod
    def save_memory_record(self, record: MemoryRecord) -> MemoryRecord:
        pass

    # Decisions
    @abstractmethod
    def insert_decisions(self, decisions: List[AgentDecision]) -> List[AgentDecision]:
        pass

    @abstractmethod
    def get_decision(self, decision_id: str) -> Optional[AgentDecision]:
        pass

    @abstractmethod
    def list_decisions(self, user_id: str, limit: int = 50, offset: int = 0) -> List[AgentDecision]:
        pass

    # Outcomes and confidence adjustments
    @abstractmethod
    def insert_outcome(self, outcome: InterventionOutcome) -> InterventionOutcome:
        pass

    @abstractmethod
    def list_outcomes(
        self,
        user_id: str,
        completed_only: bool = False,
        limit: Optional[int] = None
    ) -> List[InterventionOutcome]:
        pass

    @abstractmethod
    def insert_confidence_adjustment(self, adjustment: ConfidenceAdjustment) -> ConfidenceAdjustment:
        pass

    @abstractmethod
    def list_confidence_adjustments(self, agent: Optional[str] = None) -> List[ConfidenceAdjustment]:
        pass

    # Catalog and progress
    @abstractmethod
    def list_helplines(self) -> List[Helpline]:
        pass

    @abstractmethod
    def list_skill_modules(self) -> List[SkillModule]:
        pass

    @abstractmethod
    def list_skill_progress(self, user_id: str) -> List[SkillProgress]:
        pass

    @abstractmethod
    def record_skill_progress(self, progress: SkillProgress) -> SkillProgress:
        pass

    @abstractmethod
    def list_courses(self) -> List[Course]:
        pass

    @abstractmethod
    def list_enrollments(self, user_id: str) -> List[CourseEnrollment]:
        pass

    @abstractmethod
    def record_enrollment(self, enrollment: CourseEnrollment) -> CourseEnrollment:
        pass

    # Profiles
    @abstractmethod
    def get_profile(self, user_id: str) -> UserProfile:
        pass

    @abstractmethod
    def save_profile(self, user_id: str, profile: UserProfile) -> UserProfile:
        pass


class InMemoryStorage(StorageBackend):
    """
    Process-local store.

    Concurrent check-ins for different users never share rows; writes for
    the same user are last-writer-wins.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self._lock = threading.RLock()

        self._entries: List[EmotionalEntry] = []
        self._memory: Dict[str, MemoryRecord] = {}
        self._decisions: List[AgentDecision] = []
        self._outcomes: List[InterventionOutcome] = []
        self._adjustments: List[ConfidenceAdjustment] = []
        self._skill_progress: List[SkillProgress] = []
        self._enrollments: List[CourseEnrollment] = []
        self._profiles: Dict[str, UserProfile] = {}

        catalog = (config or {}).get('catalog', {})
        self._helplines = [Helpline(**h) for h in catalog.get('helplines', [])]
        self._skills = [SkillModule(**s) for s in catalog.get('skill_modules', [])]
        self._courses = [Course(**c) for c in catalog.get('courses', [])]

        logger.info("In-memory storage initialized")
        logger.info(
            f"Catalog: {len(self._helplines)} helplines, "
            f"{len(self._skills)} skill modules, {len(self._courses)} courses"
        )

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def insert_entry(self, entry: EmotionalEntry) -> EmotionalEntry:
        with self._lock:
            stored = replace(
                entry,
                id=entry.id or _new_id(),
                created_at=entry.created_at or datetime.now()
            )
            self._entries.append(stored)
            logger.debug(f"Inserted entry {stored.id} for user {stored.user_id} ({stored.emotional_level.value})")
            return stored

    def list_entries(self, user_id, since=None, limit=None):
        with self._lock:
            rows = [
                e for e in self._entries
                if e.user_id == user_id and (since is None or e.created_at >= since)
            ]
        rows.sort(key=lambda e: e.created_at, reverse=True)
        return rows[:limit] if limit is not None else rows

    # ------------------------------------------------------------------
    # Long-term memory
    # ------------------------------------------------------------------

    def get_memory_record(self, user_id):
        with self._lock:
            return self._memory.get(user_id)

    def get_or_create_memory_record(self, user_id):
        with self._lock:
            record = self._memory.get(user_id)
            if record is None:
                record = MemoryRecord(user_id=user_id, last_updated=datetime.now())
                self._memory[user_id] = record
                logger.info(f"Created memory record for user {user_id}")
            return record

    def save_memory_record(self, record):
        with self._lock:
            self._memory[record.user_id] = record
            return record

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def insert_decisions(self, decisions):
        with self._lock:
            stored = [
                replace(d, id=d.id or _new_id(), created_at=d.created_at or datetime.now())
                for d in decisions
            ]
            self._decisions.extend(stored)
            logger.debug(f"Inserted {len(stored)} agent decisions")
            return stored

    def get_decision(self, decision_id):
        with self._lock:
            for decision in self._decisions:
                if decision.id == decision_id:
                    return decision
        return None

    def list_decisions(self, user_id, limit=50, offset=0):
        if limit < 0 or offset < 0:
            raise StorageError("limit and offset must be non-negative", operation='list_decisions')
        with self._lock:
            rows = [d for d in self._decisions if d.user_id == user_id]
        # Stable sort keeps insertion order for decisions written in the same batch
        rows = sorted(enumerate(rows), key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        return [d for _, d in rows][offset:offset + limit]

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def insert_outcome(self, outcome):
        with self._lock:
            stored = replace(outcome, id=outcome.id or _new_id(), created_at=outcome.created_at or datetime.now())
            self._outcomes.append(stored)
            return stored

    def list_outcomes(self, user_id, completed_only=False, limit=None):
        with self._lock:
            rows = [
                o for o in self._outcomes
                if o.user_id == user_id and (o.completed or not completed_only)
            ]
        rows.sort(key=lambda o: o.created_at, reverse=True)
        return rows[:limit] if limit is not None else rows

    def insert_confidence_adjustment(self, adjustment):
        with self._lock:
            stored = replace(
                adjustment,
                id=adjustment.id or _new_id(),
                created_at=adjustment.created_at or datetime.now()
            )
            self._adjustments.append(stored)
            return stored

    def list_confidence_adjustments(self, agent=None):
        with self._lock:
            return [a for a in self._adjustments if agent is None or a.agent == agent]

    # ------------------------------------------------------------------
    # Catalog and progress
    # ------------------------------------------------------------------

    def list_helplines(self):
        return [h for h in self._helplines if h.is_active]

    def list_skill_modules(self):
        return list(self._skills)

    def list_skill_progress(self, user_id):
        with self._lock:
            return [p for p in self._skill_progress if p.user_id == user_id]

    def record_skill_progress(self, progress):
        with self._lock:
            self._skill_progress = [
                p for p in self._skill_progress
                if not (p.user_id == progress.user_id and p.skill_id == progress.skill_id)
            ]
            self._skill_progress.append(progress)
            return progress

    def list_courses(self):
        return list(self._courses)

    def list_enrollments(self, user_id):
        with self._lock:
            return [e for e in self._enrollments if e.user_id == user_id]

    def record_enrollment(self, enrollment):
        with self._lock:
            self._enrollments = [
                e for e in self._enrollments
                if not (e.user_id == enrollment.user_id and e.course_id == enrollment.course_id)
            ]
            self._enrollments.append(enrollment)
            return enrollment

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_profile(self, user_id):
        with self._lock:
            return self._profiles.get(user_id, UserProfile())

    def save_profile(self, user_id, profile):
        with self._lock:
            self._profiles[user_id] = profile
            return profile

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Return the user-generated tables as JSON-safe data"""
        with self._lock:
            return to_jsonable({
                'entries': self._entries,
                'memory': list(self._memory.values()),
                'decisions': self._decisions,
                'outcomes': self._outcomes,
                'confidence_adjustments': self._adjustments,
                'skill_progress': self._skill_progress,
                'enrollments': self._enrollments,
                'profiles': self._profiles,
            })

    def save_snapshot(self, path: str) -> str:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        try:
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(self.snapshot(), f, indent=2)
        except OSError as e:
            logger.error(f"Failed to write snapshot {path}: {e}")
            raise StorageError(f"Could not save snapshot to {path}", operation='save_snapshot') from e

        logger.info(f"Snapshot saved to: {path}")
        return path

    def load_snapshot(self, path: str):
        """Replace the user-generated tables with the contents of a snapshot file"""
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read snapshot {path}: {e}")
            raise StorageError(f"Could not load snapshot from {path}", operation='load_snapshot') from e

        with self._lock:
            self._entries = [_restore(EmotionalEntry, row) for row in data.get('entries', [])]
            self._memory = {}
            for row in data.get('memory', []):
                row = dict(row)
                row['long_term'] = _restore(LongTermSummary, row.get('long_term') or {})
                record = _restore(MemoryRecord, row)
                self._memory[record.user_id] = record
            self._decisions = [_restore(AgentDecision, row) for row in data.get('decisions', [])]
            self._outcomes = [_restore(InterventionOutcome, row) for row in data.get('outcomes', [])]
            self._adjustments = [
                _restore(ConfidenceAdjustment, row) for row in data.get('confidence_adjustments', [])
            ]
            self._skill_progress = [_restore(SkillProgress, row) for row in data.get('skill_progress', [])]
            self._enrollments = [_restore(CourseEnrollment, row) for row in data.get('enrollments', [])]
            self._profiles = {
                user_id: UserProfile.from_dict(row) for user_id, row in data.get('profiles', {}).items()
            }

        logger.info(f"Snapshot loaded from: {path} ({len(self._entries)} entries)")


_DATETIME_FIELDS = {'created_at', 'completed_at', 'started_at', 'last_updated', 'last_checkin'}


def _restore(cls, row: Dict[str, Any]):
    """Rebuild a frozen record from its JSON form"""
    values = {}
    for f in fields(cls):
        if f.name not in row:
            continue
        value = row[f.name]
        if f.name in _DATETIME_FIELDS and isinstance(value, str):
            value = datetime.fromisoformat(value)
        elif f.name == 'emotional_level':
            value = EmotionalTier(value)
        elif isinstance(value, list) and f.name in ('interests', 'actions'):
            value = tuple(value)
        values[f.name] = value
    return cls(**values)
