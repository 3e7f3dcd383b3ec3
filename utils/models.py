"""
Data Model Module

Dataclasses shared by the pipeline, agents, memory and storage layers.

Records that form the audit trail (entries, decisions, outcomes,
confidence adjustments) are frozen: once created they are never mutated,
only appended.
"""

import math
from dataclasses import asdict, dataclass, field, fields, is_dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from utils.errors import CheckinValidationError


INSTRUMENT_ITEMS: Dict[str, Tuple[str, ...]] = {
    'phq2': ('phq2_q1', 'phq2_q2'),
    'gad2': ('gad2_q1', 'gad2_q2'),
    'who5': ('who5_q1', 'who5_q2', 'who5_q3'),
}

ITEM_RANGES: Dict[str, Tuple[int, int]] = {
    'phq2': (0, 3),
    'gad2': (0, 3),
    'who5': (0, 5),
}

LEVELS = ('low', 'medium', 'high')
MOOD_RANGE = (1, 10)
DEFAULT_JOURNAL_MAX_LENGTH = 5000


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


def to_jsonable(value: Any) -> Any:
    """Convert dataclasses, enums, tuples and datetimes into JSON-safe values"""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    return value


# =============================================================================
# TIERS
# =============================================================================

class EmotionalTier(str, Enum):
    """Per-entry severity, totally ordered green < yellow < orange < red"""
    GREEN = "green"
    YELLOW = "yellow"
    ORANGE = "orange"
    RED = "red"

    @property
    def severity(self) -> int:
        return list(EmotionalTier).index(self)

    @property
    def is_stable(self) -> bool:
        return self in (EmotionalTier.GREEN, EmotionalTier.YELLOW)

    def __lt__(self, other):
        if not isinstance(other, EmotionalTier):
            return NotImplemented
        return self.severity < other.severity

    def __le__(self, other):
        if not isinstance(other, EmotionalTier):
            return NotImplemented
        return self.severity <= other.severity

    def __gt__(self, other):
        if not isinstance(other, EmotionalTier):
            return NotImplemented
        return self.severity > other.severity

    def __ge__(self, other):
        if not isinstance(other, EmotionalTier):
            return NotImplemented
        return self.severity >= other.severity

    def __str__(self):
        return self.value


# =============================================================================
# SUBMISSION
# =============================================================================

def _coerce_int(value: Any) -> Optional[int]:
    """Accept ints and integral strings; reject bools, floats with fractions, junk"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip('-').isdigit():
        return int(value.strip())
    return None


@dataclass(frozen=True)
class NormalizedCheckin:
    """
    Submission in the single downstream shape.

    Every instrument item is an int and the legacy fields are filled in
    wherever they can be derived.

    ``reported_mood`` and ``reported_stress`` keep what the user actually
    submitted, before any derivation.
    """
    answers: Dict[str, int]
    mood_score: Optional[int]
    energy_level: Optional[str]
    stress_level: Optional[str]
    journal: Optional[str]
    interests: Tuple[str, ...]
    instruments_answered: Dict[str, bool]
    source: str
    reported_mood: Optional[int] = None
    reported_stress: Optional[str] = None

    @property
    def all_instruments_answered(self) -> bool:
        return all(self.instruments_answered.values())


@dataclass(frozen=True)
class CheckinSubmission:
    """Raw daily check-in as received from the caller"""
    phq2_q1: Optional[int] = None
    phq2_q2: Optional[int] = None
    gad2_q1: Optional[int] = None
    gad2_q2: Optional[int] = None
    who5_q1: Optional[int] = None
    who5_q2: Optional[int] = None
    who5_q3: Optional[int] = None
    mood_score: Optional[int] = None
    energy_level: Optional[str] = None
    stress_level: Optional[str] = None
    journal: Optional[str] = None
    interests: Tuple[str, ...] = ()

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        journal_max_length: int = DEFAULT_JOURNAL_MAX_LENGTH
    ) -> 'CheckinSubmission':
        """
        Validate a raw payload and build a submission.

        Raises:
            CheckinValidationError: listing every invalid field
        """
        if not isinstance(payload, dict):
            raise CheckinValidationError([
                {'field': 'payload', 'message': 'Check-in payload must be an object'}
            ])

        errors: List[Dict[str, str]] = []
        values: Dict[str, Any] = {}

        for instrument, item_names in INSTRUMENT_ITEMS.items():
            low, high = ITEM_RANGES[instrument]
            for name in item_names:
                raw = payload.get(name)
                if raw is None or raw == '':
                    continue
                number = _coerce_int(raw)
                if number is None or not low <= number <= high:
                    errors.append({
                        'field': name,
                        'message': f'{name} must be an integer between {low} and {high}'
                    })
                    continue
                values[name] = number

        mood = payload.get('mood_score')
        if mood is not None and mood != '':
            number = _coerce_int(mood)
            if number is None or not MOOD_RANGE[0] <= number <= MOOD_RANGE[1]:
                errors.append({'field': 'mood_score', 'message': 'Mood score must be between 1 and 10'})
            else:
                values['mood_score'] = number

        for name in ('energy_level', 'stress_level'):
            level = payload.get(name)
            if level is None or level == '':
                continue
            if level not in LEVELS:
                label = name.split('_')[0].capitalize()
                errors.append({'field': name, 'message': f'{label} level must be low, medium, or high'})
            else:
                values[name] = level

        journal = payload.get('journal')
        if journal is not None and journal != '':
            if not isinstance(journal, str):
                errors.append({'field': 'journal', 'message': 'Journal entry must be text'})
            elif len(journal.strip()) > journal_max_length:
                errors.append({
                    'field': 'journal',
                    'message': f'Journal entry must be less than {journal_max_length} characters'
                })
            elif journal.strip():
                values['journal'] = journal.strip()

        interests = payload.get('interests')
        if interests:
            if not isinstance(interests, (list, tuple)):
                errors.append({'field': 'interests', 'message': 'Interests must be an array'})
            elif not all(isinstance(tag, str) for tag in interests):
                errors.append({'field': 'interests', 'message': 'Every interest must be text'})
            else:
                values['interests'] = tuple(tag.strip() for tag in interests if tag.strip())

        if errors:
            raise CheckinValidationError(errors)

        submission = cls(**values)

        if not submission.has_instruments and not submission.has_legacy_fields:
            raise CheckinValidationError([{
                'field': 'payload',
                'message': 'Provide instrument answers (PHQ-2, GAD-2, WHO-5) or mood/energy/stress'
            }])

        return submission

    def answered(self, instrument: str) -> bool:
        return any(getattr(self, name) is not None for name in INSTRUMENT_ITEMS[instrument])

    @property
    def has_instruments(self) -> bool:
        return any(self.answered(instrument) for instrument in INSTRUMENT_ITEMS)

    @property
    def has_legacy_fields(self) -> bool:
        return any(v is not None for v in (self.mood_score, self.energy_level, self.stress_level))

    def normalized(self) -> NormalizedCheckin:
        """
        Bring research-instrument and legacy input into one shape.

        Unanswered instruments are derived from the legacy fields when the
        matching field exists (WHO-5 and PHQ-2 from mood, GAD-2 from stress),
        otherwise their items are 0. Missing legacy fields are then derived
        from the instruments. Explicitly supplied values are never replaced.
        """
        answered = {instrument: self.answered(instrument) for instrument in INSTRUMENT_ITEMS}
        answers: Dict[str, int] = {
            name: getattr(self, name) or 0
            for item_names in INSTRUMENT_ITEMS.values()
            for name in item_names
        }
        derived = dict.fromkeys(INSTRUMENT_ITEMS, False)

        if not answered['who5'] and self.mood_score is not None:
            raw = round_half_up(self.mood_score * 1.5)
            base, remainder = divmod(raw, 3)
            for index, name in enumerate(INSTRUMENT_ITEMS['who5']):
                answers[name] = base + 1 if index < remainder else base
            derived['who5'] = True

        if not answered['phq2'] and self.mood_score is not None:
            if self.mood_score <= 3:
                answers['phq2_q1'], answers['phq2_q2'] = 2, 1
            elif self.mood_score <= 6:
                answers['phq2_q1'], answers['phq2_q2'] = 1, 0
            derived['phq2'] = True

        if not answered['gad2'] and self.stress_level is not None:
            per_item = {'high': 2, 'medium': 1, 'low': 0}[self.stress_level]
            answers['gad2_q1'] = answers['gad2_q2'] = per_item
            derived['gad2'] = True

        who5_known = answered['who5'] or derived['who5']
        gad2_known = answered['gad2'] or derived['gad2']

        mood = self.mood_score
        if mood is None and who5_known:
            who5_raw = sum(answers[name] for name in INSTRUMENT_ITEMS['who5'])
            who5_normalized = round_half_up(who5_raw * 100 / 15)
            mood = max(MOOD_RANGE[0], min(MOOD_RANGE[1], round_half_up(who5_normalized / 10)))

        energy = self.energy_level
        if energy is None and who5_known:
            energy_item = answers['who5_q2']
            energy = 'high' if energy_item >= 4 else 'medium' if energy_item >= 2 else 'low'

        stress = self.stress_level
        if stress is None and gad2_known:
            anxiety = answers['gad2_q1'] + answers['gad2_q2']
            stress = 'high' if anxiety >= 4 else 'medium' if anxiety >= 2 else 'low'

        if self.has_instruments and self.has_legacy_fields:
            source = 'mixed'
        elif self.has_instruments:
            source = 'research'
        else:
            source = 'legacy'

        return NormalizedCheckin(
            answers=answers,
            mood_score=mood,
            energy_level=energy,
            stress_level=stress,
            journal=self.journal,
            interests=self.interests,
            instruments_answered=answered,
            source=source,
            reported_mood=self.mood_score,
            reported_stress=self.stress_level
        )


# =============================================================================
# SCORES
# =============================================================================

@dataclass(frozen=True)
class InstrumentScore:
    """Score for one questionnaire. ``normalized`` is only set for WHO-5."""
    name: str
    items: Tuple[int, ...]
    total: int
    risk_flag: bool
    normalized: Optional[int] = None
    interpretation: str = ""

    def item(self, number: int) -> int:
        return self.items[number - 1]

    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable(self)


@dataclass(frozen=True)
class RiskAssessment:
    depression_risk: bool
    anxiety_risk: bool
    low_wellbeing: bool
    risk_probability: float

    @property
    def any_risk(self) -> bool:
        return self.depression_risk or self.anxiety_risk or self.low_wellbeing

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['any_risk'] = self.any_risk
        return data


@dataclass(frozen=True)
class SentimentResult:
    score: float
    magnitude: float
    emotions: Tuple[str, ...] = ()
    source: str = "fallback"

    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable(self)


# =============================================================================
# PERSISTED RECORDS
# =============================================================================

@dataclass(frozen=True)
class EmotionalEntry:
    """One persisted check-in. Built complete (tier included) before it is written."""
    user_id: str
    emotional_level: EmotionalTier
    created_at: datetime
    mood_score: Optional[int] = None
    energy_level: Optional[str] = None
    stress_level: Optional[str] = None
    phq2_q1: Optional[int] = None
    phq2_q2: Optional[int] = None
    phq2_total: Optional[int] = None
    gad2_q1: Optional[int] = None
    gad2_q2: Optional[int] = None
    gad2_total: Optional[int] = None
    who5_q1: Optional[int] = None
    who5_q2: Optional[int] = None
    who5_q3: Optional[int] = None
    who5_normalized: Optional[int] = None
    depression_risk_flag: bool = False
    anxiety_risk_flag: bool = False
    risk_probability: float = 0.0
    journal_sentiment_score: Optional[float] = None
    simplified_explanation: Optional[str] = None
    journal_sealed: Optional[Dict[str, str]] = None
    interests: Tuple[str, ...] = ()
    crisis_override: bool = False
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable(self)


@dataclass(frozen=True)
class AgentDecision:
    """
    One agent invocation within one check-in.

    Append-only audit record and the training signal for outcome-based
    re-ranking. ``output`` is the agent's payload; downstream agents read it.
    """
    agent: str
    confidence: float
    reasoning: str
    input: Dict[str, Any] = field(default_factory=dict)
    output: Dict[str, Any] = field(default_factory=dict)
    actions: Tuple[Dict[str, Any], ...] = ()
    should_activate: bool = True
    is_fallback: bool = False
    user_id: Optional[str] = None
    entry_id: Optional[str] = None
    created_at: Optional[datetime] = None
    id: Optional[str] = None

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be within [0, 1], got {self.confidence}")

    def summary(self) -> Dict[str, Any]:
        return {
            'confidence': self.confidence,
            'reasoning': self.reasoning,
            'decision_id': self.id,
            'is_fallback': self.is_fallback,
        }

    def to_record(self) -> Dict[str, Any]:
        return to_jsonable(self)


@dataclass(frozen=True)
class InterventionCandidate:
    type: str
    title: str
    description: str
    evidence_base: str
    cognitive_load: str
    duration: int
    priority: int
    reason: Optional[str] = None
    success_rate: Optional[float] = None
    avg_improvement: Optional[float] = None
    adjusted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InterventionCandidate':
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class InterventionOutcome:
    """User feedback on a recommended action. Written later, never edits decisions."""
    user_id: str
    decision_id: Optional[str]
    action: str
    completed: bool
    rating: Optional[int] = None
    time_to_complete: Optional[float] = None
    improvement_delta: Optional[float] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable(self)


@dataclass(frozen=True)
class ConfidenceAdjustment:
    agent: str
    original_confidence: float
    adjusted_confidence: float
    reason: str
    decision_id: Optional[str] = None
    created_at: Optional[datetime] = None
    id: Optional[str] = None


@dataclass(frozen=True)
class Helpline:
    name: str
    phone_number: str
    description: str = ""
    region: str = ""
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'phone_number': self.phone_number,
            'description': self.description,
            'region': self.region,
        }


@dataclass(frozen=True)
class SkillModule:
    id: str
    title: str
    category: str
    difficulty: str
    duration_minutes: int
    points_reward: int = 0
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SkillProgress:
    user_id: str
    skill_id: str
    completed: bool
    started_at: datetime
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class Course:
    id: str
    title: str
    difficulty_level: int
    description: str = ""
    duration_estimate: str = ""
    category: str = ""
    source_url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CourseEnrollment:
    user_id: str
    course_id: str
    completion_status: str


@dataclass(frozen=True)
class UserProfile:
    """Accessibility context used by the intervention and ethics agents"""
    education_level: Optional[str] = None
    preferred_language: str = "en"
    location_type: Optional[str] = None
    internet_stability: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'UserProfile':
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known and v is not None})


# =============================================================================
# MEMORY
# =============================================================================

@dataclass(frozen=True)
class LongTermSummary:
    stage: str = "unknown"
    avg_mood: float = 0.0
    consistency: int = 0
    total_checkins: int = 0
    last_checkin: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable(self)


@dataclass(frozen=True)
class MemoryRecord:
    """Persisted long-term memory row (one per user)"""
    user_id: str
    long_term: LongTermSummary = field(default_factory=LongTermSummary)
    trend_direction: str = "insufficient_data"
    engagement_score: int = 0
    last_updated: Optional[datetime] = None


@dataclass(frozen=True)
class UserMemory:
    """Read-only snapshot handed to agents. Short-term entries are newest first."""
    user_id: str
    short_term: Tuple[EmotionalEntry, ...]
    long_term: LongTermSummary
    trend_direction: str
    engagement_score: int
    last_updated: Optional[datetime] = None

    @property
    def emotional_stage(self) -> str:
        return self.long_term.stage


# =============================================================================
# PIPELINE CONTEXT
# =============================================================================

@dataclass(frozen=True)
class CheckinContext:
    """
    Everything an agent may read. Agents never mutate it; the pipeline
    hands each stage a copy extended with upstream decisions.
    """
    user_id: str
    checkin: NormalizedCheckin
    memory: UserMemory
    profile: UserProfile = field(default_factory=UserProfile)
    emotional: Optional[AgentDecision] = None
    intervention: Optional[AgentDecision] = None

    def with_decisions(self, **decisions: AgentDecision) -> 'CheckinContext':
        return replace(self, **decisions)
