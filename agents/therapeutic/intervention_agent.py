"""
Evidence-Based Intervention Agent

Recommends coping activities from three sources, in this order:

1. Emotional stage (long-term memory)
2. Instrument score thresholds
3. Today's tier

The union is de-duplicated by type (first occurrence wins), ranked by the
user's own outcome history, filtered for cognitive load, cut to the top 3
and given plain-language descriptions.
"""

from dataclasses import replace
from functools import cmp_to_key
from typing import Any, Dict, List, Sequence

from agents.assessment.classifier import (
    STAGE_DISTRESS,
    STAGE_STABILIZING,
    STAGE_STRUGGLING,
    STAGE_THRIVING,
)
from utils.agents import BaseAgent
from utils.insight import InsightService
from utils.models import (
    AgentDecision,
    CheckinContext,
    EmotionalTier,
    InterventionCandidate,
    InterventionOutcome,
)
from utils.storage import StorageBackend


# Stage picks
STAGE_GROUNDING = InterventionCandidate(
    type='grounding_technique',
    title='5-4-3-2-1 Grounding Technique',
    description='A simple exercise to help you feel calmer and more present.',
    evidence_base='Grounding for acute distress',
    cognitive_load='low',
    duration=5,
    priority=1
)
STAGE_BREATHING = InterventionCandidate(
    type='guided_breathing',
    title='Box Breathing',
    description='Slow, rhythmic breathing to reduce anxiety.',
    evidence_base='Breathing exercises for anxiety reduction',
    cognitive_load='low',
    duration=5,
    priority=1
)
STAGE_ACTIVATION = InterventionCandidate(
    type='behavioral_activation',
    title='Pleasant Activity Scheduling',
    description='Planning one small, enjoyable activity for tomorrow.',
    evidence_base='Behavioral activation for depression',
    cognitive_load='medium',
    duration=15,
    priority=2,
    reason='Helps maintain momentum during stabilization.'
)
STAGE_VALUES = InterventionCandidate(
    type='values_work',
    title='Values Reflection',
    description='Reflecting on what matters most to you.',
    evidence_base='Values-based living for wellbeing',
    cognitive_load='medium',
    duration=10,
    priority=3,
    reason='Appropriate for thriving stage to deepen purpose.'
)

# Score picks
SMALL_DAILY_TASK = InterventionCandidate(
    type='behavioral_activation',
    title='Small Daily Task',
    description='Choose one small task you can do today that brings you a sense of accomplishment',
    evidence_base='Behavioral activation for depression',
    cognitive_load='low',
    duration=15,
    priority=1
)
BREATHING_478 = InterventionCandidate(
    type='guided_breathing',
    title='4-7-8 Breathing Exercise',
    description='Breathe in for 4 counts, hold for 7, breathe out for 8. Repeat 4 times.',
    evidence_base='Breathing exercises for anxiety reduction',
    cognitive_load='low',
    duration=5,
    priority=1
)
COGNITIVE_REFRAMING = InterventionCandidate(
    type='cognitive_reframing',
    title='Challenge Worried Thoughts',
    description='Write down one worry. Ask yourself: Is this thought really true? What else could be true?',
    evidence_base='Cognitive restructuring for anxiety',
    cognitive_load='medium',
    duration=10,
    priority=2
)
EXPRESSIVE_WRITING = InterventionCandidate(
    type='expressive_writing',
    title='10-Minute Journaling',
    description='Write freely about your feelings for 10 minutes. No one will read it but you.',
    evidence_base='Expressive writing for emotional processing',
    cognitive_load='low',
    duration=10,
    priority=1
)
GRATITUDE = InterventionCandidate(
    type='gratitude_practice',
    title='Three Good Things',
    description='Think of 3 small things that went okay today, no matter how small',
    evidence_base='Gratitude practice for wellbeing',
    cognitive_load='low',
    duration=5,
    priority=2
)
SOCIAL_CONNECTION = InterventionCandidate(
    type='social_connection',
    title='Connect with Someone',
    description='Send a message or call someone you care about',
    evidence_base='Social connection for wellbeing',
    cognitive_load='low',
    duration=15,
    priority=2
)

# Tier picks
TIER_GROUNDING = InterventionCandidate(
    type='grounding_technique',
    title='5-4-3-2-1 Grounding',
    description='Name 5 things you see, 4 you can touch, 3 you hear, 2 you smell, 1 you taste',
    evidence_base='Grounding for acute distress',
    cognitive_load='low',
    duration=5,
    priority=1
)
GENTLE_MOVEMENT = InterventionCandidate(
    type='gentle_movement',
    title='Gentle Stretching',
    description='Do 5 minutes of gentle stretches or a short walk',
    evidence_base='Physical activity for mood improvement',
    cognitive_load='low',
    duration=10,
    priority=2
)

LOW_EDUCATION_LEVELS = ('none', 'primary')


def is_successful(outcome: InterventionOutcome) -> bool:
    """
    Rating of 4+ with a positive improvement. Improvement is only required
    when it was actually measured.
    """
    if outcome.rating is None or outcome.rating < 4:
        return False
    return outcome.improvement_delta is None or outcome.improvement_delta > 0


def _compare_ranked(a: InterventionCandidate, b: InterventionCandidate) -> int:
    if abs(a.success_rate - b.success_rate) > 0.1:
        return -1 if a.success_rate > b.success_rate else 1
    if a.avg_improvement != b.avg_improvement:
        return -1 if a.avg_improvement > b.avg_improvement else 1
    if a.priority != b.priority:
        return a.priority - b.priority
    return (a.type > b.type) - (a.type < b.type)


def rank_by_personal_success(
    candidates: Sequence[InterventionCandidate],
    past_outcomes: Sequence[InterventionOutcome]
) -> List[InterventionCandidate]:
    """
    Order candidates by the user's own history.

    Untried types get a 0.5 success rate. Success rates within 0.1 of each
    other are ordered by average improvement, then priority, then type.
    With no history at all the static priority order is used.
    """
    if not past_outcomes:
        return sorted(candidates, key=lambda c: c.priority)

    scored = []
    for candidate in candidates:
        attempts = [o for o in past_outcomes if o.action == candidate.type]
        if attempts:
            success_rate = sum(1 for o in attempts if is_successful(o)) / len(attempts)
            avg_improvement = sum(o.improvement_delta or 0 for o in attempts) / len(attempts)
        else:
            success_rate = 0.5
            avg_improvement = 0.0

        scored.append(replace(candidate, success_rate=round(success_rate, 4), avg_improvement=avg_improvement))

    return sorted(scored, key=cmp_to_key(_compare_ranked))


class InterventionAgent(BaseAgent):
    """
    Intervention Agent

    Responsibilities:
    - Select candidates from stage, scores and tier
    - Rank by personal success history (reflection loop)
    - Drop candidates too demanding for the user's state or education
    """

    def __init__(self, config: Dict[str, Any], storage: StorageBackend, insight: InsightService):
        super().__init__(config, "intervention")
        self.storage = storage
        self.insight = insight

        checkin_config = config.get('checkin', {})
        self.past_outcome_limit = checkin_config.get('past_outcome_limit', 30)
        self.default_education = checkin_config.get('default_education_level', 'primary')
        self.top_n = self.agent_config.get('top_n', 3)

    def evaluate(self, context: CheckinContext) -> AgentDecision:
        emotional = context.emotional.output
        tier = EmotionalTier(emotional['level'])
        phq2 = emotional['phq2_score']
        gad2 = emotional['gad2_score']
        who5 = emotional['who5_score']
        stage = context.memory.emotional_stage
        education = context.profile.education_level or self.default_education
        language = context.profile.preferred_language or 'en'

        past_outcomes = self.storage.list_outcomes(
            context.user_id, completed_only=True, limit=self.past_outcome_limit
        )

        candidates = self.select_interventions(stage, tier, phq2, gad2, who5)
        ranked = rank_by_personal_success(candidates, past_outcomes)
        adjusted = self.adjust_for_cognitive_load(ranked, tier, education)
        selected = [
            replace(c, description=self.insight.simplify(c.description, language, education))
            for c in adjusted[:self.top_n]
        ]

        self.logger.info(
            f"{len(candidates)} candidates -> {len(adjusted)} after load filter -> "
            f"{[c.type for c in selected]}"
        )

        return self.decision(
            context,
            confidence=self.calculate_confidence(len(past_outcomes)),
            reasoning=(
                f"Selected {len(selected)} evidence-based interventions for {tier.value} tier, "
                f"{stage} stage (PHQ-2={phq2}, GAD-2={gad2}, WHO-5={who5}). "
                f"Ranked by personal success history ({len(past_outcomes)} past outcomes). "
                f"Adjusted for cognitive load."
            ),
            input={
                'level': tier.value,
                'stage': stage,
                'phq2_score': phq2,
                'gad2_score': gad2,
                'who5_score': who5,
                'education_level': education,
                'past_outcomes_count': len(past_outcomes),
            },
            output={
                'recommended_interventions': [c.to_dict() for c in selected],
                'candidate_types': [c.type for c in candidates],
            },
            actions=[
                {
                    'type': c.type,
                    'priority': index + 1,
                    'expected_duration': c.duration,
                    'title': c.title,
                    'description': c.description,
                    'cognitive_load': c.cognitive_load,
                }
                for index, c in enumerate(selected)
            ]
        )

    def select_interventions(
        self,
        stage: str,
        tier: EmotionalTier,
        phq2: int,
        gad2: int,
        who5: int
    ) -> List[InterventionCandidate]:
        """Union of stage, score and tier picks, de-duplicated by type"""
        picks: List[InterventionCandidate] = []

        if stage in (STAGE_DISTRESS, STAGE_STRUGGLING):
            reason = f'Recommended for {stage} stage to provide immediate stability.'
            picks.append(replace(STAGE_GROUNDING, reason=reason))
            picks.append(replace(STAGE_BREATHING, reason=reason))
        elif stage == STAGE_STABILIZING:
            picks.append(STAGE_ACTIVATION)
        elif stage == STAGE_THRIVING:
            picks.append(STAGE_VALUES)

        if phq2 >= 3:
            picks.append(SMALL_DAILY_TASK)
        if gad2 >= 3:
            picks.extend([BREATHING_478, COGNITIVE_REFRAMING])
        if who5 < 50:
            picks.append(EXPRESSIVE_WRITING)
        if who5 < 70:
            picks.append(GRATITUDE)
        if 50 <= who5 < 80:
            picks.append(SOCIAL_CONNECTION)

        if tier in (EmotionalTier.RED, EmotionalTier.ORANGE):
            picks.append(TIER_GROUNDING)
        else:
            picks.append(GENTLE_MOVEMENT)

        seen = set()
        unique = []
        for candidate in picks:
            if candidate.type not in seen:
                seen.add(candidate.type)
                unique.append(candidate)
        return unique

    @staticmethod
    def adjust_for_cognitive_load(
        candidates: Sequence[InterventionCandidate],
        tier: EmotionalTier,
        education: str
    ) -> List[InterventionCandidate]:
        if tier in (EmotionalTier.RED, EmotionalTier.ORANGE):
            return [c for c in candidates if c.cognitive_load == 'low']
        if education in LOW_EDUCATION_LEVELS:
            return [c for c in candidates if c.cognitive_load != 'high']
        return list(candidates)

    @staticmethod
    def calculate_confidence(outcome_count: int) -> float:
        if outcome_count == 0:
            return 0.5
        if outcome_count < 5:
            return 0.6
        if outcome_count < 15:
            return 0.75
        return 0.9

    def fallback_output(self, context: CheckinContext) -> Dict[str, Any]:
        return {'recommended_interventions': [], 'candidate_types': []}
