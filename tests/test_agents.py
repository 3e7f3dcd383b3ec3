"""
Tests for the six check-in agents.
"""

from datetime import datetime
from unittest.mock import Mock

import pytest

from agents.assessment.emotional_agent import FALLBACK_INSIGHT, EmotionalAgent
from agents.therapeutic.course_agent import CourseAgent, pick_course
from agents.therapeutic.crisis_support_agent import CrisisSupportAgent
from agents.therapeutic.ethics_guard_agent import DISCLAIMERS, EthicsGuardAgent
from agents.therapeutic.intervention_agent import (
    GENTLE_MOVEMENT,
    InterventionAgent,
    is_successful,
    rank_by_personal_success,
)
from agents.therapeutic.knowledge_retrieval_agent import DEFAULT_HELPLINES, KnowledgeRetrievalAgent
from agents.therapeutic.skill_agent import SkillAgent, analyze_preferences, target_difficulty
from utils.errors import StorageError
from utils.insight import InsightService
from utils.models import (
    AgentDecision,
    CourseEnrollment,
    EmotionalTier,
    InterventionCandidate,
    InterventionOutcome,
    SkillProgress,
    UserProfile,
)
from tests.conftest import make_context, make_entry, make_memory


# Positive PHQ-2 with WHO-5 40: orange tier, derived mood 4 so no crisis
STRUGGLING_PAYLOAD = {
    'phq2_q1': 2, 'phq2_q2': 1,
    'gad2_q1': 1, 'gad2_q2': 0,
    'who5_q1': 2, 'who5_q2': 2, 'who5_q3': 2,
}


def emotional_decision(level='green', phq2=0, gad2=0, who5=80):
    return AgentDecision(
        agent='emotional',
        confidence=0.7,
        reasoning='test',
        output={
            'level': level,
            'is_stable': EmotionalTier(level).is_stable,
            'phq2_score': phq2,
            'gad2_score': gad2,
            'who5_score': who5,
        }
    )


def candidate(type_, load='low', duration=5, priority=1, description='A calm activity for today'):
    return InterventionCandidate(
        type=type_,
        title=type_.replace('_', ' ').title(),
        description=description,
        evidence_base='test',
        cognitive_load=load,
        duration=duration,
        priority=priority
    )


def ethics_context(level, candidates, profile=None, payload=None):
    context = make_context(payload or {'mood_score': 6}, profile=profile or UserProfile(education_level='secondary'))
    intervention = AgentDecision(
        agent='intervention',
        confidence=0.5,
        reasoning='test',
        output={'recommended_interventions': [c.to_dict() for c in candidates]}
    )
    return context.with_decisions(emotional=emotional_decision(level), intervention=intervention)


@pytest.fixture
def knowledge_agent(storage, config):
    return KnowledgeRetrievalAgent(storage, config)


class TestCrisisSupportAgent:

    @pytest.fixture
    def agent(self, config, knowledge_agent):
        return CrisisSupportAgent(config, knowledge_agent)

    def test_low_mood_and_high_stress_activates(self, agent, crisis_payload):
        decision = agent.evaluate(make_context(crisis_payload))

        assert decision.should_activate
        assert decision.confidence == 0.95
        assert decision.output['risk_level'] == 'CRITICAL'
        assert decision.output['helplines'][0]['phone_number'] == '0311-7786264'
        assert [a['type'] for a in decision.actions] == ['SHOW_CRISIS_MODAL', 'LOAD_HELPLINES', 'NOTIFY_SUPPORT']

    @pytest.mark.parametrize('payload', [
        {'mood_score': 4, 'stress_level': 'high'},
        {'mood_score': 2, 'stress_level': 'medium'},
        {'stress_level': 'high'},
    ])
    def test_no_crisis(self, agent, payload):
        decision = agent.evaluate(make_context(payload))
        assert not decision.should_activate
        assert decision.confidence == 0.0
        assert decision.output['helplines'] == []
        assert decision.actions == ()

    def test_instrument_answers_never_trigger(self, agent, distress_payload):
        context = make_context(distress_payload)
        # WHO-5 all zero derives mood 1 and GAD-2 of 6 derives high stress
        assert (context.checkin.mood_score, context.checkin.stress_level) == (1, 'high')

        decision = agent.evaluate(context)

        assert not decision.should_activate
        assert decision.input['mood_score'] is None

    def test_instrument_answers_do_not_mask_reported_crisis(self, agent, distress_payload):
        payload = dict(distress_payload, mood_score=2, stress_level='high')
        assert agent.evaluate(make_context(payload)).should_activate

    def test_escalating_pattern(self, agent, crisis_payload):
        memory = make_memory(entries=[make_entry(level=EmotionalTier.RED), make_entry(level=EmotionalTier.RED)])
        decision = agent.evaluate(make_context(crisis_payload, memory=memory))

        assert decision.output['escalating']
        assert 'ESCALATING' in decision.reasoning
        assert decision.actions[0]['data'] == {'escalating': True}

    def test_helpline_lookup_failure_uses_defaults(self, config, crisis_payload):
        storage = Mock()
        storage.list_helplines.side_effect = StorageError("down")
        agent = CrisisSupportAgent(config, KnowledgeRetrievalAgent(storage, config))

        decision = agent.evaluate(make_context(crisis_payload))

        assert decision.should_activate
        assert len(decision.output['helplines']) == len(DEFAULT_HELPLINES)

    def test_fallback_still_activates_on_critical_checkin(self, agent, crisis_payload):
        decision = agent.fallback(make_context(crisis_payload), RuntimeError("boom"))

        assert decision.is_fallback
        assert decision.should_activate
        assert decision.output['helplines']

    def test_fallback_for_ordinary_checkin(self, agent, thriving_payload):
        decision = agent.fallback(make_context(thriving_payload), RuntimeError("boom"))
        assert decision.is_fallback
        assert not decision.should_activate
        assert decision.confidence == 0.0


class TestKnowledgeRetrievalAgent:

    def test_crisis_support_payload(self, knowledge_agent):
        rows = [h.to_dict() for h in knowledge_agent.get_helplines()]
        support = knowledge_agent.build_crisis_support(rows)
        assert support['title'] == "We're Here For You"
        assert support['helplines'] == rows

    def test_empty_helplines_use_defaults(self, knowledge_agent):
        assert len(knowledge_agent.build_crisis_support([])['helplines']) == len(DEFAULT_HELPLINES)


class TestEmotionalAgent:

    @pytest.fixture
    def agent(self, config, insight):
        return EmotionalAgent(config, insight)

    def test_thriving_with_rule_based_insights(self, agent, thriving_payload):
        decision = agent.evaluate(make_context(thriving_payload))
        output = decision.output

        assert output['level'] == 'green'
        assert output['is_stable']
        assert output['who5_score'] == 100
        assert output['insight_source'] == 'rules'
        assert output['insights'][0] == 'You are feeling good overall'
        assert output['encouragement'].startswith("You're doing well")
        assert decision.confidence == 0.7

    def test_positive_screens_add_insights(self, agent):
        decision = agent.evaluate(make_context(STRUGGLING_PAYLOAD))
        output = decision.output

        assert output['level'] == 'orange'
        assert not output['is_stable']
        assert output['risk_flags']['depression_risk']
        assert 'You might be feeling very low lately' in output['insights']

    def test_legacy_input_lowers_confidence(self, agent):
        decision = agent.evaluate(make_context({'mood_score': 6, 'stress_level': 'low'}))
        assert decision.confidence == 0.5

    def test_model_insights(self, config, fake_llm, thriving_payload):
        service = InsightService(fake_llm, {**config, 'insight': {'enabled': True}})
        decision = EmotionalAgent(config, service).evaluate(make_context(thriving_payload))

        assert decision.output['insight_source'] == 'model'
        assert decision.output['insights'] == ['You are doing well']
        assert decision.output['encouragement'] == 'Keep going'

    def test_malformed_model_output_uses_rules(self, config, fake_llm, thriving_payload):
        fake_llm.generate.return_value = 'Here are your insights: stay strong'
        service = InsightService(fake_llm, {**config, 'insight': {'enabled': True}})

        decision = EmotionalAgent(config, service).evaluate(make_context(thriving_payload))

        assert decision.output['insight_source'] == 'rules'
        assert decision.output['insights']

    def test_journal_sentiment(self, agent):
        payload = {'mood_score': 7, 'journal': 'A good and happy day'}
        decision = agent.evaluate(make_context(payload))

        assert decision.output['sentiment']['score'] > 0
        assert 'Your journal shows positive feelings' in decision.output['insights']

    def test_trend_uses_history(self, agent, thriving_payload):
        recent = [make_entry(phq2_total=0, days_ago=i) for i in range(7)]
        previous = [make_entry(phq2_total=4, days_ago=7 + i) for i in range(7)]
        memory = make_memory(entries=recent + previous, stage='stabilizing')

        decision = agent.evaluate(make_context(thriving_payload, memory=memory))

        assert decision.output['trend']['direction'] == 'improving'
        assert decision.confidence == 0.9

    def test_fallback_output_is_neutral(self, agent, thriving_payload):
        decision = agent.fallback(make_context(thriving_payload), ValueError("bad"))

        assert decision.output['level'] == 'yellow'
        assert decision.output['is_stable']
        assert decision.output['who5_score'] == 50
        assert decision.output['insights'] == [FALLBACK_INSIGHT]

    @pytest.mark.parametrize('history,answered,expected', [
        (0, False, 0.5),
        (3, False, 0.6),
        (7, True, 0.85),
        (14, True, 0.9),
    ])
    def test_confidence(self, history, answered, expected):
        assert EmotionalAgent.calculate_confidence(history, answered) == expected


class TestInterventionAgent:

    @pytest.fixture
    def agent(self, config, storage, insight):
        return InterventionAgent(config, storage, insight)

    def test_selection_is_deduplicated_by_type(self, agent):
        picks = agent.select_interventions('distress', EmotionalTier.RED, 6, 6, 0)
        types = [c.type for c in picks]

        assert len(types) == len(set(types))
        assert types[:2] == ['grounding_technique', 'guided_breathing']
        # Stage pick wins over the tier pick of the same type
        assert picks[0].title == '5-4-3-2-1 Grounding Technique'

    def test_red_tier_keeps_low_load_top_three(self, agent):
        memory = make_memory(stage='distress')
        context = make_context({'mood_score': 5}, memory=memory).with_decisions(
            emotional=emotional_decision('red', phq2=6, gad2=6, who5=0)
        )

        decision = agent.evaluate(context)
        recommended = decision.output['recommended_interventions']

        assert [r['type'] for r in recommended] == [
            'grounding_technique', 'guided_breathing', 'behavioral_activation'
        ]
        assert all(r['cognitive_load'] == 'low' for r in recommended)
        assert [a['priority'] for a in decision.actions] == [1, 2, 3]
        assert decision.confidence == 0.5

    def test_ranking_is_deterministic(self, agent):
        context = make_context({'mood_score': 5}, memory=make_memory(stage='stabilizing')).with_decisions(
            emotional=emotional_decision('yellow', phq2=3, gad2=3, who5=55)
        )
        first = agent.evaluate(context).output
        second = agent.evaluate(context).output
        assert first == second

    def test_thriving_candidates(self, agent):
        picks = agent.select_interventions('thriving', EmotionalTier.GREEN, 0, 0, 100)
        assert [c.type for c in picks] == ['values_work', 'gentle_movement']

    def test_personal_history_reorders(self, agent, storage):
        for _ in range(3):
            storage.insert_outcome(InterventionOutcome('user-1', None, 'gentle_movement', True, rating=5))

        context = make_context({'mood_score': 8}, memory=make_memory(stage='thriving')).with_decisions(
            emotional=emotional_decision('green', who5=100)
        )
        decision = agent.evaluate(context)

        assert decision.output['recommended_interventions'][0]['type'] == 'gentle_movement'
        assert decision.confidence == 0.6

    def test_cut_to_top_three(self, agent):
        context = make_context({'mood_score': 5}, memory=make_memory(stage='stabilizing')).with_decisions(
            emotional=emotional_decision('yellow', phq2=3, who5=60)
        )
        output = agent.evaluate(context).output

        assert output['candidate_types'] == [
            'behavioral_activation', 'gratitude_practice', 'social_connection', 'gentle_movement'
        ]
        assert [r['type'] for r in output['recommended_interventions']] == [
            'behavioral_activation', 'gratitude_practice', 'social_connection'
        ]


class TestPersonalSuccessRanking:

    def test_no_history_uses_priority(self):
        ranked = rank_by_personal_success([candidate('b', priority=2), candidate('a', priority=1)], [])
        assert [c.type for c in ranked] == ['a', 'b']

    def test_success_rate_wins(self):
        outcomes = [
            InterventionOutcome('u', None, 'b', True, rating=5),
            InterventionOutcome('u', None, 'a', True, rating=2),
        ]
        ranked = rank_by_personal_success([candidate('a'), candidate('b', priority=2)], outcomes)

        assert [c.type for c in ranked] == ['b', 'a']
        assert ranked[0].success_rate == 1.0

    def test_close_rates_fall_back_to_improvement(self):
        outcomes = [
            InterventionOutcome('u', None, 'a', True, rating=5, improvement_delta=1.0),
            InterventionOutcome('u', None, 'b', True, rating=5, improvement_delta=3.0),
        ]
        ranked = rank_by_personal_success([candidate('a'), candidate('b')], outcomes)
        assert [c.type for c in ranked] == ['b', 'a']

    def test_full_tie_breaks_on_type(self):
        outcomes = [InterventionOutcome('u', None, 'z', True, rating=1)]
        ranked = rank_by_personal_success([candidate('d'), candidate('c')], outcomes)
        assert [c.type for c in ranked] == ['c', 'd']

    @pytest.mark.parametrize('rating,delta,expected', [
        (5, None, True),
        (4, 2.0, True),
        (4, -1.0, False),
        (3, 2.0, False),
        (None, None, False),
    ])
    def test_is_successful(self, rating, delta, expected):
        outcome = InterventionOutcome('u', None, 'a', True, rating=rating, improvement_delta=delta)
        assert is_successful(outcome) is expected

    def test_cognitive_load_filter(self):
        items = [candidate('a', load='low'), candidate('b', load='medium'), candidate('c', load='high')]

        orange = InterventionAgent.adjust_for_cognitive_load(items, EmotionalTier.ORANGE, 'university')
        primary = InterventionAgent.adjust_for_cognitive_load(items, EmotionalTier.GREEN, 'primary')
        secondary = InterventionAgent.adjust_for_cognitive_load(items, EmotionalTier.GREEN, 'secondary')

        assert [c.type for c in orange] == ['a']
        assert [c.type for c in primary] == ['a', 'b']
        assert [c.type for c in secondary] == ['a', 'b', 'c']


class TestEthicsGuardAgent:

    @pytest.fixture
    def agent(self, config, insight):
        return EthicsGuardAgent(config, insight)

    def test_red_tier_allows_only_calming_techniques(self, agent):
        context = ethics_context('red', [GENTLE_MOVEMENT, candidate('guided_breathing')])

        output = agent.evaluate(context).output

        assert [c['type'] for c in output['approved_interventions']] == ['guided_breathing']
        assert output['adjustments'] == [{
            'intervention_type': 'gentle_movement',
            'rule': 'crisis_restriction',
            'reason': 'User in crisis state - only immediate calming techniques allowed',
            'action': 'Filtered out non-crisis intervention',
        }]
        assert output['disclaimer'] == DISCLAIMERS[EmotionalTier.RED]

    def test_compliant_candidate_is_unchanged(self, agent):
        original = candidate('gratitude_practice', description='Think of three small things that went okay')
        decision = agent.evaluate(ethics_context('green', [original]))

        assert decision.output['approved_interventions'] == [original.to_dict()]
        assert decision.output['adjustments_made'] == 0
        assert decision.confidence == 0.95
        assert decision.actions == ({'type': 'gratitude_practice', 'title': 'Gratitude Practice', 'priority': 1},)

    def test_orange_tier_reduces_load(self, agent):
        demanding = candidate('behavioral_activation', load='medium', duration=15)

        output = agent.evaluate(ethics_context('orange', [demanding])).output
        approved = output['approved_interventions'][0]

        assert approved['cognitive_load'] == 'low'
        assert approved['duration'] == 10
        assert approved['adjusted']
        assert output['adjustments'][0]['rule'] == 'cognitive_load'

    def test_low_education_rejects_high_load(self, agent):
        complex_task = candidate('values_work', load='high')
        context = ethics_context('green', [complex_task], profile=UserProfile(education_level='none'))

        output = agent.evaluate(context).output

        assert output['approved_interventions'] == []
        assert output['adjustments'][0]['rule'] == 'education_level'

    def test_low_education_simplifies_language(self, agent):
        task = candidate('mindful_minute', description='Practice mindfulness for one minute')
        context = ethics_context('green', [task], profile=UserProfile(education_level='primary'))

        output = agent.evaluate(context).output

        assert output['approved_interventions'][0]['description'] == (
            'Practice paying attention to the present moment for one minute'
        )
        assert [a['rule'] for a in output['adjustments']] == ['language_simplification']

    def test_unstable_connection_rejects_online_only(self, agent):
        profile = UserProfile(education_level='secondary', internet_stability='low')
        context = ethics_context('green', [candidate('video_tutorial'), candidate('gratitude_practice')], profile)

        output = agent.evaluate(context).output

        assert [c['type'] for c in output['approved_interventions']] == ['gratitude_practice']
        assert output['adjustments'][0]['rule'] == 'connectivity'

    def test_cultural_keyword_rejects(self, agent):
        context = ethics_context('green', [candidate('social_outing', description='Visit a yoga studio nearby')])

        output = agent.evaluate(context).output

        assert output['approved_interventions'] == []
        assert output['adjustments'][0]['reason'] == 'Contains culturally inappropriate content: yoga studio'

    def test_keywords_match_whole_words_only(self, agent):
        context = ethics_context('green', [candidate('craft', description='Paint the old barn door')])
        assert len(agent.evaluate(context).output['approved_interventions']) == 1

    def test_rural_concern_is_flagged_not_rejected(self, agent):
        profile = UserProfile(education_level='secondary', location_type='rural')
        task = candidate('confidence', description='Try public speaking with a friend')

        output = agent.evaluate(ethics_context('green', [task], profile)).output

        assert len(output['approved_interventions']) == 1
        assert output['cultural_flags'] == [{'intervention_type': 'confidence', 'keyword': 'public speaking'}]
        assert output['adjustments_made'] == 0

    def test_medical_language_is_rewritten(self, agent):
        task = candidate('check_in', description='A clinical treatment routine')

        output = agent.evaluate(ethics_context('yellow', [task])).output

        assert output['approved_interventions'][0]['description'] == 'A helpful support routine'
        assert output['adjustments'][0]['rule'] == 'medical_language'

    def test_runs_with_nothing_to_review(self, agent):
        decision = agent.evaluate(ethics_context('yellow', []))
        assert decision.output['approved_interventions'] == []
        assert decision.output['disclaimer'] == DISCLAIMERS[EmotionalTier.YELLOW]

    def test_fallback_approves_nothing(self, agent):
        decision = agent.fallback(ethics_context('green', [candidate('gratitude_practice')]), KeyError('level'))
        assert decision.is_fallback
        assert decision.output['approved_interventions'] == []


class TestSkillAgent:

    @pytest.fixture
    def agent(self, config, storage):
        return SkillAgent(config, storage)

    def _context(self, payload):
        return make_context(payload).with_decisions(emotional=emotional_decision('green'))

    def test_high_energy_defaults(self, agent, thriving_payload):
        decision = agent.evaluate(self._context(thriving_payload))
        output = decision.output

        assert [r['id'] for r in output['recommendations']] == [
            'web_page', 'embroidery', 'breathing_basics', 'small_goals'
        ]
        assert output['target_difficulty'] == 'beginner'
        assert output['preferred_categories'] == ['wellness', 'creative', 'coding']
        assert decision.confidence == 0.5

    def test_low_energy_limits_duration(self, agent):
        payload = {'mood_score': 6, 'energy_level': 'low', 'interests': ['business']}
        output = agent.evaluate(self._context(payload)).output

        assert [r['id'] for r in output['recommendations']] == ['small_goals', 'breathing_basics']
        assert output['preferred_categories'] == ['business']

    def test_completed_skills_are_excluded(self, agent, storage, thriving_payload):
        storage.record_skill_progress(SkillProgress(
            user_id='user-1', skill_id='web_page', completed=True,
            started_at=datetime.now(), completed_at=datetime.now()
        ))

        decision = agent.evaluate(self._context(thriving_payload))

        assert 'web_page' not in [r['id'] for r in decision.output['recommendations']]
        assert decision.confidence == 0.6

    def test_preferences_include_completed_categories(self, storage):
        progress = [SkillProgress('user-1', 'small_goals', True, datetime.now())]
        preferred = analyze_preferences(progress, storage.list_skill_modules(), ['coding'])
        assert preferred == ['coding', 'business']

    @pytest.mark.parametrize('count,difficulty', [(0, 'beginner'), (5, 'intermediate'), (10, 'advanced')])
    def test_target_difficulty(self, count, difficulty):
        assert target_difficulty(count) == difficulty


class TestCourseAgent:

    def _evaluate(self, config, storage, stage):
        context = make_context({'mood_score': 7}, memory=make_memory(stage=stage))
        return CourseAgent(config, storage).evaluate(context.with_decisions(emotional=emotional_decision('green')))

    @pytest.mark.parametrize('stage,course_id', [
        ('thriving', 'c_freelance'),
        ('struggling', 'c_english'),
        ('stabilizing', 'c_budget'),
        ('improving', 'c_freelance'),
        ('distress', 'c_budget'),
        ('unknown', 'c_budget'),
    ])
    def test_ceiling_by_stage(self, config, storage, stage, course_id):
        decision = self._evaluate(config, storage, stage)
        assert decision.output['has_recommendation']
        assert decision.output['course']['id'] == course_id
        assert decision.confidence == 0.7

    def test_completed_courses_are_skipped(self, config, storage):
        storage.record_enrollment(CourseEnrollment('user-1', 'c_english', 'completed'))
        storage.record_enrollment(CourseEnrollment('user-1', 'c_budget', 'in_progress'))

        decision = self._evaluate(config, storage, 'struggling')

        assert decision.output['course']['id'] == 'c_budget'

    def test_nothing_available(self, config, storage):
        for course in storage.list_courses():
            storage.record_enrollment(CourseEnrollment('user-1', course.id, 'completed'))

        decision = self._evaluate(config, storage, 'thriving')

        assert not decision.output['has_recommendation']
        assert decision.output['course'] is None
        assert decision.confidence == 0.5

    def test_configured_ceiling(self, config, storage):
        config['agents']['course'] = {'ceilings': {'thriving': 1}}
        assert self._evaluate(config, storage, 'thriving').output['course']['id'] == 'c_budget'

    def test_pick_course_tie_breaks_on_id(self, storage):
        assert pick_course(storage.list_courses(), set(), 1).id == 'c_budget'
        assert pick_course(storage.list_courses(), {'c_budget', 'c_photo'}, 1) is None
