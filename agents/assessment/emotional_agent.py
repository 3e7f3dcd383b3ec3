"""
Emotional Agent

Analyzes the check-in with the research instruments (PHQ-2, GAD-2, WHO-5):
tier, stability, 7-entry trend, journal sentiment, insights and
encouragement.

Insights come from the generative capability when it returns a valid
``{insights, encouragement}`` object, otherwise from fixed rules keyed on
the scores.
"""

import json
from typing import Any, Dict, List, Optional

from agents.assessment.classifier import (
    TREND_INSUFFICIENT,
    TrendAnalysis,
    analyze_trend,
    generate_emotional_tier,
    generate_simplified_explanation,
)
from agents.assessment.instruments import assess_risk_thresholds, score_all
from utils.agents import BaseAgent
from utils.insight import InsightService
from utils.models import (
    AgentDecision,
    CheckinContext,
    EmotionalTier,
    InstrumentScore,
    SentimentResult,
)


SYSTEM_PROMPT = """You are an empathetic, research-grounded emotional insight agent for women in rural Pakistan.

Your goal is to analyze PHQ-2, GAD-2, and WHO-5 scores to determine the user's emotional state.

CONTEXT:
- Emotional Stage: {stage}
- Trend Direction: {trend_direction}
- Recent Levels: {recent_levels}

GUIDELINES:
1. Analyze the scores using clinical cutoffs (PHQ-2 >= 3, GAD-2 >= 3).
2. If "Emotional Stage" is "distress" or "struggling", prioritize validation and immediate coping.
3. If "Emotional Stage" is "stabilizing" or "thriving", reinforce positive progress.
4. Explain the scores in a warm, non-clinical tone.
5. Flag any high risks (scores >= 3) clearly."""

USER_PROMPT = """Analyze the following PHQ-2, GAD-2, and WHO-5 scores and user context.

SCORES:
- PHQ-2: {phq2} (Risk: {phq2_risk})
- GAD-2: {gad2} (Risk: {gad2_risk})
- WHO-5: {who5} (Wellbeing: {wellbeing})
- Emotional Tier: {tier}
- 7-Day Trend: {trend}

JOURNAL: {journal}

OUTPUT FORMAT:
Respond with valid JSON only:
{{"insights": ["insight 1", "insight 2"], "encouragement": "warm, personalized encouragement string"}}"""

FALLBACK_INSIGHT = 'We are having trouble analyzing your check-in, but we are here for you.'
FALLBACK_ENCOURAGEMENT = 'Take a deep breath. We are logging this issue.'
RECORDED_INSIGHT = 'Your check-in has been recorded.'


class EmotionalAgent(BaseAgent):
    """
    Emotional Agent

    Responsibilities:
    - Score the instruments and classify the tier
    - Decide stability (gates the growth agents)
    - Produce insights and encouragement
    """

    def __init__(self, config: Dict[str, Any], insight: InsightService):
        super().__init__(config, "emotional")
        self.insight = insight

        self.trend_field = self.agent_config.get('trend_field', 'phq2_total')
        self.trend_threshold = self.agent_config.get('trend_threshold', 1.0)
        self.temperature = self.agent_config.get('temperature', 0.7)
        self.default_education = config.get('checkin', {}).get('default_education_level', 'primary')

    def evaluate(self, context: CheckinContext) -> AgentDecision:
        checkin = context.checkin
        memory = context.memory
        language = context.profile.preferred_language or 'en'
        education = context.profile.education_level or self.default_education

        scores = score_all(checkin.answers)
        phq2, gad2, who5 = scores['phq2'], scores['gad2'], scores['who5']
        risk = assess_risk_thresholds(phq2, gad2, who5)
        tier = generate_emotional_tier(phq2, gad2, who5)
        trend = analyze_trend(memory.short_term, self.trend_field, self.trend_threshold)
        is_stable = tier.is_stable

        self.logger.info(
            f"Scores - PHQ-2: {phq2.total}, GAD-2: {gad2.total}, WHO-5: {who5.normalized} -> {tier.value}"
        )

        sentiment = self.insight.sentiment(checkin.journal, language) if checkin.journal else None
        explanation = generate_simplified_explanation(tier, language)

        system_prompt = SYSTEM_PROMPT.format(
            stage=memory.emotional_stage,
            trend_direction=memory.trend_direction,
            recent_levels=json.dumps([e.emotional_level.value for e in memory.short_term[:3]])
        )
        user_prompt = USER_PROMPT.format(
            phq2=phq2.total, phq2_risk=phq2.risk_flag,
            gad2=gad2.total, gad2_risk=gad2.risk_flag,
            who5=who5.normalized, wellbeing='Low' if risk.low_wellbeing else 'OK',
            tier=tier.value, trend=trend.direction,
            journal=json.dumps(checkin.journal or '', ensure_ascii=False)
        )

        result = self.insight.generate_insights(system_prompt, user_prompt, {'temperature': self.temperature})

        if result.ok:
            insights = list(result.insights)
            encouragement = result.encouragement
            insight_source = 'model'
        else:
            self.logger.info(f"Using rule-based insights ({result.error})")
            insights = self.rule_based_insights(phq2, gad2, who5, trend, sentiment, language, education)
            encouragement = explanation
            insight_source = 'rules'

        confidence = self.calculate_confidence(len(memory.short_term), checkin.all_instruments_answered)

        return self.decision(
            context,
            confidence=confidence,
            reasoning=(
                f"Tier {tier.value} from PHQ-2={phq2.total}, GAD-2={gad2.total}, "
                f"WHO-5={who5.normalized}; trend {trend.direction}; insights from {insight_source}"
            ),
            input={
                'answers': dict(checkin.answers),
                'instruments_answered': dict(checkin.instruments_answered),
                'journal_length': len(checkin.journal or ''),
                'history_length': len(memory.short_term),
            },
            output={
                'level': tier.value,
                'is_stable': is_stable,
                'phq2_score': phq2.total,
                'gad2_score': gad2.total,
                'who5_score': who5.normalized,
                'research_scores': {name: score.to_dict() for name, score in scores.items()},
                'risk_flags': risk.to_dict(),
                'trend': trend.to_dict(),
                'sentiment': sentiment.to_dict() if sentiment else None,
                'simplified_explanation': explanation,
                'insights': insights or [RECORDED_INSIGHT],
                'encouragement': encouragement,
                'insight_source': insight_source,
            }
        )

    def rule_based_insights(
        self,
        phq2: InstrumentScore,
        gad2: InstrumentScore,
        who5: InstrumentScore,
        trend: TrendAnalysis,
        sentiment: Optional[SentimentResult],
        language: str,
        education: str
    ) -> List[str]:
        """Deterministic insights keyed on score thresholds"""
        insights = []

        if who5.normalized >= 70:
            insights.append('You are feeling good overall')
        elif who5.normalized >= 50:
            insights.append('Your wellbeing is okay, but could be better')
        else:
            insights.append('You might be struggling right now')

        if trend.direction != TREND_INSUFFICIENT:
            insights.append(trend.description)

        if phq2.risk_flag:
            insights.append('You might be feeling very low lately')

        if gad2.risk_flag:
            insights.append('You might be feeling very worried lately')

        if sentiment is not None:
            if sentiment.score > 0.3:
                insights.append('Your journal shows positive feelings')
            elif sentiment.score < -0.3:
                insights.append('Your journal shows you might be struggling')

        return [self.insight.simplify(text, language, education) for text in insights]

    @staticmethod
    def calculate_confidence(history_length: int, all_instruments_answered: bool) -> float:
        """0.5 base, more with history, +0.2 when all three instruments were answered, capped at 0.95"""
        confidence = 0.5

        if history_length >= 14:
            confidence += 0.2
        elif history_length >= 7:
            confidence += 0.15
        elif history_length >= 3:
            confidence += 0.1

        if all_instruments_answered:
            confidence += 0.2

        return round(min(confidence, 0.95), 2)

    def fallback_output(self, context: CheckinContext) -> Dict[str, Any]:
        """
        Neutral result used when analysis fails. Downstream agents read the
        same keys they would on success.
        """
        neutral_scores = {
            'phq2': InstrumentScore(name='phq2', items=(0, 0), total=0, risk_flag=False),
            'gad2': InstrumentScore(name='gad2', items=(0, 0), total=0, risk_flag=False),
            'who5': InstrumentScore(name='who5', items=(), total=0, risk_flag=False, normalized=50),
        }
        return {
            'level': EmotionalTier.YELLOW.value,
            'is_stable': True,
            'phq2_score': 0,
            'gad2_score': 0,
            'who5_score': 50,
            'research_scores': {name: score.to_dict() for name, score in neutral_scores.items()},
            'risk_flags': None,
            'trend': TrendAnalysis(direction=TREND_INSUFFICIENT).to_dict(),
            'sentiment': None,
            'simplified_explanation': None,
            'insights': [FALLBACK_INSIGHT],
            'encouragement': FALLBACK_ENCOURAGEMENT,
            'insight_source': 'fallback',
        }
