"""
Crisis Support Agent

Highest-priority gate. Runs first on every check-in and, when it fires,
the pipeline stops: no other agent runs and the user sees crisis content only.

Trigger: self-reported mood <= 3 AND self-reported stress == 'high'. Values
derived from the instrument answers never trip the gate.
"""

from dataclasses import replace
from typing import Any, Dict, List

from agents.therapeutic.knowledge_retrieval_agent import DEFAULT_HELPLINES, KnowledgeRetrievalAgent
from utils.agents import BaseAgent
from utils.models import AgentDecision, CheckinContext, EmotionalTier


class CrisisSupportAgent(BaseAgent):
    """
    Crisis gate.

    PROTOCOL on activation:
    1. Show the crisis modal (flagging an escalating pattern)
    2. Load helplines
    3. Notify support staff
    """

    def __init__(self, config: Dict[str, Any], knowledge_agent: KnowledgeRetrievalAgent):
        super().__init__(config, "crisis")
        self.knowledge_agent = knowledge_agent

        self.mood_cutoff = self.agent_config.get('mood_cutoff', 3)
        self.stress_trigger = self.agent_config.get('stress_trigger', 'high')
        self.escalation_count = self.agent_config.get('escalation_count', 2)

        self.logger.info(
            f"Trigger: mood <= {self.mood_cutoff} and stress == '{self.stress_trigger}'; "
            f"escalating at {self.escalation_count} recent red entries"
        )

    def evaluate(self, context: CheckinContext) -> AgentDecision:
        mood = context.checkin.reported_mood
        stress = context.checkin.reported_stress
        is_critical = self.is_critical(context)

        recent_crisis_count = sum(
            1 for entry in context.memory.short_term if entry.emotional_level == EmotionalTier.RED
        )
        is_escalating = recent_crisis_count >= self.escalation_count

        helplines = self.knowledge_agent.get_helplines() if is_critical else []

        if is_critical:
            self.logger.critical("=" * 70)
            self.logger.critical(f"CRISIS DETECTED - user: {context.user_id}")
            self.logger.critical(f"Mood: {mood}, stress: {stress}, recent red entries: {recent_crisis_count}")
            if is_escalating:
                self.logger.critical("ESCALATING PATTERN DETECTED")
            self.logger.critical("=" * 70)

            reasoning = (
                f"Critical risk detected: mood={mood}, stress={stress}. "
                f"Recent crisis count: {recent_crisis_count}."
            )
            if is_escalating:
                reasoning += " ESCALATING PATTERN DETECTED."
        else:
            reasoning = f"No immediate crisis detected. Mood={mood}, stress={stress}"

        helpline_rows = [h.to_dict() for h in helplines]
        actions = self.crisis_actions(context.user_id, is_escalating, helpline_rows) if is_critical else []

        return self.decision(
            context,
            confidence=0.95 if is_critical else 0.0,
            reasoning=reasoning,
            input={
                'mood_score': mood,
                'stress_level': stress,
                'recent_crisis_count': recent_crisis_count,
                'is_escalating': is_escalating,
            },
            output={
                'risk_level': 'CRITICAL' if is_critical else 'LOW',
                'requires_immediate': is_critical,
                'escalating': is_escalating,
                'helplines': helpline_rows,
            },
            actions=actions,
            should_activate=is_critical
        )

    def is_critical(self, context: CheckinContext) -> bool:
        mood = context.checkin.reported_mood
        return (
            mood is not None
            and mood <= self.mood_cutoff
            and context.checkin.reported_stress == self.stress_trigger
        )

    @staticmethod
    def crisis_actions(user_id: str, escalating: bool, helplines) -> List[Dict[str, Any]]:
        return [
            {'type': 'SHOW_CRISIS_MODAL', 'priority': 1, 'data': {'escalating': escalating}},
            {'type': 'LOAD_HELPLINES', 'priority': 1, 'data': {'helplines': helplines}},
            {'type': 'NOTIFY_SUPPORT', 'priority': 2, 'data': {'user_id': user_id, 'severity': 'critical'}},
        ]

    def fallback_output(self, context: CheckinContext) -> Dict[str, Any]:
        return {'risk_level': 'LOW', 'requires_immediate': False, 'escalating': False, 'helplines': []}

    def fallback(self, context: CheckinContext, error: Exception) -> AgentDecision:
        """
        A failed evaluation still honours the trigger: a critical check-in
        activates with the default helplines.
        """
        decision = super().fallback(context, error)
        if not self.is_critical(context):
            return decision

        self.logger.critical(f"CRISIS DETECTED (fallback path) - user: {context.user_id}")
        helpline_rows = [h.to_dict() for h in DEFAULT_HELPLINES]
        return replace(
            decision,
            should_activate=True,
            output={
                'risk_level': 'CRITICAL',
                'requires_immediate': True,
                'escalating': False,
                'helplines': helpline_rows,
            },
            actions=tuple(self.crisis_actions(context.user_id, False, helpline_rows))
        )
