"""
Check-in Pipeline

Orchestrates the check-in agents in a fixed order:
- Crisis Support Agent (gate, can terminate the cycle)
- Emotional Agent
- Intervention Agent
- Ethics Guard Agent
- Skill Agent and Course Agent (stable users only)

State machine:
    START -> MEMORY_LOADED -> CRISIS_CHECKED -> (TERMINATED | EMOTIONAL_ANALYZED)
    -> INTERVENTION_GENERATED -> ETHICS_FILTERED -> SKILL_EVALUATED
    -> MEMORY_UPDATED -> RESPONDED

Nothing is written until every agent has run. Writes then go entry ->
decisions (carrying the entry id) -> long-term memory, so a storage failure
never leaves memory derived from an entry that was not saved.
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from agents.assessment.classifier import generate_simplified_explanation
from agents.assessment.emotional_agent import EmotionalAgent
from agents.assessment.instruments import assess_risk_thresholds, score_all
from agents.therapeutic.course_agent import CourseAgent
from agents.therapeutic.crisis_support_agent import CrisisSupportAgent
from agents.therapeutic.ethics_guard_agent import EthicsGuardAgent
from agents.therapeutic.intervention_agent import InterventionAgent
from agents.therapeutic.knowledge_retrieval_agent import KnowledgeRetrievalAgent
from agents.therapeutic.skill_agent import SkillAgent
from utils.agents import BaseAgent
from utils.encryption import JournalVault
from utils.insight import InsightService
from utils.logger import (
    log_cycle_end,
    log_cycle_start,
    log_dict,
    log_exception,
    log_performance,
    setup_logger,
)
from utils.memory import MemoryManager
from utils.models import (
    DEFAULT_JOURNAL_MAX_LENGTH,
    AgentDecision,
    CheckinContext,
    CheckinSubmission,
    EmotionalEntry,
    EmotionalTier,
    NormalizedCheckin,
    UserProfile,
)
from utils.storage import StorageBackend

logger = setup_logger('checkin_pipeline', 'logs/checkin_pipeline.log')


class PipelineState(str, Enum):
    START = 'start'
    MEMORY_LOADED = 'memory_loaded'
    CRISIS_CHECKED = 'crisis_checked'
    TERMINATED = 'terminated'
    EMOTIONAL_ANALYZED = 'emotional_analyzed'
    INTERVENTION_GENERATED = 'intervention_generated'
    ETHICS_FILTERED = 'ethics_filtered'
    SKILL_EVALUATED = 'skill_evaluated'
    MEMORY_UPDATED = 'memory_updated'
    RESPONDED = 'responded'


@dataclass
class CheckinCycle:
    """Per-check-in state: current stage and the append-only decision log"""
    user_id: str
    cycle_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: PipelineState = PipelineState.START
    decisions: List[AgentDecision] = field(default_factory=list)
    history: List[PipelineState] = field(default_factory=lambda: [PipelineState.START])

    def advance(self, state: PipelineState):
        logger.info(f"[{self.cycle_id}] {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def record(self, decision: AgentDecision) -> AgentDecision:
        self.decisions.append(decision)
        return decision


@dataclass
class CheckinResult:
    """Response for one check-in; ``to_dict`` gives the caller-facing shape"""
    entry_id: str
    level: str
    agent_decisions: Dict[str, Dict[str, Any]]
    crisis_protocol: bool = False
    insights: List[str] = field(default_factory=list)
    encouragement: Optional[str] = None
    trend: Optional[Dict[str, Any]] = None
    interventions: List[Dict[str, Any]] = field(default_factory=list)
    ethical_adjustments: List[Dict[str, Any]] = field(default_factory=list)
    disclaimer: Optional[str] = None
    skill_recommendations: List[Dict[str, Any]] = field(default_factory=list)
    course_recommendation: Optional[Dict[str, Any]] = None
    actions: List[Dict[str, Any]] = field(default_factory=list)
    crisis_support: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.crisis_protocol:
            return {
                'entry_id': self.entry_id,
                'priority': 'CRITICAL',
                'agent': 'crisis',
                'level': self.level,
                'actions': self.actions,
                'crisis_protocol': True,
                'crisis_support': self.crisis_support,
                'message': 'Crisis protocol activated. Please reach out for support.',
                'agent_decisions': self.agent_decisions,
            }

        return {
            'entry_id': self.entry_id,
            'level': self.level,
            'insights': self.insights,
            'encouragement': self.encouragement,
            'trend': self.trend,
            'interventions': self.interventions,
            'ethical_adjustments': self.ethical_adjustments,
            'disclaimer': self.disclaimer,
            'skill_recommendations': self.skill_recommendations,
            'course_recommendation': self.course_recommendation,
            'agent_decisions': self.agent_decisions,
            'crisis_protocol': False,
        }


class CheckinPipeline:
    """
    Check-in Pipeline - runs one check-in through the agents

    This pipeline:
    1. Validates and normalizes the submission
    2. Loads the user's memory
    3. Runs the crisis gate (early exit on activation)
    4. Runs the emotional, intervention and ethics agents
    5. Runs the growth agents for stable users
    6. Persists entry, decisions and long-term memory in that order
    """

    def __init__(
        self,
        storage: StorageBackend,
        insight: InsightService,
        vault: JournalVault,
        config: Dict[str, Any],
        memory_manager: Optional[MemoryManager] = None
    ):
        """
        Initialize check-in pipeline

        Args:
            storage: Storage backend shared by every component
            insight: Generative insight service (falls back to rules)
            vault: Journal encryption
            config: Configuration dictionary
            memory_manager: Optional pre-built memory manager
        """
        logger.info("=" * 70)
        logger.info("Initializing Check-in Pipeline")
        logger.info("=" * 70)

        self.storage = storage
        self.insight = insight
        self.vault = vault
        self.config = config

        checkin_config = config.get('checkin', {})
        self.journal_max_length = checkin_config.get('journal_max_length', DEFAULT_JOURNAL_MAX_LENGTH)
        self.default_language = checkin_config.get('default_language', 'en')

        self.memory_manager = memory_manager or MemoryManager(storage, config)
        self._initialize_agents()

        logger.info("Check-in Pipeline initialized successfully")
        logger.info("=" * 70)

    def _initialize_agents(self):
        self.knowledge_agent = KnowledgeRetrievalAgent(self.storage, self.config)
        self.crisis_agent = CrisisSupportAgent(self.config, self.knowledge_agent)
        self.emotional_agent = EmotionalAgent(self.config, self.insight)
        self.intervention_agent = InterventionAgent(self.config, self.storage, self.insight)
        self.ethics_agent = EthicsGuardAgent(self.config, self.insight)
        self.skill_agent = SkillAgent(self.config, self.storage)
        self.course_agent = CourseAgent(self.config, self.storage)

    @property
    def agents(self) -> List[BaseAgent]:
        """Agents in execution order"""
        return [
            self.crisis_agent,
            self.emotional_agent,
            self.intervention_agent,
            self.ethics_agent,
            self.skill_agent,
            self.course_agent,
        ]

    def process_checkin(
        self,
        user_id: str,
        payload: Dict[str, Any],
        profile: Optional[UserProfile] = None
    ) -> CheckinResult:
        """
        Run one check-in.

        Args:
            user_id: Authenticated user identity
            payload: Raw check-in payload
            profile: Accessibility profile (default: stored profile)

        Returns:
            CheckinResult

        Raises:
            CheckinValidationError: before anything is processed
            StorageError: when the entry or memory cannot be persisted
        """
        submission = CheckinSubmission.from_payload(payload, self.journal_max_length)
        checkin = submission.normalized()

        cycle = CheckinCycle(user_id=user_id)
        start_time = time.time()
        log_cycle_start(logger, user_id, cycle.cycle_id)
        logger.info(f"Submission format: {checkin.source}")
        log_dict(logger, checkin.answers, prefix="Instrument answers")

        try:
            result = self._run(cycle, checkin, profile)
        except Exception as e:
            log_exception(logger, e, f"check-in cycle {cycle.cycle_id} ({cycle.state.value})")
            log_cycle_end(logger, cycle.cycle_id, status=f"failed at {cycle.state.value}")
            raise

        log_performance(
            logger,
            'check-in',
            time.time() - start_time,
            {'decisions': len(cycle.decisions), 'level': result.level}
        )
        log_cycle_end(logger, cycle.cycle_id, status=cycle.state.value)
        return result

    def _run(
        self,
        cycle: CheckinCycle,
        checkin: NormalizedCheckin,
        profile: Optional[UserProfile]
    ) -> CheckinResult:
        user_id = cycle.user_id

        memory = self.memory_manager.get_user_memory(user_id)
        if profile is None:
            profile = self.storage.get_profile(user_id)
        context = CheckinContext(user_id=user_id, checkin=checkin, memory=memory, profile=profile)
        cycle.advance(PipelineState.MEMORY_LOADED)
        logger.info(
            f"Loaded memory: {len(memory.short_term)} recent entries, "
            f"stage: {memory.emotional_stage}, trend: {memory.trend_direction}"
        )

        # Crisis gate
        crisis = cycle.record(self._invoke(self.crisis_agent, context))
        cycle.advance(PipelineState.CRISIS_CHECKED)

        if crisis.should_activate:
            return self._terminate(cycle, context, crisis)

        emotional = cycle.record(self._invoke(self.emotional_agent, context))
        context = context.with_decisions(emotional=emotional)
        cycle.advance(PipelineState.EMOTIONAL_ANALYZED)

        intervention = cycle.record(self._invoke(self.intervention_agent, context))
        context = context.with_decisions(intervention=intervention)
        cycle.advance(PipelineState.INTERVENTION_GENERATED)

        ethics = cycle.record(self._invoke(self.ethics_agent, context))
        cycle.advance(PipelineState.ETHICS_FILTERED)

        skill = course = None
        if emotional.output.get('is_stable'):
            skill = cycle.record(self._invoke(self.skill_agent, context))
            course = cycle.record(self._invoke(self.course_agent, context))
        else:
            logger.info(f"Skipping growth agents - user not emotionally stable ({emotional.output['level']})")
        cycle.advance(PipelineState.SKILL_EVALUATED)

        entry = self.storage.insert_entry(self.build_entry(context, emotional))
        decisions = self._persist_decisions(cycle, entry.id)

        self.memory_manager.update_long_term_trends(user_id)
        cycle.advance(PipelineState.MEMORY_UPDATED)

        emotional_out = decisions['emotional'].output
        ethics_out = decisions['ethics_guard'].output

        result = CheckinResult(
            entry_id=entry.id,
            level=entry.emotional_level.value,
            insights=list(emotional_out.get('insights') or []),
            encouragement=emotional_out.get('encouragement'),
            trend=emotional_out.get('trend'),
            interventions=list(ethics_out.get('approved_interventions', [])),
            ethical_adjustments=list(ethics_out.get('adjustments', [])),
            disclaimer=ethics_out.get('disclaimer'),
            skill_recommendations=list(skill.output.get('recommendations', [])) if skill else [],
            course_recommendation=course.output.get('course') if course else None,
            agent_decisions={name: d.summary() for name, d in decisions.items()}
        )
        cycle.advance(PipelineState.RESPONDED)

        logger.info(
            f"Check-in processed. Level: {result.level}, interventions: {len(result.interventions)}, "
            f"skills: {len(result.skill_recommendations)}"
        )
        return result

    def _terminate(self, cycle: CheckinCycle, context: CheckinContext, crisis: AgentDecision) -> CheckinResult:
        """Crisis path: persist the forced-red entry and the crisis decision, skip everything else"""
        cycle.advance(PipelineState.TERMINATED)
        logger.critical(f"[{cycle.cycle_id}] CRISIS PROTOCOL ACTIVATED - user: {context.user_id}")

        entry = self.storage.insert_entry(self.build_entry(context, None, crisis_override=True))
        decisions = self._persist_decisions(cycle, entry.id)

        crisis_support = self.knowledge_agent.build_crisis_support(crisis.output.get('helplines', []))

        return CheckinResult(
            entry_id=entry.id,
            level=EmotionalTier.RED.value,
            crisis_protocol=True,
            actions=list(crisis.actions),
            crisis_support=crisis_support,
            agent_decisions={name: d.summary() for name, d in decisions.items()}
        )

    def _invoke(self, agent: BaseAgent, context: CheckinContext) -> AgentDecision:
        """Run one agent; any failure becomes that agent's typed fallback decision"""
        try:
            decision = agent.evaluate(context)
        except Exception as e:
            log_exception(logger, e, f"{agent.name} agent")
            decision = agent.fallback(context, e)
            logger.warning(f"{agent.name} agent fell back: {decision.reasoning}")

        logger.info(
            f"{agent.name}: confidence={decision.confidence}, activate={decision.should_activate}, "
            f"fallback={decision.is_fallback}"
        )
        return decision

    def _persist_decisions(self, cycle: CheckinCycle, entry_id: str) -> Dict[str, AgentDecision]:
        stored = self.storage.insert_decisions(
            [replace(d, entry_id=entry_id) for d in cycle.decisions]
        )
        for decision in stored:
            logger.info(f"Logged decision for {decision.agent} (ID: {decision.id}, confidence: {decision.confidence})")
        return {d.agent: d for d in stored}

    def build_entry(
        self,
        context: CheckinContext,
        emotional: Optional[AgentDecision],
        crisis_override: bool = False
    ) -> EmotionalEntry:
        """
        Assemble the complete entry, tier included, before it is written.

        The crisis path has no emotional decision; scores are computed
        directly from the answers and the tier is forced to red.
        """
        checkin = context.checkin
        language = context.profile.preferred_language or self.default_language
        answers = checkin.answers

        scores = score_all(answers)
        risk = assess_risk_thresholds(scores['phq2'], scores['gad2'], scores['who5'])

        phq2_total = scores['phq2'].total
        gad2_total = scores['gad2'].total
        who5_normalized = scores['who5'].normalized
        depression_risk = risk.depression_risk
        anxiety_risk = risk.anxiety_risk
        risk_probability = risk.risk_probability
        sentiment_score = None
        explanation = None

        if crisis_override:
            tier = EmotionalTier.RED
        else:
            output = emotional.output
            tier = EmotionalTier(output['level'])
            # Totals follow what the emotional agent reported, fallback included
            phq2_total = output['phq2_score']
            gad2_total = output['gad2_score']
            who5_normalized = output['who5_score']
            flags = output.get('risk_flags') or {}
            depression_risk = flags.get('depression_risk', False)
            anxiety_risk = flags.get('anxiety_risk', False)
            risk_probability = flags.get('risk_probability', 0.0)
            sentiment = output.get('sentiment')
            sentiment_score = sentiment['score'] if sentiment else None
            explanation = output.get('simplified_explanation')

        return EmotionalEntry(
            user_id=context.user_id,
            emotional_level=tier,
            created_at=datetime.now(),
            mood_score=checkin.mood_score,
            energy_level=checkin.energy_level,
            stress_level=checkin.stress_level,
            phq2_q1=answers['phq2_q1'],
            phq2_q2=answers['phq2_q2'],
            phq2_total=phq2_total,
            gad2_q1=answers['gad2_q1'],
            gad2_q2=answers['gad2_q2'],
            gad2_total=gad2_total,
            who5_q1=answers['who5_q1'],
            who5_q2=answers['who5_q2'],
            who5_q3=answers['who5_q3'],
            who5_normalized=who5_normalized,
            depression_risk_flag=depression_risk,
            anxiety_risk_flag=anxiety_risk,
            risk_probability=risk_probability,
            journal_sentiment_score=sentiment_score,
            simplified_explanation=explanation or generate_simplified_explanation(tier, language),
            journal_sealed=self.vault.seal(checkin.journal).to_dict() if checkin.journal else None,
            interests=checkin.interests,
            crisis_override=crisis_override
        )
