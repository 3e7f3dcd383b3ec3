"""
Agent Module

Shared interface for the check-in agents. The pipeline holds a fixed,
ordered list of these and calls ``evaluate`` on each:

- CrisisAgent
- EmotionalAgent
- InterventionAgent
- EthicsGuardAgent
- SkillAgent
- CourseAgent
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional

from utils.logger import setup_logger
from utils.models import AgentDecision, CheckinContext


class BaseAgent(ABC):
    """Base class for all agents"""

    def __init__(self, config: Dict[str, Any], name: str):
        self.config = config
        self.name = name
        self.agent_config = config.get('agents', {}).get(name, {})
        self.logger = setup_logger(f'agent_{name}', f'logs/agent_{name}.log')
        self.logger.info(f"{name} initialized")

    @abstractmethod
    def evaluate(self, context: CheckinContext) -> AgentDecision:
        """Inspect the context and return this agent's decision"""

    def fallback_output(self, context: CheckinContext) -> Dict[str, Any]:
        """Neutral payload used when ``evaluate`` fails"""
        return {}

    def decision(
        self,
        context: CheckinContext,
        confidence: float,
        reasoning: str,
        output: Dict[str, Any],
        input: Optional[Dict[str, Any]] = None,
        actions: Iterable[Dict[str, Any]] = (),
        should_activate: bool = True
    ) -> AgentDecision:
        return AgentDecision(
            agent=self.name,
            user_id=context.user_id,
            confidence=round(min(max(confidence, 0.0), 1.0), 4),
            reasoning=reasoning,
            input=input or {},
            output=output,
            actions=tuple(actions),
            should_activate=should_activate
        )

    def fallback(self, context: CheckinContext, error: Exception) -> AgentDecision:
        """Typed neutral decision recorded in place of a failed evaluation"""
        return AgentDecision(
            agent=self.name,
            user_id=context.user_id,
            confidence=0.0,
            reasoning=f"Fallback: {self.name} agent failed ({type(error).__name__}: {error})",
            input={'error': str(error)},
            output=self.fallback_output(context),
            should_activate=False,
            is_fallback=True
        )
