"""
Outcome Tracker

Reflection loop for the check-in agents:
- Records user feedback on recommended actions
- Logs confidence adjustments against the agent that made the decision
- Aggregates outcomes for the memory query surface

Runs independently of the check-in pipeline. Recording an outcome never
edits a stored decision; adjustments are appended to their own log.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd

from utils.errors import OutcomeValidationError
from utils.logger import setup_logger
from utils.models import ConfidenceAdjustment, InterventionOutcome, to_jsonable
from utils.storage import StorageBackend

logger = setup_logger('outcomes', 'logs/outcomes.log')

# Confidence change per rating point away from neutral (3)
ADJUSTMENT_STEP = 0.05
NEUTRAL_RATING = 3


def _optional_number(value) -> Optional[float]:
    return None if pd.isna(value) else round(float(value), 2)


class OutcomeTracker:
    """
    Outcome Tracker

    Rating 5: +0.10, 4: +0.05, 3: 0, 2: -0.05, 1: -0.10, applied to the
    originating decision's confidence and clamped to [0, 1].
    """

    def __init__(self, storage: StorageBackend, config: Dict[str, Any]):
        self.storage = storage
        self.config = config

        outcome_config = config.get('outcomes', {})
        self.default_history_limit = outcome_config.get('history_limit', 20)
        self.confidence_window = outcome_config.get('confidence_window', 50)

        logger.info("Outcome tracker initialized")

    def record_outcome(
        self,
        user_id: str,
        decision_id: Optional[str],
        action: str,
        completed: bool,
        rating: Optional[int] = None,
        time_to_complete: Optional[float] = None
    ) -> InterventionOutcome:
        """
        Record feedback on a recommended action.

        Args:
            user_id: User giving feedback
            decision_id: Decision that recommended the action
            action: Action type (e.g. 'guided_breathing')
            completed: Whether the user completed it
            rating: Optional 1-5 rating
            time_to_complete: Optional minutes taken

        Returns:
            Stored outcome

        Raises:
            OutcomeValidationError: rating outside 1-5 or missing action
        """
        self._validate(action, rating, time_to_complete)

        outcome = self.storage.insert_outcome(InterventionOutcome(
            user_id=user_id,
            decision_id=decision_id,
            action=action,
            completed=bool(completed),
            rating=rating,
            time_to_complete=time_to_complete,
            completed_at=datetime.now() if completed else None
        ))
        logger.info(f"Outcome recorded for {user_id}: {action} completed={completed} rating={rating}")

        if completed and rating is not None:
            self.adjust_agent_confidence(decision_id, rating)

        return outcome

    @staticmethod
    def _validate(action: str, rating: Optional[int], time_to_complete: Optional[float]):
        if not action or not isinstance(action, str):
            raise OutcomeValidationError("Action is required")
        if rating is not None:
            if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
                raise OutcomeValidationError(f"Rating must be an integer between 1 and 5, got {rating!r}")
        if time_to_complete is not None and time_to_complete < 0:
            raise OutcomeValidationError("Time to complete cannot be negative")

    def adjust_agent_confidence(self, decision_id: Optional[str], rating: int) -> Optional[ConfidenceAdjustment]:
        """Log a confidence adjustment for the agent behind ``decision_id``"""
        decision = self.storage.get_decision(decision_id) if decision_id else None
        if decision is None:
            logger.warning(f"Decision {decision_id} not found for confidence adjustment")
            return None

        adjustment = (rating - NEUTRAL_RATING) * ADJUSTMENT_STEP
        new_confidence = round(max(0.0, min(1.0, decision.confidence + adjustment)), 4)

        stored = self.storage.insert_confidence_adjustment(ConfidenceAdjustment(
            agent=decision.agent,
            original_confidence=decision.confidence,
            adjusted_confidence=new_confidence,
            reason=f"User rating: {rating}/5 (adjustment: {adjustment:+.2f})",
            decision_id=decision.id
        ))

        logger.info(f"Agent {decision.agent} confidence adjusted: {decision.confidence} -> {new_confidence:.2f}")
        return stored

    def get_past_outcomes(self, user_id: str, limit: Optional[int] = None) -> List[InterventionOutcome]:
        """Completed outcomes, newest first"""
        return self.storage.list_outcomes(
            user_id, completed_only=True, limit=limit or self.default_history_limit
        )

    def get_action_success_rate(self, user_id: str, action: str) -> Optional[float]:
        """
        Share of completed attempts rated 4 or 5.

        Returns:
            Rate in [0, 1], or None when the action was never completed
        """
        attempts = [o for o in self.storage.list_outcomes(user_id, completed_only=True) if o.action == action]
        if not attempts:
            return None
        successful = sum(1 for o in attempts if o.rating is not None and o.rating >= 4)
        return successful / len(attempts)

    def get_agent_average_confidence(self, agent: str) -> Optional[float]:
        """Mean adjusted confidence over the agent's most recent adjustments"""
        adjustments = sorted(
            self.storage.list_confidence_adjustments(agent),
            key=lambda a: a.created_at,
            reverse=True
        )[:self.confidence_window]
        if not adjustments:
            return None
        return sum(a.adjusted_confidence for a in adjustments) / len(adjustments)

    def get_confidence_history(self, agent: Optional[str] = None) -> List[Dict[str, Any]]:
        return [to_jsonable(a) for a in self.storage.list_confidence_adjustments(agent)]

    def get_intervention_analytics(self, user_id: str) -> List[Dict[str, Any]]:
        """
        Outcomes aggregated per action type.

        Returns:
            One row per action: attempts, completions, completion_rate,
            avg_rating, avg_time_to_complete. Sorted by attempts, then action.
        """
        outcomes = self.storage.list_outcomes(user_id)
        if not outcomes:
            return []

        df = pd.DataFrame([
            {
                'action': o.action,
                'completed': o.completed,
                'rating': o.rating,
                'time_to_complete': o.time_to_complete,
            }
            for o in outcomes
        ])
        df['rating'] = pd.to_numeric(df['rating'], errors='coerce')
        df['time_to_complete'] = pd.to_numeric(df['time_to_complete'], errors='coerce')

        analytics = []
        for action, action_df in df.groupby('action'):
            attempts = len(action_df)
            completions = int(action_df['completed'].sum())
            analytics.append({
                'action': action,
                'attempts': attempts,
                'completions': completions,
                'completion_rate': round(completions / attempts, 2),
                'avg_rating': _optional_number(action_df['rating'].mean()),
                'avg_time_to_complete': _optional_number(action_df['time_to_complete'].mean()),
            })

        analytics.sort(key=lambda row: (-row['attempts'], row['action']))
        return analytics

    def get_decision_history(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        """Paginated decisions, newest first"""
        return [d.to_record() for d in self.storage.list_decisions(user_id, limit=limit, offset=offset)]
