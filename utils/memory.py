"""
Memory Manager

Short-term memory is the last 7 days of entries (newest first). Long-term
memory is one derived record per user: emotional stage, trend direction,
consistency, check-in count and engagement score.

Agents only ever see the read-only UserMemory snapshot. The long-term record
is recomputed from the full 30-day history at the end of every non-crisis
check-in.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Sequence

from agents.assessment.classifier import (
    TREND_DECLINING,
    TREND_IMPROVING,
    TREND_INSUFFICIENT,
    TREND_STABLE,
    calculate_consistency,
    calculate_emotional_stage,
    entry_wellbeing,
)
from utils.logger import setup_logger
from utils.models import EmotionalEntry, LongTermSummary, MemoryRecord, UserMemory
from utils.storage import StorageBackend

logger = setup_logger('memory', 'logs/memory.log')

# WHO-5 points (0-100 scale) needed to call a long-term direction
WELLBEING_TREND_THRESHOLD = 5


def calculate_trend_direction(history: Sequence[EmotionalEntry]) -> str:
    """
    Long-term direction from WHO-5 wellbeing.

    Args:
        history: Entries oldest first

    Returns:
        'improving', 'declining', 'stable' or 'insufficient_data'
    """
    if len(history) < 3:
        return TREND_INSUFFICIENT

    recent = history[-7:]
    older = history[:min(7, len(history) - 7)] if len(history) > 7 else []

    if not older:
        return TREND_INSUFFICIENT

    recent_avg = sum(entry_wellbeing(e) for e in recent) / len(recent)
    older_avg = sum(entry_wellbeing(e) for e in older) / len(older)
    change = recent_avg - older_avg

    if change > WELLBEING_TREND_THRESHOLD:
        return TREND_IMPROVING
    if change < -WELLBEING_TREND_THRESHOLD:
        return TREND_DECLINING
    return TREND_STABLE


class MemoryManager:
    """Loads and recomputes per-user memory through the storage port"""

    def __init__(self, storage: StorageBackend, config: Dict[str, Any]):
        self.storage = storage
        self.config = config

        checkin_config = config.get('checkin', {})
        self.short_term_days = checkin_config.get('short_term_days', 7)
        self.long_term_days = checkin_config.get('long_term_days', 30)

        logger.info("Memory manager initialized")
        logger.info(f"Short-term window: {self.short_term_days} days")
        logger.info(f"Long-term window: {self.long_term_days} days")

    def get_user_memory(self, user_id: str) -> UserMemory:
        """
        Snapshot of a user's memory. Creates the long-term record on first access.
        """
        record = self.storage.get_or_create_memory_record(user_id)
        since = datetime.now() - timedelta(days=self.short_term_days)
        short_term = self.storage.list_entries(user_id, since=since)

        logger.debug(
            f"Loaded memory for {user_id}: {len(short_term)} short-term entries, "
            f"stage={record.long_term.stage}, trend={record.trend_direction}"
        )

        return UserMemory(
            user_id=user_id,
            short_term=tuple(short_term),
            long_term=record.long_term,
            trend_direction=record.trend_direction,
            engagement_score=record.engagement_score,
            last_updated=record.last_updated
        )

    def update_long_term_trends(self, user_id: str) -> Optional[MemoryRecord]:
        """
        Recompute the long-term record from the last 30 days.

        Returns:
            Updated record, or None when the user has no entries
        """
        since = datetime.now() - timedelta(days=self.long_term_days)
        history = self.storage.list_entries(user_id, since=since)

        if not history:
            logger.debug(f"No history for {user_id} - long-term memory unchanged")
            return None

        oldest_first = list(reversed(history))
        moods = [e.mood_score for e in history if e.mood_score is not None]

        summary = LongTermSummary(
            stage=calculate_emotional_stage(history),
            avg_mood=round(sum(moods) / len(moods), 2) if moods else 0.0,
            consistency=calculate_consistency(history),
            total_checkins=len(history),
            last_checkin=history[0].created_at
        )

        record = MemoryRecord(
            user_id=user_id,
            long_term=summary,
            trend_direction=calculate_trend_direction(oldest_first),
            engagement_score=self.calculate_engagement_score(user_id, len(history), since),
            last_updated=datetime.now()
        )
        self.storage.save_memory_record(record)

        logger.info(
            f"Long-term memory updated for {user_id}: stage={summary.stage}, "
            f"trend={record.trend_direction}, engagement={record.engagement_score}"
        )
        return record

    def calculate_engagement_score(self, user_id: str, checkin_count: int, since: datetime) -> int:
        """
        Check-ins: 2 points each, up to 60.
        Skills completed in the window: 4 points each, up to 40.
        """
        completed_skills = [
            p for p in self.storage.list_skill_progress(user_id)
            if p.completed and p.completed_at is not None and p.completed_at >= since
        ]
        return min(60, checkin_count * 2) + min(40, len(completed_skills) * 4)

    def get_memory_summary(self, user_id: str) -> Dict[str, Any]:
        """Current stage, trend and engagement for the query surface"""
        memory = self.get_user_memory(user_id)
        return {
            'user_id': user_id,
            'emotional_stage': memory.emotional_stage,
            'trend_direction': memory.trend_direction,
            'engagement_score': memory.engagement_score,
            'long_term': memory.long_term.to_dict(),
            'short_term_count': len(memory.short_term),
            'recent_levels': [e.emotional_level.value for e in memory.short_term],
            'last_updated': memory.last_updated.isoformat() if memory.last_updated else None,
        }
