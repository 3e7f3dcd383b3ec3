"""
Skill Growth Agent

Recommends skill modules once the user is emotionally stable. The
pipeline only invokes it when the Emotional Agent reports ``is_stable``.
"""

from typing import Any, Dict, List, Sequence, Set

from utils.agents import BaseAgent
from utils.models import AgentDecision, CheckinContext, SkillModule, SkillProgress
from utils.storage import StorageBackend


DEFAULT_CATEGORIES = ('wellness', 'creative', 'coding')

MAX_DURATION_BY_ENERGY = {
    'low': 15,
    'medium': 20,
    'high': 30,
}


def target_difficulty(completed_count: int) -> str:
    if completed_count >= 10:
        return 'advanced'
    if completed_count >= 5:
        return 'intermediate'
    return 'beginner'


def max_duration(energy_level: str) -> int:
    return MAX_DURATION_BY_ENERGY.get(energy_level, MAX_DURATION_BY_ENERGY['low'])


def analyze_preferences(progress: Sequence[SkillProgress], skills: Sequence[SkillModule], interests: Sequence[str]) -> List[str]:
    """
    Declared interests plus categories of completed skills.

    Returns:
        Preferred categories in first-seen order, or the defaults if none
    """
    categories = list(dict.fromkeys(interests))

    category_by_id = {s.id: s.category for s in skills}
    for p in progress:
        category = category_by_id.get(p.skill_id)
        if p.completed and category and category not in categories:
            categories.append(category)

    return categories or list(DEFAULT_CATEGORIES)


class SkillAgent(BaseAgent):
    """Skill Growth Agent"""

    def __init__(self, config: Dict[str, Any], storage: StorageBackend):
        super().__init__(config, "skill")
        self.storage = storage
        self.top_n = self.agent_config.get('top_n', 5)

    def evaluate(self, context: CheckinContext) -> AgentDecision:
        checkin = context.checkin
        energy = checkin.energy_level or 'low'
        level = context.emotional.output['level']

        skills = self.storage.list_skill_modules()
        progress = self.storage.list_skill_progress(context.user_id)
        completed_ids: Set[str] = {p.skill_id for p in progress if p.completed}

        preferred = analyze_preferences(progress, skills, checkin.interests)
        difficulty = target_difficulty(len(completed_ids))
        recommendations = self.rank_skills(skills, completed_ids, preferred, difficulty, max_duration(energy))
        selected = recommendations[:self.top_n]

        self.logger.info(
            f"{len(selected)} skills for user {context.user_id} "
            f"(difficulty={difficulty}, energy={energy}, categories={preferred})"
        )

        return self.decision(
            context,
            confidence=self.calculate_confidence(len(progress)),
            reasoning=(
                f"User is stable ({level} level) with {energy} energy. "
                f"Recommended {len(selected)} skills based on {', '.join(preferred)} interests. "
                f"Completed {len(completed_ids)} skills previously."
            ),
            input={
                'interests': list(checkin.interests),
                'energy_level': energy,
                'completed_skills': len(completed_ids),
                'total_skills_started': len(progress),
            },
            output={
                'recommendations': [
                    {
                        'id': s.id,
                        'title': s.title,
                        'category': s.category,
                        'difficulty': s.difficulty,
                        'duration': s.duration_minutes,
                    }
                    for s in selected
                ],
                'target_difficulty': difficulty,
                'preferred_categories': preferred,
            }
        )

    @staticmethod
    def rank_skills(
        skills: Sequence[SkillModule],
        completed_ids: Set[str],
        preferred: Sequence[str],
        difficulty: str,
        duration_limit: int
    ) -> List[SkillModule]:
        """
        Available modules within the duration limit, excluding completed ones.

        Order: preferred category first, then matching difficulty, then
        points reward (descending), then id.
        """
        available = [
            s for s in skills
            if s.id not in completed_ids and s.duration_minutes <= duration_limit
        ]
        return sorted(
            available,
            key=lambda s: (
                s.category not in preferred,
                s.difficulty != difficulty,
                -s.points_reward,
                s.id,
            )
        )

    @staticmethod
    def calculate_confidence(history_length: int) -> float:
        if history_length == 0:
            return 0.5
        if history_length < 3:
            return 0.6
        if history_length < 5:
            return 0.75
        return 0.9

    def fallback_output(self, context: CheckinContext) -> Dict[str, Any]:
        return {'recommendations': []}
