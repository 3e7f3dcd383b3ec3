"""
Course Recommendation Agent

Suggests one learning resource whose difficulty suits the user's
long-term emotional stage. Only invoked for stable users.
"""

from typing import Any, Dict, Optional, Sequence

from utils.agents import BaseAgent
from utils.models import AgentDecision, CheckinContext, Course
from utils.storage import StorageBackend


# Crisis/distress -> micro-learning only, thriving -> career skills
DIFFICULTY_CEILINGS = {
    'crisis': 1,
    'distress': 1,
    'struggling': 2,
    'improving': 3,
    'thriving': 3,
}
DEFAULT_CEILING = 1

NONE_AVAILABLE_MESSAGE = "You're up to date on all recommended courses for now!"


def pick_course(courses: Sequence[Course], completed_ids, ceiling: int) -> Optional[Course]:
    """Highest difficulty at or under the ceiling, lowest id on ties"""
    eligible = [c for c in courses if c.id not in completed_ids and c.difficulty_level <= ceiling]
    if not eligible:
        return None
    return min(eligible, key=lambda c: (-c.difficulty_level, c.id))


class CourseAgent(BaseAgent):
    """Course Recommendation Agent"""

    def __init__(self, config: Dict[str, Any], storage: StorageBackend):
        super().__init__(config, "course")
        self.storage = storage
        self.ceilings = {**DIFFICULTY_CEILINGS, **self.agent_config.get('ceilings', {})}

    def evaluate(self, context: CheckinContext) -> AgentDecision:
        stage = context.memory.emotional_stage
        ceiling = self.ceilings.get(stage, DEFAULT_CEILING)

        completed_ids = {
            e.course_id for e in self.storage.list_enrollments(context.user_id)
            if e.completion_status == 'completed'
        }
        course = pick_course(self.storage.list_courses(), completed_ids, ceiling)

        if course is None:
            self.logger.info(f"No course available for user {context.user_id} (ceiling {ceiling})")
            return self.decision(
                context,
                confidence=0.5,
                reasoning=f"No uncompleted course at or below difficulty {ceiling} for '{stage}' stage.",
                input={'stage': stage, 'max_difficulty': ceiling},
                output=self.fallback_output(context)
            )

        self.logger.info(f"Recommending course {course.id} (difficulty {course.difficulty_level})")

        readiness = 'advanced' if ceiling == 3 else 'beginner'
        return self.decision(
            context,
            confidence=0.7,
            reasoning=f"Recommended because you are in '{stage}' stage and ready for {readiness} learning.",
            input={'stage': stage, 'max_difficulty': ceiling},
            output={
                'has_recommendation': True,
                'course': {
                    'id': course.id,
                    'title': course.title,
                    'description': course.description,
                    'duration': course.duration_estimate,
                    'category': course.category,
                    'url': course.source_url,
                },
            }
        )

    def fallback_output(self, context: CheckinContext) -> Dict[str, Any]:
        return {'has_recommendation': False, 'course': None, 'message': NONE_AVAILABLE_MESSAGE}
