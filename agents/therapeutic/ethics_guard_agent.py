"""
Ethics Guard Agent

Reviews the Intervention Agent's picks before delivery:
- Crisis-state restriction (red tier)
- Cognitive demand (orange tier, education level)
- Connectivity (online-only activities)
- Cultural sensitivity (rural Pakistani context)
- Medical/clinical wording

Rules run in a fixed order per candidate. A rejecting rule stops the
review of that candidate; rewriting rules let it continue. Every rule that
fires leaves one entry in the adjustments audit list.
"""

import re
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from utils.agents import BaseAgent
from utils.insight import InsightService
from utils.models import AgentDecision, CheckinContext, EmotionalTier, InterventionCandidate


CRISIS_ALLOWED_TYPES = ('guided_breathing', 'grounding_technique')
ONLINE_ONLY_TYPES = ('video_tutorial', 'online_course', 'live_session')
LOW_EDUCATION_LEVELS = ('none', 'primary')

CULTURAL_DENYLIST = ('alcohol', 'bar', 'club', 'dating', 'meditation retreat', 'yoga studio')
RURAL_CONCERNS = ('public speaking', 'group meeting', 'outdoor activity alone')

MEDICAL_REPLACEMENTS = {
    'diagnosis': 'understanding',
    'disorder': 'challenge',
    'syndrome': 'pattern',
    'pathology': 'difficulty',
    'clinical': 'helpful',
    'psychiatric': 'emotional',
    'therapeutic intervention': 'helpful activity',
    'treatment': 'support',
    'medication': 'help',
    'prescription': 'recommendation',
}

DISCLAIMERS = {
    EmotionalTier.RED: (
        "This platform provides wellness guidance and educational support only. It is not a substitute "
        "for professional medical or mental health care. If you are in crisis, please contact emergency "
        "services or a crisis helpline."
    ),
    EmotionalTier.ORANGE: (
        "Remember: This is educational support, not professional medical advice. If you need urgent help, "
        "please reach out to a healthcare provider."
    ),
    EmotionalTier.YELLOW: (
        "This platform offers wellness guidance to support your journey. For medical concerns, please "
        "consult a healthcare professional."
    ),
    EmotionalTier.GREEN: "Keep growing! This platform provides educational support for your wellbeing journey.",
}


def _keyword_pattern(keyword: str) -> re.Pattern:
    return re.compile(r'\b' + re.escape(keyword) + r'\b', re.IGNORECASE)


_CULTURAL_PATTERNS = [(keyword, _keyword_pattern(keyword)) for keyword in CULTURAL_DENYLIST]
_RURAL_PATTERNS = [(keyword, _keyword_pattern(keyword)) for keyword in RURAL_CONCERNS]
_MEDICAL_PATTERNS = [
    (re.compile(re.escape(term), re.IGNORECASE), wellness) for term, wellness in MEDICAL_REPLACEMENTS.items()
]


def find_cultural_conflict(description: str) -> Optional[str]:
    for keyword, pattern in _CULTURAL_PATTERNS:
        if pattern.search(description):
            return keyword
    return None


def contains_medical_language(text: str) -> bool:
    return any(pattern.search(text) for pattern, _ in _MEDICAL_PATTERNS)


def remove_medical_language(text: str) -> str:
    cleaned = text
    for pattern, wellness in _MEDICAL_PATTERNS:
        cleaned = pattern.sub(wellness, cleaned)
    return cleaned


def generate_ethical_disclaimer(tier: EmotionalTier) -> str:
    return DISCLAIMERS.get(tier, DISCLAIMERS[EmotionalTier.YELLOW])


class EthicsGuardAgent(BaseAgent):
    """
    Ethics Guard for intervention delivery

    Deterministic rules, so confidence is fixed at 0.95. Runs even when
    there is nothing to review.
    """

    def __init__(self, config: Dict[str, Any], insight: InsightService):
        super().__init__(config, "ethics_guard")
        self.insight = insight

    def evaluate(self, context: CheckinContext) -> AgentDecision:
        tier = EmotionalTier(context.emotional.output['level'])
        profile = context.profile
        candidates = [
            InterventionCandidate.from_dict(row)
            for row in context.intervention.output.get('recommended_interventions', [])
        ]

        self.logger.info(f"Reviewing {len(candidates)} interventions for {tier.value} tier")

        approved: List[InterventionCandidate] = []
        adjustments: List[Dict[str, str]] = []
        cultural_flags: List[Dict[str, str]] = []

        for candidate in candidates:
            reviewed, candidate_adjustments, flags = self.review_intervention(candidate, tier, profile)
            adjustments.extend(candidate_adjustments)
            cultural_flags.extend(flags)
            if reviewed is not None:
                approved.append(reviewed)

        self.logger.info(
            f"Approved {len(approved)}/{len(candidates)}, {len(adjustments)} adjustments"
        )

        return self.decision(
            context,
            confidence=0.95,
            reasoning=(
                f"Reviewed {len(candidates)} interventions for ethical delivery. "
                f"Made {len(adjustments)} adjustments for cultural sensitivity, cognitive load, and "
                f"accessibility. User tier: {tier.value}, education: {profile.education_level or 'unknown'}."
            ),
            input={
                'intervention_count': len(candidates),
                'emotional_tier': tier.value,
                'education_level': profile.education_level,
                'language': profile.preferred_language,
                'location_type': profile.location_type,
                'internet_stability': profile.internet_stability,
            },
            output={
                'approved_interventions': [c.to_dict() for c in approved],
                'adjustments_made': len(adjustments),
                'adjustments': adjustments,
                'cultural_flags': cultural_flags,
                'disclaimer': generate_ethical_disclaimer(tier),
            },
            actions=[{'type': c.type, 'title': c.title, 'priority': i + 1} for i, c in enumerate(approved)]
        )

    def review_intervention(
        self,
        candidate: InterventionCandidate,
        tier: EmotionalTier,
        profile
    ) -> Tuple[Optional[InterventionCandidate], List[Dict[str, str]], List[Dict[str, str]]]:
        """
        Run the six rules against one candidate.

        Returns:
            (reviewed candidate or None if rejected, adjustment entries, cultural flags)
        """
        adjustments: List[Dict[str, str]] = []
        flags: List[Dict[str, str]] = []
        reviewed = candidate

        def adjust(rule: str, reason: str, action: str):
            adjustments.append({
                'intervention_type': candidate.type,
                'rule': rule,
                'reason': reason,
                'action': action,
            })

        # Rule 1: crisis state
        if tier == EmotionalTier.RED and candidate.type not in CRISIS_ALLOWED_TYPES:
            adjust(
                'crisis_restriction',
                'User in crisis state - only immediate calming techniques allowed',
                'Filtered out non-crisis intervention'
            )
            self.logger.info(f"Rejected {candidate.type}: crisis-state restriction")
            return None, adjustments, flags

        # Rule 2: orange tier load
        if tier == EmotionalTier.ORANGE and reviewed.cognitive_load != 'low':
            reviewed = replace(reviewed, cognitive_load='low', duration=min(reviewed.duration, 10), adjusted=True)
            adjust(
                'cognitive_load',
                'User in distress - reduced cognitive demand',
                'Reduced duration and complexity'
            )

        # Rule 3: education level
        if profile.education_level in LOW_EDUCATION_LEVELS:
            if reviewed.cognitive_load == 'high':
                adjust(
                    'education_level',
                    'Intervention too complex for education level',
                    'Filtered out high-complexity intervention'
                )
                self.logger.info(f"Rejected {candidate.type}: too complex for education level")
                return None, adjustments, flags

            reviewed = replace(
                reviewed,
                description=self.insight.simplify(
                    reviewed.description, profile.preferred_language or 'en', profile.education_level
                ),
                adjusted=True
            )
            adjust(
                'language_simplification',
                'Simplified language for education level',
                'Applied language simplification'
            )

        # Rule 4: connectivity
        if profile.internet_stability == 'low' and candidate.type in ONLINE_ONLY_TYPES:
            adjust(
                'connectivity',
                'Requires stable internet connection',
                'Filtered out online-only intervention'
            )
            self.logger.info(f"Rejected {candidate.type}: requires stable internet")
            return None, adjustments, flags

        # Rule 5: cultural sensitivity
        conflict = find_cultural_conflict(reviewed.description)
        if conflict:
            adjust(
                'cultural_sensitivity',
                f'Contains culturally inappropriate content: {conflict}',
                'Filtered for cultural inappropriateness'
            )
            self.logger.info(f"Rejected {candidate.type}: cultural keyword '{conflict}'")
            return None, adjustments, flags

        if profile.location_type == 'rural':
            for keyword, pattern in _RURAL_PATTERNS:
                if pattern.search(reviewed.description):
                    # Flagged for review, not rejected
                    self.logger.warning(f"Cultural concern flagged: '{keyword}' in rural context ({candidate.type})")
                    flags.append({'intervention_type': candidate.type, 'keyword': keyword})

        # Rule 6: medical wording
        if contains_medical_language(reviewed.description):
            reviewed = replace(reviewed, description=remove_medical_language(reviewed.description), adjusted=True)
            adjust(
                'medical_language',
                'Removed medical/clinical terminology',
                'Replaced with wellness language'
            )

        return reviewed, adjustments, flags

    def fallback_output(self, context: CheckinContext) -> Dict[str, Any]:
        """Nothing unreviewed reaches the user"""
        return {
            'approved_interventions': [],
            'adjustments_made': 0,
            'adjustments': [],
            'cultural_flags': [],
            'disclaimer': DISCLAIMERS[EmotionalTier.YELLOW],
        }
