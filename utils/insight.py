"""
Generative Insight Service

Wraps the LLM orchestrator with the three capabilities the agents use:
language simplification, journal sentiment and free-text insights.

Every capability has a deterministic fallback. Model output is decoded
strictly (JSON + jsonschema); anything malformed counts as a failure, never
as an empty success.
"""

import json
import re
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from jsonschema import ValidationError, validate

from utils.errors import InsightCapabilityError
from utils.llm import LLMOrchestrator
from utils.logger import setup_logger
from utils.models import SentimentResult

logger = setup_logger('insight', 'logs/insight.log')


INSIGHTS_SCHEMA = {
    "type": "object",
    "properties": {
        "insights": {
            "type": "array",
            "items": {"type": "string", "minLength": 1},
            "minItems": 1
        },
        "encouragement": {"type": "string", "minLength": 1}
    },
    "required": ["insights", "encouragement"]
}

SENTIMENT_SCHEMA = {
    "type": "object",
    "properties": {
        "score": {"type": "number", "minimum": -1, "maximum": 1},
        "magnitude": {"type": "number", "minimum": 0, "maximum": 1},
        "emotions": {"type": "array", "items": {"type": "string"}}
    },
    "required": ["score", "magnitude", "emotions"]
}

SIMPLIFICATIONS = {
    'depression': 'feeling very low',
    'anxiety': 'feeling very worried',
    'cognitive reframing': 'changing negative thoughts',
    'behavioral activation': 'doing small helpful tasks',
    'mindfulness': 'paying attention to the present moment',
    'resilience': 'ability to bounce back from difficulties',
    'coping mechanism': 'way to deal with stress',
    'therapeutic': 'helpful for healing',
    'intervention': 'helpful activity',
    'wellbeing': 'feeling good overall',
}

POSITIVE_WORDS = ('happy', 'good', 'great', 'wonderful', 'love', 'joy', 'خوش', 'اچھا')
NEGATIVE_WORDS = ('sad', 'bad', 'terrible', 'hate', 'angry', 'depressed', 'اداس', 'برا')

SIMPLIFY_SYSTEM_PROMPT = (
    "You are a language simplification expert. Simplify psychological and medical terms "
    "to Grade 5 reading level. Use simple, clear language appropriate for someone with "
    "{education} education. Respond ONLY with the simplified text, no explanations."
)

SENTIMENT_SYSTEM_PROMPT = (
    "You are a sentiment analysis expert. Analyze the emotional tone of journal entries. "
    "Respond ONLY with valid JSON in this format: "
    '{"score": <number from -1 to 1>, "magnitude": <number from 0 to 1>, '
    '"emotions": [<array of emotion keywords>]}'
)

LANGUAGE_NAMES = {'en': 'English', 'ur': 'Urdu'}

_FENCE_PATTERN = re.compile(r'^```(?:json)?\s*|\s*```$', re.IGNORECASE)


@dataclass(frozen=True)
class InsightResult:
    """Success carries both fields; failure carries the reason"""
    ok: bool
    insights: Tuple[str, ...] = ()
    encouragement: str = ""
    error: Optional[str] = None

    @classmethod
    def success(cls, insights, encouragement: str) -> 'InsightResult':
        return cls(ok=True, insights=tuple(insights), encouragement=encouragement)

    @classmethod
    def failure(cls, error: str) -> 'InsightResult':
        return cls(ok=False, error=error)


def strip_code_fences(raw: str) -> str:
    return _FENCE_PATTERN.sub('', raw.strip()).strip()


def decode_json(raw: str, schema: Dict[str, Any], label: str) -> Dict[str, Any]:
    """
    Parse model output and validate it against a schema.

    Raises:
        InsightCapabilityError: output is not JSON or does not match
    """
    try:
        data = json.loads(strip_code_fences(raw))
    except (json.JSONDecodeError, TypeError) as e:
        raise InsightCapabilityError(f"{label} output is not valid JSON: {e}") from e

    try:
        validate(instance=data, schema=schema)
    except ValidationError as e:
        raise InsightCapabilityError(f"{label} validation failed: {e.message}") from e

    return data


def decode_insights(raw: str) -> InsightResult:
    try:
        data = decode_json(raw, INSIGHTS_SCHEMA, "insights")
    except InsightCapabilityError as e:
        return InsightResult.failure(str(e))

    insights = [line.strip() for line in data['insights'] if line.strip()]
    encouragement = data['encouragement'].strip()

    if not insights or not encouragement:
        return InsightResult.failure("insights output contained only whitespace")

    return InsightResult.success(insights, encouragement)


def simplify_with_term_map(text: str) -> str:
    simplified = text
    for complex_term, simple_term in SIMPLIFICATIONS.items():
        simplified = re.sub(re.escape(complex_term), simple_term, simplified, flags=re.IGNORECASE)
    return simplified


def keyword_sentiment(text: str) -> SentimentResult:
    words = text.lower().split()
    if not words:
        return SentimentResult(score=0.0, magnitude=0.0, emotions=('neutral',), source='fallback')

    positive = sum(1 for w in words if any(p in w for p in POSITIVE_WORDS))
    negative = sum(1 for w in words if any(n in w for n in NEGATIVE_WORDS))
    total = positive + negative

    emotions = []
    if positive > negative:
        emotions.append('positive')
    if negative > positive:
        emotions.append('negative')
    if total == 0:
        emotions.append('neutral')

    return SentimentResult(
        score=(positive - negative) / total if total else 0.0,
        magnitude=min(1.0, total / len(words)),
        emotions=tuple(emotions),
        source='fallback'
    )


class InsightService:
    """
    Generative capability with mandatory fallbacks.

    ``llm`` may be None, in which case every call takes the fallback path.
    """

    def __init__(self, llm: Optional[LLMOrchestrator], config: Dict[str, Any]):
        self.llm = llm
        self.config = config

        insight_config = config.get('insight', {})
        self.enabled = insight_config.get('enabled', True) and llm is not None
        self.cache_size = insight_config.get('simplification_cache_size', 1000)
        self.default_education = config.get('checkin', {}).get('default_education_level', 'primary')

        self._cache: Dict[Tuple[str, str, str], str] = {}
        self._cache_lock = threading.Lock()

        logger.info("Insight service initialized")
        logger.info(f"Generative capability enabled: {self.enabled}")

    # ------------------------------------------------------------------
    # Simplification
    # ------------------------------------------------------------------

    def simplify(self, text: str, language: str = 'en', education_level: Optional[str] = None) -> str:
        """Rewrite text at a Grade 5 reading level"""
        if not text or not text.strip():
            return text

        education = education_level or self.default_education
        key = (text, language, education)

        with self._cache_lock:
            cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Simplification cache hit")
            return cached

        simplified = None
        if self.enabled:
            language_name = LANGUAGE_NAMES.get(language, 'English')
            try:
                simplified = self.llm.generate(
                    f"Simplify this text to {language_name} at Grade 5 level.\nText: {text}",
                    system_prompt=SIMPLIFY_SYSTEM_PROMPT.format(education=education),
                    max_tokens=200
                ).strip()
            except InsightCapabilityError as e:
                logger.warning(f"Simplification failed, using term map: {e}")

        if not simplified:
            # Only model output is cached
            return simplify_with_term_map(text)

        with self._cache_lock:
            if len(self._cache) >= self.cache_size:
                self._cache.pop(next(iter(self._cache)))
            self._cache[key] = simplified

        return simplified

    # ------------------------------------------------------------------
    # Sentiment
    # ------------------------------------------------------------------

    def sentiment(self, text: Optional[str], language: str = 'en') -> SentimentResult:
        if not text or not text.strip():
            return SentimentResult(score=0.0, magnitude=0.0, emotions=('neutral',), source='empty')

        if self.enabled:
            try:
                raw = self.llm.generate(
                    f'Analyze the sentiment of this {LANGUAGE_NAMES.get(language, "English")} text: "{text}"',
                    system_prompt=SENTIMENT_SYSTEM_PROMPT,
                    max_tokens=150
                )
                data = decode_json(raw, SENTIMENT_SCHEMA, "sentiment")
                return SentimentResult(
                    score=float(data['score']),
                    magnitude=float(data['magnitude']),
                    emotions=tuple(data['emotions']),
                    source='model'
                )
            except InsightCapabilityError as e:
                logger.warning(f"Sentiment analysis failed, using keyword fallback: {e}")

        return keyword_sentiment(text)

    # ------------------------------------------------------------------
    # Insights
    # ------------------------------------------------------------------

    def generate_insights(
        self,
        system_prompt: str,
        user_prompt: str,
        config: Optional[Dict[str, Any]] = None
    ) -> InsightResult:
        """
        Ask the model for ``{insights: [...], encouragement: ...}``.

        Never raises; callers switch to their rule-based generator on failure.
        """
        if not self.enabled:
            return InsightResult.failure("generative capability unavailable")

        if not user_prompt or not user_prompt.strip():
            return InsightResult.failure("empty prompt")

        try:
            raw = self.llm.generate(user_prompt, system_prompt=system_prompt, **(config or {}))
        except InsightCapabilityError as e:
            logger.warning(f"Insight generation failed: {e}")
            return InsightResult.failure(str(e))

        result = decode_insights(raw)
        if not result.ok:
            logger.warning(f"Discarding malformed insight output: {result.error}")
            logger.debug(f"Raw output: {raw[:500]}")
        return result

    # ------------------------------------------------------------------
    # Engagement
    # ------------------------------------------------------------------

    @staticmethod
    def predict_dropout_risk(
        checkin_consistency: float,
        skill_completion_rate: float,
        emotional_volatility: float,
        days_since_last_activity: float
    ) -> float:
        """
        Heuristic dropout risk in [0, 1].

        Args:
            checkin_consistency: 0-100, lower is worse
            skill_completion_rate: 0-1, lower is worse
            emotional_volatility: standard deviation of recent mood
            days_since_last_activity: days since the last check-in
        """
        risk = 0.0

        if checkin_consistency < 30:
            risk += 0.3
        elif checkin_consistency < 60:
            risk += 0.15

        if skill_completion_rate < 0.2:
            risk += 0.25
        elif skill_completion_rate < 0.5:
            risk += 0.1

        if days_since_last_activity > 7:
            risk += 0.3
        elif days_since_last_activity > 3:
            risk += 0.15

        if emotional_volatility > 2.0:
            risk += 0.15
        elif emotional_volatility > 1.0:
            risk += 0.05

        return min(risk, 1.0)
