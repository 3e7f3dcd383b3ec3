"""
Emotional Tier Classifier

Maps instrument scores to a per-entry severity tier and rolling history to
the slower-moving emotional stage.

Tier rules are evaluated strictly red -> orange -> yellow -> green and the
first match wins.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from utils.models import EmotionalEntry, EmotionalTier, InstrumentScore


STAGE_DISTRESS = 'distress'
STAGE_STRUGGLING = 'struggling'
STAGE_STABILIZING = 'stabilizing'
STAGE_THRIVING = 'thriving'
STAGE_UNKNOWN = 'unknown'

TREND_IMPROVING = 'improving'
TREND_DECLINING = 'declining'
TREND_STABLE = 'stable'
TREND_INSUFFICIENT = 'insufficient_data'

STAGE_WINDOW = 5
TREND_WINDOW = 7
MIN_TREND_ENTRIES = 3

# Entry attributes where a lower value is the better outcome
LOWER_IS_BETTER = ('phq2_total', 'gad2_total')

TREND_DESCRIPTIONS = {
    TREND_IMPROVING: 'Your wellbeing is improving!',
    TREND_DECLINING: 'Your wellbeing needs attention',
    TREND_STABLE: 'Your wellbeing is stable',
    TREND_INSUFFICIENT: 'Building your history',
}

SIMPLIFIED_EXPLANATIONS = {
    'en': {
        EmotionalTier.RED: (
            "You're going through a very difficult time right now. It's okay to feel this way, "
            "and you don't have to face it alone. Let's take small steps together to help you feel better."
        ),
        EmotionalTier.ORANGE: (
            "Things have been challenging lately. You might be feeling very low or very worried. "
            "Let's work on some simple activities that can help you feel a bit better each day."
        ),
        EmotionalTier.YELLOW: (
            "You're doing okay, but there's room to feel even better. "
            "Let's focus on small positive steps to boost your mood and energy."
        ),
        EmotionalTier.GREEN: (
            "You're doing well! This is a great time to learn new things and work on your goals. "
            "Keep up the good work!"
        ),
    },
    'ur': {
        EmotionalTier.RED: (
            'آپ اس وقت بہت مشکل وقت سے گزر رہے ہیں۔ ایسا محسوس کرنا ٹھیک ہے، اور آپ کو اکیلے اس کا سامنا نہیں کرنا ہے۔ '
            'آئیں چھوٹے قدم اٹھائیں تاکہ آپ بہتر محسوس کریں۔'
        ),
        EmotionalTier.ORANGE: (
            'حالیہ دنوں میں چیزیں مشکل رہی ہیں۔ آپ بہت اداس یا بہت پریشان محسوس کر رہے ہوں گے۔ '
            'آئیں کچھ آسان سرگرمیوں پر کام کریں جو آپ کو ہر دن تھوڑا بہتر محسوس کرنے میں مدد کر سکتی ہیں۔'
        ),
        EmotionalTier.YELLOW: (
            'آپ ٹھیک ہیں، لیکن اور بھی بہتر محسوس کرنے کی گنجائش ہے۔ '
            'آئیں چھوٹے مثبت قدموں پر توجہ دیں تاکہ آپ کا موڈ اور توانائی بہتر ہو۔'
        ),
        EmotionalTier.GREEN: (
            'آپ اچھا کر رہے ہیں! یہ نئی چیزیں سیکھنے اور اپنے مقاصد پر کام کرنے کا بہترین وقت ہے۔ اچھا کام جاری رکھیں!'
        ),
    },
}


@dataclass(frozen=True)
class TrendAnalysis:
    direction: str
    change: float = 0.0
    description: str = TREND_DESCRIPTIONS[TREND_INSUFFICIENT]

    @property
    def strength(self) -> float:
        return abs(self.change)

    def to_dict(self):
        return {
            'direction': self.direction,
            'change': self.change,
            'strength': self.strength,
            'description': self.description,
        }


INSUFFICIENT_TREND = TrendAnalysis(direction=TREND_INSUFFICIENT)


def generate_emotional_tier(
    phq2: InstrumentScore,
    gad2: InstrumentScore,
    who5: InstrumentScore
) -> EmotionalTier:
    """
    Classify one entry.

    Args:
        phq2: PHQ-2 score
        gad2: GAD-2 score
        who5: WHO-5 score (uses the normalized 0-100 value)

    Returns:
        EmotionalTier
    """
    any_screen_positive = phq2.risk_flag or gad2.risk_flag

    if (phq2.total >= 5 and gad2.total >= 5) or who5.normalized < 30:
        return EmotionalTier.RED

    if any_screen_positive and who5.normalized < 50:
        return EmotionalTier.ORANGE

    if any_screen_positive or who5.normalized < 70:
        return EmotionalTier.YELLOW

    return EmotionalTier.GREEN


def entry_wellbeing(entry: EmotionalEntry) -> float:
    """WHO-5 normalized score, or mood x 10 for entries without one"""
    if entry.who5_normalized is not None:
        return entry.who5_normalized
    if entry.mood_score is not None:
        return entry.mood_score * 10
    return 0


def calculate_emotional_stage(entries: Sequence[EmotionalEntry]) -> str:
    """
    Stage from the most recent entries.

    Args:
        entries: History, newest first

    Returns:
        'distress', 'struggling', 'stabilizing', 'thriving' or 'unknown'
    """
    if not entries:
        return STAGE_UNKNOWN

    recent = entries[:STAGE_WINDOW]
    count = len(recent)

    avg_phq2 = sum(e.phq2_total or 0 for e in recent) / count
    avg_gad2 = sum(e.gad2_total or 0 for e in recent) / count
    avg_who5 = sum(entry_wellbeing(e) for e in recent) / count

    if avg_phq2 >= 3 or avg_gad2 >= 3 or avg_who5 < 28:
        return STAGE_DISTRESS
    if avg_who5 < 50:
        return STAGE_STRUGGLING
    if avg_who5 < 70:
        return STAGE_STABILIZING
    return STAGE_THRIVING


def _average(entries: Sequence[EmotionalEntry], field: str) -> Optional[float]:
    values = [getattr(e, field) for e in entries if getattr(e, field) is not None]
    if not values:
        return None
    return sum(values) / len(values)


def analyze_trend(
    entries: Sequence[EmotionalEntry],
    field: str = 'phq2_total',
    threshold: float = 1.0
) -> TrendAnalysis:
    """
    Compare the last 7 entries against the 7 before them.

    Args:
        entries: History, newest first
        field: Entry attribute to average
        threshold: Minimum change (in the field's units) to call a direction

    Returns:
        TrendAnalysis; change is signed so that positive means better
    """
    if len(entries) < MIN_TREND_ENTRIES:
        return INSUFFICIENT_TREND

    recent_avg = _average(entries[:TREND_WINDOW], field)
    previous_avg = _average(entries[TREND_WINDOW:TREND_WINDOW * 2], field)

    if recent_avg is None or previous_avg is None:
        return INSUFFICIENT_TREND

    if field in LOWER_IS_BETTER:
        change = previous_avg - recent_avg
    else:
        change = recent_avg - previous_avg

    if change > threshold:
        direction = TREND_IMPROVING
    elif change < -threshold:
        direction = TREND_DECLINING
    else:
        direction = TREND_STABLE

    return TrendAnalysis(
        direction=direction,
        change=round(change, 2),
        description=TREND_DESCRIPTIONS[direction]
    )


def calculate_consistency(entries: Sequence[EmotionalEntry]) -> int:
    """
    Check-in regularity, 100 for daily check-ins.

    100 - 20 * (average gap in days - 1), clamped to [0, 100].
    """
    if len(entries) < 2:
        return 0

    timestamps = sorted(e.created_at for e in entries)
    gaps = [
        (later - earlier).total_seconds() / 86400
        for earlier, later in zip(timestamps, timestamps[1:])
    ]
    avg_gap = sum(gaps) / len(gaps)

    return int(round(max(0.0, min(100.0, 100 - (avg_gap - 1) * 20))))


def generate_simplified_explanation(tier: EmotionalTier, language: str = 'en') -> str:
    """Plain-language description of a tier (English or Urdu)"""
    return SIMPLIFIED_EXPLANATIONS.get(language, SIMPLIFIED_EXPLANATIONS['en'])[EmotionalTier(tier)]
