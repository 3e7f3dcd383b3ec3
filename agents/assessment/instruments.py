"""
Research Instruments

Scoring for the three screening questionnaires used by the daily check-in:

- PHQ-2: depression screening, 2 items scored 0-3, total 0-6, risk at >= 3
- GAD-2: anxiety screening, 2 items scored 0-3, total 0-6, risk at >= 3
- WHO-5: wellbeing index (3-item variant), items 0-5, raw 0-15,
  normalized to 0-100

Scoring functions are pure. Malformed answers count as 0.
"""

from typing import Any, Dict, List, Mapping

from utils.models import InstrumentScore, RiskAssessment, round_half_up


RISK_CUTOFF = 3
LOW_WELLBEING_CUTOFF = 50


PHQ2_QUESTIONS = [
    {
        'id': 'phq2_q1',
        'text': 'Over the past 2 weeks, how often have you had little interest or pleasure in doing things?',
        'urdu': 'پچھلے 2 ہفتوں میں، آپ کو کتنی بار چیزیں کرنے میں دلچسپی یا خوشی کم محسوس ہوئی؟',
        'simplified': 'In the past 2 weeks, how often did you feel less interested in things you usually enjoy?'
    },
    {
        'id': 'phq2_q2',
        'text': 'Over the past 2 weeks, how often have you felt down, depressed, or hopeless?',
        'urdu': 'پچھلے 2 ہفتوں میں، آپ کو کتنی بار اداس، مایوس یا ناامید محسوس ہوا؟',
        'simplified': 'In the past 2 weeks, how often did you feel very sad or without hope?'
    },
]

GAD2_QUESTIONS = [
    {
        'id': 'gad2_q1',
        'text': 'Over the past 2 weeks, how often have you felt nervous, anxious, or on edge?',
        'urdu': 'پچھلے 2 ہفتوں میں، آپ کو کتنی بار گھبراہٹ، بے چینی یا پریشانی محسوس ہوئی؟',
        'simplified': 'In the past 2 weeks, how often did you feel very worried or nervous?'
    },
    {
        'id': 'gad2_q2',
        'text': 'Over the past 2 weeks, how often have you not been able to stop or control worrying?',
        'urdu': 'پچھلے 2 ہفتوں میں، آپ کتنی بار اپنی فکروں کو روک یا قابو نہیں کر سکے؟',
        'simplified': 'In the past 2 weeks, how often could you not stop worrying?'
    },
]

WHO5_QUESTIONS = [
    {
        'id': 'who5_q1',
        'text': 'Over the past 2 weeks, I have felt cheerful and in good spirits',
        'urdu': 'پچھلے 2 ہفتوں میں، میں خوش اور اچھے موڈ میں رہا/رہی',
        'simplified': 'In the past 2 weeks, I felt happy and cheerful'
    },
    {
        'id': 'who5_q2',
        'text': 'Over the past 2 weeks, I have felt active and energetic',
        'urdu': 'پچھلے 2 ہفتوں میں، میں متحرک اور توانا محسوس کیا',
        'simplified': 'In the past 2 weeks, I felt active and full of energy'
    },
    {
        'id': 'who5_q3',
        'text': 'Over the past 2 weeks, I have felt calm and relaxed',
        'urdu': 'پچھلے 2 ہفتوں میں، میں پرسکون اور آرام دہ محسوس کیا',
        'simplified': 'In the past 2 weeks, I felt calm and peaceful'
    },
]

# Frequency scale shared by PHQ-2 and GAD-2
FREQUENCY_SCALE = [
    {'value': 0, 'text': 'Not at all', 'urdu': 'بالکل نہیں', 'simplified': 'Not at all'},
    {'value': 1, 'text': 'Several days', 'urdu': 'کئی دن', 'simplified': 'A few days'},
    {'value': 2, 'text': 'More than half the days', 'urdu': 'آدھے سے زیادہ دن', 'simplified': 'More than half the days'},
    {'value': 3, 'text': 'Nearly every day', 'urdu': 'تقریباً ہر دن', 'simplified': 'Almost every day'},
]

WHO5_SCALE = [
    {'value': 0, 'text': 'At no time', 'urdu': 'کبھی نہیں', 'simplified': 'Never'},
    {'value': 1, 'text': 'Some of the time', 'urdu': 'کبھی کبھی', 'simplified': 'Sometimes'},
    {'value': 2, 'text': 'Less than half the time', 'urdu': 'آدھے سے کم وقت', 'simplified': 'Less than half the time'},
    {'value': 3, 'text': 'More than half the time', 'urdu': 'آدھے سے زیادہ وقت', 'simplified': 'More than half the time'},
    {'value': 4, 'text': 'Most of the time', 'urdu': 'زیادہ تر وقت', 'simplified': 'Most of the time'},
    {'value': 5, 'text': 'All of the time', 'urdu': 'ہر وقت', 'simplified': 'All the time'},
]

_TEXT_KEYS = {'en': 'text', 'ur': 'urdu', 'simplified': 'simplified'}


def _answer(responses: Mapping[str, Any], key: str) -> int:
    value = responses.get(key)
    if isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def calculate_phq2_score(responses: Mapping[str, Any]) -> InstrumentScore:
    """PHQ-2 depression screening score"""
    items = (_answer(responses, 'phq2_q1'), _answer(responses, 'phq2_q2'))
    total = sum(items)
    risk_flag = total >= RISK_CUTOFF

    return InstrumentScore(
        name='phq2',
        items=items,
        total=total,
        risk_flag=risk_flag,
        interpretation=(
            'Depression screening positive - further assessment recommended'
            if risk_flag else 'Depression screening negative'
        )
    )


def calculate_gad2_score(responses: Mapping[str, Any]) -> InstrumentScore:
    """GAD-2 anxiety screening score"""
    items = (_answer(responses, 'gad2_q1'), _answer(responses, 'gad2_q2'))
    total = sum(items)
    risk_flag = total >= RISK_CUTOFF

    return InstrumentScore(
        name='gad2',
        items=items,
        total=total,
        risk_flag=risk_flag,
        interpretation=(
            'Anxiety screening positive - further assessment recommended'
            if risk_flag else 'Anxiety screening negative'
        )
    )


def calculate_who5_score(responses: Mapping[str, Any]) -> InstrumentScore:
    """
    WHO-5 wellbeing score.

    ``total`` is the raw 0-15 sum, ``normalized`` is raw * 100 / 15 rounded
    half up. WHO-5 has no screening cutoff, so ``risk_flag`` marks low
    wellbeing (normalized < 50).
    """
    items = (
        _answer(responses, 'who5_q1'),
        _answer(responses, 'who5_q2'),
        _answer(responses, 'who5_q3'),
    )
    raw = sum(items)
    normalized = round_half_up(raw * 100 / 15)

    if normalized < LOW_WELLBEING_CUTOFF:
        interpretation = 'Low wellbeing - support recommended'
    elif normalized < 70:
        interpretation = 'Moderate wellbeing'
    else:
        interpretation = 'Good wellbeing'

    return InstrumentScore(
        name='who5',
        items=items,
        total=raw,
        risk_flag=normalized < LOW_WELLBEING_CUTOFF,
        normalized=normalized,
        interpretation=interpretation
    )


def score_all(responses: Mapping[str, Any]) -> Dict[str, InstrumentScore]:
    return {
        'phq2': calculate_phq2_score(responses),
        'gad2': calculate_gad2_score(responses),
        'who5': calculate_who5_score(responses),
    }


def assess_risk_thresholds(
    phq2: InstrumentScore,
    gad2: InstrumentScore,
    who5: InstrumentScore
) -> RiskAssessment:
    """Screening flags plus a composite risk probability (0.4 + 0.4 + 0.2, capped at 1)"""
    depression_risk = phq2.risk_flag
    anxiety_risk = gad2.risk_flag
    low_wellbeing = who5.normalized < LOW_WELLBEING_CUTOFF

    probability = 0.0
    if depression_risk:
        probability += 0.4
    if anxiety_risk:
        probability += 0.4
    if low_wellbeing:
        probability += 0.2

    return RiskAssessment(
        depression_risk=depression_risk,
        anxiety_risk=anxiety_risk,
        low_wellbeing=low_wellbeing,
        risk_probability=round(min(probability, 1.0), 2)
    )


def _questions(bank: List[Dict[str, Any]], text_key: str) -> List[Dict[str, Any]]:
    return [{'id': q['id'], 'text': q[text_key]} for q in bank]


def _scale(scale: List[Dict[str, Any]], text_key: str) -> List[Dict[str, Any]]:
    return [{'value': s['value'], 'label': s[text_key]} for s in scale]


def get_instrument_questions(language: str = 'en') -> Dict[str, Dict[str, Any]]:
    """
    Question bank for rendering the check-in form.

    Args:
        language: 'en', 'ur' or 'simplified' (unknown values fall back to 'en')
    """
    text_key = _TEXT_KEYS.get(language, 'text')

    return {
        'phq2': {
            'name': 'PHQ-2 Depression Screening',
            'questions': _questions(PHQ2_QUESTIONS, text_key),
            'scale': _scale(FREQUENCY_SCALE, text_key),
        },
        'gad2': {
            'name': 'GAD-2 Anxiety Screening',
            'questions': _questions(GAD2_QUESTIONS, text_key),
            'scale': _scale(FREQUENCY_SCALE, text_key),
        },
        'who5': {
            'name': 'WHO-5 Wellbeing Index',
            'questions': _questions(WHO5_QUESTIONS, text_key),
            'scale': _scale(WHO5_SCALE, text_key),
        },
    }
