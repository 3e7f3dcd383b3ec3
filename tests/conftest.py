"""
Pytest fixtures shared by the check-in tests.
"""

import os
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from pipelines.checkin_pipeline import CheckinPipeline
from pipelines.outcome_tracker import OutcomeTracker
from utils.encryption import JournalVault
from utils.insight import InsightService
from utils.llm import LLMOrchestrator
from utils.memory import MemoryManager
from utils.models import (
    CheckinContext,
    CheckinSubmission,
    EmotionalEntry,
    EmotionalTier,
    LongTermSummary,
    UserMemory,
    UserProfile,
)
from utils.storage import InMemoryStorage


@pytest.fixture
def config():
    """Configuration with a small catalog and no generative capability"""
    return {
        'llm': {'provider': 'local', 'local_type': 'mock', 'timeout_seconds': 2},
        'insight': {'enabled': False},
        'checkin': {
            'short_term_days': 7,
            'long_term_days': 30,
            'past_outcome_limit': 30,
            'journal_max_length': 5000,
            'default_language': 'en',
            'default_education_level': 'primary',
        },
        'agents': {
            'crisis': {'mood_cutoff': 3, 'stress_trigger': 'high', 'escalation_count': 2},
            'intervention': {'top_n': 3},
            'skill': {'top_n': 5},
        },
        'catalog': {
            'helplines': [
                {
                    'name': 'Umang Pakistan Mental Health Helpline',
                    'phone_number': '0311-7786264',
                    'description': '24/7 emotional support',
                    'region': 'Pakistan',
                },
            ],
            'skill_modules': [
                {'id': 'breathing_basics', 'title': 'Breathing Basics', 'category': 'wellness',
                 'difficulty': 'beginner', 'duration_minutes': 10, 'points_reward': 10},
                {'id': 'embroidery', 'title': 'Embroidery Patterns', 'category': 'creative',
                 'difficulty': 'beginner', 'duration_minutes': 20, 'points_reward': 20},
                {'id': 'web_page', 'title': 'Your First Web Page', 'category': 'coding',
                 'difficulty': 'beginner', 'duration_minutes': 30, 'points_reward': 30},
                {'id': 'small_goals', 'title': 'Setting Small Goals', 'category': 'business',
                 'difficulty': 'intermediate', 'duration_minutes': 15, 'points_reward': 25},
            ],
            'courses': [
                {'id': 'c_photo', 'title': 'Mobile Photography', 'difficulty_level': 1},
                {'id': 'c_budget', 'title': 'Home Budgeting', 'difficulty_level': 1},
                {'id': 'c_english', 'title': 'Spoken English', 'difficulty_level': 2},
                {'id': 'c_freelance', 'title': 'Freelancing 101', 'difficulty_level': 3},
            ],
        },
    }


@pytest.fixture
def storage(config):
    return InMemoryStorage(config)


@pytest.fixture
def insight(config):
    """Rule-based insight service (no model)"""
    return InsightService(None, config)


@pytest.fixture
def vault():
    return JournalVault(key=os.urandom(32))


@pytest.fixture
def memory_manager(storage, config):
    return MemoryManager(storage, config)


@pytest.fixture
def pipeline(storage, insight, vault, config, memory_manager):
    return CheckinPipeline(storage, insight, vault, config, memory_manager=memory_manager)


@pytest.fixture
def tracker(storage, config):
    return OutcomeTracker(storage, config)


@pytest.fixture
def fake_llm():
    """LLM stand-in whose ``generate`` return value each test sets"""
    llm = Mock(spec=LLMOrchestrator)
    llm.generate.return_value = '{"insights": ["You are doing well"], "encouragement": "Keep going"}'
    return llm


THRIVING_PAYLOAD = {
    'phq2_q1': 0, 'phq2_q2': 0,
    'gad2_q1': 0, 'gad2_q2': 0,
    'who5_q1': 5, 'who5_q2': 5, 'who5_q3': 5,
}

DISTRESS_PAYLOAD = {
    'phq2_q1': 3, 'phq2_q2': 3,
    'gad2_q1': 3, 'gad2_q2': 3,
    'who5_q1': 0, 'who5_q2': 0, 'who5_q3': 0,
}

CRISIS_PAYLOAD = {'mood_score': 2, 'energy_level': 'low', 'stress_level': 'high'}


@pytest.fixture
def thriving_payload():
    return dict(THRIVING_PAYLOAD)


@pytest.fixture
def distress_payload():
    return dict(DISTRESS_PAYLOAD)


@pytest.fixture
def crisis_payload():
    return dict(CRISIS_PAYLOAD)


def make_entry(
    user_id='user-1',
    level=EmotionalTier.YELLOW,
    days_ago=0.0,
    phq2_total=1,
    gad2_total=1,
    who5_normalized=60,
    mood_score=6,
    **overrides
):
    """Build a stored-entry shaped record for history-based tests"""
    return EmotionalEntry(
        user_id=user_id,
        emotional_level=level,
        created_at=datetime.now() - timedelta(days=days_ago),
        mood_score=mood_score,
        phq2_total=phq2_total,
        gad2_total=gad2_total,
        who5_normalized=who5_normalized,
        **overrides
    )


def make_memory(user_id='user-1', entries=(), stage='unknown', trend='insufficient_data'):
    return UserMemory(
        user_id=user_id,
        short_term=tuple(entries),
        long_term=LongTermSummary(stage=stage),
        trend_direction=trend,
        engagement_score=0,
    )


def make_context(payload, user_id='user-1', memory=None, profile=None):
    checkin = CheckinSubmission.from_payload(payload).normalized()
    return CheckinContext(
        user_id=user_id,
        checkin=checkin,
        memory=memory or make_memory(user_id),
        profile=profile or UserProfile(),
    )
