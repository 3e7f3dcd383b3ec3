"""
EmpowHer - Main Orchestrator

This is the main entry point that connects:
1. Check-in Pipeline (crisis gate, emotional, intervention, ethics, growth agents)
2. Outcome Tracker (reflection loop on recommended actions)
3. Memory query surface (stage, trend, engagement, decision history)

Every public method returns a plain dictionary. Failures come back as
well-formed error results, never as raw tracebacks.
"""

import argparse
import json
import sys
from datetime import datetime
from typing import Any, Dict, Optional

import pandas as pd
import yaml

from agents.assessment.instruments import get_instrument_questions
from pipelines.checkin_pipeline import CheckinPipeline
from pipelines.outcome_tracker import OutcomeTracker
from utils.encryption import JournalVault
from utils.errors import CheckinValidationError, OutcomeValidationError, StorageError
from utils.insight import InsightService
from utils.llm import LLMOrchestrator
from utils.logger import log_exception, setup_logger
from utils.memory import MemoryManager
from utils.models import UserProfile
from utils.storage import InMemoryStorage, StorageBackend

# Setup logger
logger = setup_logger('empowher', 'logs/empowher.log')


DEMO_SCENARIOS = {
    'thriving': {
        'phq2_q1': 0, 'phq2_q2': 0,
        'gad2_q1': 0, 'gad2_q2': 0,
        'who5_q1': 5, 'who5_q2': 5, 'who5_q3': 5,
        'journal': 'Had a good day at the sewing centre and finished my first order.',
        'interests': ['creative', 'business'],
    },
    'distress': {
        'phq2_q1': 3, 'phq2_q2': 3,
        'gad2_q1': 3, 'gad2_q2': 3,
        'who5_q1': 0, 'who5_q2': 0, 'who5_q3': 0,
    },
    'crisis': {
        'mood_score': 2,
        'energy_level': 'low',
        'stress_level': 'high',
        'journal': 'I cannot cope anymore.',
    },
    'legacy': {
        'mood_score': 6,
        'energy_level': 'medium',
        'stress_level': 'low',
    },
}


def invalid_result(message: str, details=None) -> Dict[str, Any]:
    return {'error': message, 'status': 'invalid', 'details': details or []}


def server_error_result(message: str) -> Dict[str, Any]:
    return {'error': message, 'status': 'server_error'}


class EmpowHer:
    """
    EmpowHer - Multi-Agent Emotional Check-in System

    Main orchestrator that wires:
    - Storage backend (injected into every component)
    - Journal vault
    - LLM orchestrator and insight service (rule-based fallback)
    - Memory manager
    - Check-in pipeline and outcome tracker
    """

    def __init__(
        self,
        config_path: str = "config.yml",
        config: Optional[Dict[str, Any]] = None,
        storage: Optional[StorageBackend] = None,
        vault: Optional[JournalVault] = None
    ):
        """
        Initialize EmpowHer system

        Args:
            config_path: Path to configuration file
            config: Configuration dictionary (skips loading config_path)
            storage: Storage backend (default: in-memory store seeded from config)
            vault: Journal vault (default: key from environment)
        """
        logger.info("=" * 70)
        logger.info("INITIALIZING EMPOWHER")
        logger.info("=" * 70)

        if config is None:
            logger.info(f"Loading configuration from: {config_path}")
            with open(config_path, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f) or {}
        self.config = config

        self.storage = storage or InMemoryStorage(self.config)
        self.vault = vault or JournalVault()

        storage_config = self.config.get('storage', {})
        self.snapshot_path = storage_config.get('snapshot_path')
        if self.snapshot_path and storage_config.get('load_on_start') and isinstance(self.storage, InMemoryStorage):
            try:
                self.storage.load_snapshot(self.snapshot_path)
            except StorageError as e:
                logger.warning(f"Starting with an empty store: {e}")

        self.llm = self._initialize_llm()
        self.insight = InsightService(self.llm, self.config)

        self.memory_manager = MemoryManager(self.storage, self.config)
        self.pipeline = CheckinPipeline(
            storage=self.storage,
            insight=self.insight,
            vault=self.vault,
            config=self.config,
            memory_manager=self.memory_manager
        )
        self.outcome_tracker = OutcomeTracker(self.storage, self.config)

        logger.info("=" * 70)
        logger.info("EMPOWHER INITIALIZED SUCCESSFULLY")
        logger.info("=" * 70)

    def _initialize_llm(self) -> Optional[LLMOrchestrator]:
        """Provider set-up failures leave the system on rule-based insights"""
        if not self.config.get('insight', {}).get('enabled', True):
            logger.info("Generative insights disabled in config")
            return None

        try:
            return LLMOrchestrator(self.config)
        except (ValueError, ImportError) as e:
            logger.error(f"LLM unavailable, using rule-based insights: {e}")
            return None

    # ------------------------------------------------------------------
    # Check-ins
    # ------------------------------------------------------------------

    def submit_checkin(
        self,
        user_id: str,
        payload: Dict[str, Any],
        profile: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Submit a check-in

        Args:
            user_id: Authenticated user identity
            payload: Check-in payload (instrument answers and/or mood/energy/stress)
            profile: Optional accessibility profile; stored for later check-ins

        Returns:
            Check-in result, or an error result
        """
        try:
            user_profile = None
            if profile is not None:
                user_profile = self.storage.save_profile(user_id, UserProfile.from_dict(profile))

            return self.pipeline.process_checkin(user_id, payload, user_profile).to_dict()

        except CheckinValidationError as e:
            logger.warning(f"Rejected check-in for {user_id}: {e.errors}")
            return invalid_result('Validation failed', e.errors)

        except StorageError as e:
            log_exception(logger, e, f"submit_checkin ({e.operation or 'storage'})")
            return server_error_result('Failed to process check-in')

        except Exception as e:
            log_exception(logger, e, "submit_checkin")
            return server_error_result('Failed to process check-in')

    def get_instrument_questions(self, language: str = 'en') -> Dict[str, Any]:
        return get_instrument_questions(language)

    # ------------------------------------------------------------------
    # Reflection loop
    # ------------------------------------------------------------------

    def record_outcome(
        self,
        user_id: str,
        decision_id: Optional[str],
        action: str,
        completed: bool,
        rating: Optional[int] = None,
        time_to_complete: Optional[float] = None
    ) -> Dict[str, Any]:
        """Record feedback on a recommended action"""
        try:
            outcome = self.outcome_tracker.record_outcome(
                user_id, decision_id, action, completed, rating, time_to_complete
            )
            return {'status': 'recorded', 'outcome': outcome.to_dict()}

        except OutcomeValidationError as e:
            logger.warning(f"Rejected outcome for {user_id}: {e}")
            return invalid_result(str(e))

        except Exception as e:
            log_exception(logger, e, "record_outcome")
            return server_error_result('Failed to record outcome')

    # ------------------------------------------------------------------
    # Memory query surface
    # ------------------------------------------------------------------

    def get_memory(self, user_id: str) -> Dict[str, Any]:
        """Stage, trend, engagement and dropout risk for one user"""
        try:
            summary = self.memory_manager.get_memory_summary(user_id)
            summary['dropout_risk'] = self._dropout_risk(user_id, summary['long_term']['consistency'])
            return summary
        except Exception as e:
            log_exception(logger, e, "get_memory")
            return server_error_result('Failed to load memory')

    def _dropout_risk(self, user_id: str, consistency: int) -> Optional[float]:
        entries = self.storage.list_entries(user_id, limit=7)
        if not entries:
            return None

        progress = self.storage.list_skill_progress(user_id)
        completion_rate = sum(1 for p in progress if p.completed) / len(progress) if progress else 0.0

        moods = pd.Series([e.mood_score for e in entries if e.mood_score is not None], dtype=float)
        volatility = float(moods.std(ddof=0)) if len(moods) > 1 else 0.0
        days_idle = (datetime.now() - entries[0].created_at).total_seconds() / 86400

        risk = self.insight.predict_dropout_risk(consistency, completion_rate, volatility, days_idle)
        return round(risk, 2)

    def get_decision_history(self, user_id: str, limit: int = 50, offset: int = 0) -> Dict[str, Any]:
        try:
            decisions = self.outcome_tracker.get_decision_history(user_id, limit=limit, offset=offset)
        except StorageError as e:
            return invalid_result(str(e))
        except Exception as e:
            log_exception(logger, e, "get_decision_history")
            return server_error_result('Failed to load decision history')

        return {'decisions': decisions, 'limit': limit, 'offset': offset, 'count': len(decisions)}

    def get_intervention_analytics(self, user_id: str) -> Dict[str, Any]:
        try:
            return {'analytics': self.outcome_tracker.get_intervention_analytics(user_id)}
        except Exception as e:
            log_exception(logger, e, "get_intervention_analytics")
            return server_error_result('Failed to load analytics')

    # ------------------------------------------------------------------
    # System
    # ------------------------------------------------------------------

    def save_state(self, path: Optional[str] = None) -> Optional[str]:
        """Write the in-memory store to a JSON snapshot"""
        path = path or self.snapshot_path
        if not path or not isinstance(self.storage, InMemoryStorage):
            logger.warning("No snapshot path configured - state not saved")
            return None
        return self.storage.save_snapshot(path)

    def get_system_info(self) -> Dict[str, Any]:
        """Get system information and configuration"""
        return {
            'system': 'EmpowHer',
            'version': '1.0.0',
            'llm': self.llm.get_model_info() if self.llm else None,
            'insights_enabled': self.insight.enabled,
            'agents': [agent.name for agent in self.pipeline.agents],
        }


def display_result(result: Dict[str, Any]):
    """Print a check-in result"""
    print("\n" + "=" * 70)
    print("CHECK-IN RESULT")
    print("=" * 70)

    if 'error' in result:
        print(f"Error ({result['status']}): {result['error']}")
        for detail in result.get('details', []):
            print(f"  - {detail['field']}: {detail['message']}")
        print("=" * 70 + "\n")
        return

    print(f"Entry: {result['entry_id']}")
    print(f"Level: {result['level'].upper()}")

    if result.get('crisis_protocol'):
        support = result['crisis_support']
        print("\n" + "-" * 70)
        print(f"PRIORITY: {result['priority']}")
        print("-" * 70)
        print(support['title'])
        print(support['message'])
        for helpline in support['helplines']:
            print(f"  * {helpline['name']}: {helpline['phone_number']}")
        print(support['urgent_note'])
        print("=" * 70 + "\n")
        return

    print("\n" + "-" * 70)
    print("INSIGHTS")
    print("-" * 70)
    for insight in result['insights']:
        print(f"  * {insight}")
    print(f"\n{result['encouragement']}")

    print("\n" + "-" * 70)
    print("INTERVENTIONS")
    print("-" * 70)
    for item in result['interventions']:
        print(f"  * {item['title']} ({item['duration']} min): {item['description']}")
    if result['ethical_adjustments']:
        print(f"  ({len(result['ethical_adjustments'])} ethical adjustments)")

    if result['skill_recommendations']:
        print("\n" + "-" * 70)
        print("SKILLS")
        print("-" * 70)
        for skill in result['skill_recommendations']:
            print(f"  * {skill['title']} [{skill['category']}, {skill['duration']} min]")

    if result['course_recommendation']:
        print(f"\nCourse: {result['course_recommendation']['title']}")

    print("\n" + "-" * 70)
    print("AGENT DECISIONS")
    print("-" * 70)
    for agent, summary in result['agent_decisions'].items():
        marker = ' (fallback)' if summary['is_fallback'] else ''
        print(f"  {agent}: {summary['confidence']:.2f}{marker}")

    print(f"\n{result['disclaimer']}")
    print("=" * 70 + "\n")


def main(argv=None):
    """Run a demo check-in"""
    parser = argparse.ArgumentParser(description="EmpowHer check-in demo")
    parser.add_argument('--config', default='config.yml', help='Path to configuration file')
    parser.add_argument('--user', default='demo_user_001', help='User id')
    parser.add_argument('--scenario', choices=sorted(DEMO_SCENARIOS), default='thriving',
                        help='Built-in check-in scenario')
    parser.add_argument('--payload', help='JSON file with a check-in payload (overrides --scenario)')
    parser.add_argument('--language', default=None, help='Preferred language (en, ur)')
    parser.add_argument('--education', default=None, help='Education level (none, primary, secondary, higher)')
    parser.add_argument('--json', action='store_true', help='Print the raw JSON result')
    args = parser.parse_args(argv)

    if args.payload:
        with open(args.payload, 'r', encoding='utf-8') as f:
            payload = json.load(f)
    else:
        payload = DEMO_SCENARIOS[args.scenario]

    profile = None
    if args.language or args.education:
        profile = {'preferred_language': args.language or 'en', 'education_level': args.education}

    empowher = EmpowHer(args.config)
    result = empowher.submit_checkin(args.user, payload, profile)

    if args.json:
        print(json.dumps(result, indent=2, ensure_ascii=False, default=str))
    else:
        display_result(result)

    empowher.save_state()
    return 0 if 'error' not in result else 1


if __name__ == "__main__":
    sys.exit(main())
