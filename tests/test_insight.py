"""
Tests for the insight service, strict output decoding and the LLM timeout.
"""

import time
from unittest.mock import patch

import pytest

from utils.errors import InsightCapabilityError
from utils.insight import (
    InsightService,
    decode_insights,
    keyword_sentiment,
    simplify_with_term_map,
    strip_code_fences,
)
from utils.llm import LLMOrchestrator


@pytest.fixture
def enabled_config(config):
    return {**config, 'insight': {'enabled': True, 'simplification_cache_size': 2}}


@pytest.fixture
def service(fake_llm, enabled_config):
    return InsightService(fake_llm, enabled_config)


class TestDecodeInsights:

    def test_valid_output(self):
        result = decode_insights('{"insights": ["one", "two"], "encouragement": "go on"}')
        assert result.ok
        assert result.insights == ('one', 'two')
        assert result.encouragement == 'go on'

    def test_code_fences_are_stripped(self):
        raw = '```json\n{"insights": ["one"], "encouragement": "go on"}\n```'
        assert strip_code_fences(raw).startswith('{')
        assert decode_insights(raw).ok

    @pytest.mark.parametrize('raw', [
        'Sure! Here are some insights.',
        '{"insights": [], "encouragement": "go on"}',
        '{"insights": ["one"]}',
        '{"insights": "one", "encouragement": "go on"}',
        '{"insights": ["   "], "encouragement": "go on"}',
        '{"insights": ["one"], "encouragement": "   "}',
        '[]',
    ])
    def test_malformed_output_is_a_failure(self, raw):
        result = decode_insights(raw)
        assert not result.ok
        assert result.insights == ()
        assert result.error


class TestInsightService:

    def test_disabled_without_model(self, insight):
        assert not insight.enabled
        result = insight.generate_insights('system', 'user prompt')
        assert not result.ok

    def test_disabled_by_config(self, fake_llm, config):
        assert not InsightService(fake_llm, config).enabled

    def test_generate_insights_success(self, service, fake_llm):
        result = service.generate_insights('system', 'user prompt', {'temperature': 0.7})

        assert result.ok
        assert result.insights == ('You are doing well',)
        fake_llm.generate.assert_called_once_with('user prompt', system_prompt='system', temperature=0.7)

    def test_generate_insights_capability_error(self, service, fake_llm):
        fake_llm.generate.side_effect = InsightCapabilityError("timed out")
        result = service.generate_insights('system', 'user prompt')
        assert not result.ok
        assert 'timed out' in result.error

    def test_generate_insights_empty_prompt(self, service, fake_llm):
        assert not service.generate_insights('system', '   ').ok
        fake_llm.generate.assert_not_called()

    def test_simplify_uses_model_and_caches(self, service, fake_llm):
        fake_llm.generate.return_value = '  feeling worried  '

        first = service.simplify('You show signs of anxiety', 'en', 'primary')
        second = service.simplify('You show signs of anxiety', 'en', 'primary')

        assert first == second == 'feeling worried'
        assert fake_llm.generate.call_count == 1

    def test_simplify_cache_evicts_oldest(self, service, fake_llm):
        fake_llm.generate.return_value = 'plain'
        for text in ('one', 'two', 'three', 'one'):
            service.simplify(text)
        assert fake_llm.generate.call_count == 4

    def test_simplify_falls_back_to_term_map(self, service, fake_llm):
        fake_llm.generate.side_effect = InsightCapabilityError("down")
        assert service.simplify('Anxiety and depression') == 'feeling very worried and feeling very low'

    def test_term_map_fallback_is_not_cached(self, service, fake_llm):
        fake_llm.generate.side_effect = [InsightCapabilityError("timed out"), 'feeling worried']

        assert service.simplify('Anxiety') == 'feeling very worried'
        assert service.simplify('Anxiety') == 'feeling worried'
        assert service.simplify('Anxiety') == 'feeling worried'
        assert fake_llm.generate.call_count == 2

    def test_simplify_without_model(self, insight):
        assert insight.simplify('Try mindfulness') == 'Try paying attention to the present moment'

    def test_sentiment_from_model(self, service, fake_llm):
        fake_llm.generate.return_value = '{"score": 0.6, "magnitude": 0.4, "emotions": ["hopeful"]}'
        result = service.sentiment('I feel hopeful')
        assert result.score == 0.6
        assert result.emotions == ('hopeful',)
        assert result.source == 'model'

    def test_sentiment_out_of_range_falls_back(self, service, fake_llm):
        fake_llm.generate.return_value = '{"score": 3, "magnitude": 0.4, "emotions": []}'
        result = service.sentiment('I am so happy today')
        assert result.source == 'fallback'
        assert result.score == 1.0

    def test_sentiment_empty_journal(self, service, fake_llm):
        result = service.sentiment('   ')
        assert result.source == 'empty'
        fake_llm.generate.assert_not_called()


class TestRuleBasedHelpers:

    def test_keyword_sentiment_negative(self):
        result = keyword_sentiment('sad and angry day')
        assert result.score == -1.0
        assert result.emotions == ('negative',)

    def test_keyword_sentiment_neutral(self):
        result = keyword_sentiment('went to the market')
        assert result.score == 0.0
        assert result.emotions == ('neutral',)

    def test_term_map_is_case_insensitive(self):
        assert simplify_with_term_map('WELLBEING matters') == 'feeling good overall matters'

    def test_dropout_risk(self):
        assert InsightService.predict_dropout_risk(90, 0.8, 0.5, 1) == 0.0
        assert InsightService.predict_dropout_risk(10, 0.1, 3.0, 10) == pytest.approx(1.0)


class TestLLMOrchestrator:

    @pytest.fixture
    def orchestrator(self, config):
        return LLMOrchestrator(config)

    def test_mock_mode(self, orchestrator):
        assert orchestrator.is_mock
        assert orchestrator.get_model_info()['local_type'] == 'mock'

    def test_mock_simplify_echoes_text(self, orchestrator):
        response = orchestrator.generate('Simplify this.\nText: hello there', system_prompt='Simplify terms')
        assert response == 'hello there'

    def test_mock_insights_are_valid(self, orchestrator):
        assert decode_insights(orchestrator.generate('User is in distress')).ok

    def test_timeout_raises_capability_error(self, orchestrator):
        def slow(*args, **kwargs):
            time.sleep(1)
            return 'late'

        with patch.object(orchestrator, '_generate_local', side_effect=slow):
            with pytest.raises(InsightCapabilityError, match='timed out'):
                orchestrator.generate('prompt', timeout=0.1)

    def test_provider_error_is_wrapped(self, orchestrator):
        with patch.object(orchestrator, '_generate_local', side_effect=RuntimeError('boom')):
            with pytest.raises(InsightCapabilityError, match='boom'):
                orchestrator.generate('prompt')

    def test_empty_response_is_an_error(self, orchestrator):
        with patch.object(orchestrator, '_generate_local', return_value='   '):
            with pytest.raises(InsightCapabilityError):
                orchestrator.generate('prompt')

    def test_connection_check(self, orchestrator):
        assert orchestrator.test_connection()
