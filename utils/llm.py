import json
import os
import re
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from enum import Enum
from typing import Optional, Dict, Any

from dotenv import load_dotenv

from utils.errors import InsightCapabilityError
from utils.logger import setup_logger

load_dotenv()
logger = setup_logger('llm', 'logs/llm.log')


class LLMProvider(Enum):
    """Supported LLM providers"""
    LOCAL = "local"
    GEMINI = "gemini"
    OPENAI = "openai"


class LLMOrchestrator:
    """
    Unified LLM orchestration interface.
    Manages interactions with different LLM providers.

    Every call runs on a worker thread and is abandoned after
    ``timeout_seconds``; the caller sees InsightCapabilityError.
    """

    def __init__(self, config: Dict[str, Any]):
        logger.info("Initializing LLM Orchestrator")

        llm_config = config.get('llm', {})

        self.provider = LLMProvider(llm_config.get('provider', 'local'))
        self.model_name = llm_config.get('model_name', 'mock')
        self.temperature = llm_config.get('temperature', 0.3)
        self.max_tokens = llm_config.get('max_tokens', 512)
        self.timeout_seconds = llm_config.get('timeout_seconds', 10)

        logger.info(f"Provider: {self.provider.value}")
        logger.info(f"Model: {self.model_name}")
        logger.info(f"Temperature: {self.temperature}")
        logger.info(f"Timeout: {self.timeout_seconds}s")

        self._executor = ThreadPoolExecutor(
            max_workers=llm_config.get('max_workers', 4),
            thread_name_prefix='llm'
        )

        # Initialize provider
        if self.provider == LLMProvider.GEMINI:
            self._init_gemini(os.getenv("GEMINI_API_KEY") or llm_config.get('api_key'))
        elif self.provider == LLMProvider.OPENAI:
            self._init_openai(llm_config.get('api_key'))
        else:
            self._init_local(llm_config)

        logger.info("LLM Orchestrator initialized successfully")

    def _init_gemini(self, api_key: Optional[str]):
        """Initialize Gemini API"""
        logger.info("Initializing Gemini API")

        import google.generativeai as genai

        if not api_key:
            logger.error("Gemini API key not found")
            raise ValueError(
                "Gemini API key not found. Set GEMINI_API_KEY environment variable "
                "or provide api_key in config.yml"
            )

        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(self.model_name)

        logger.info("Gemini API initialized successfully")

    def _init_openai(self, api_key: Optional[str]):
        """Initialize OpenAI API"""
        logger.info("Initializing OpenAI API")

        import openai

        # Get API key from environment if not provided
        if not api_key:
            api_key = os.environ.get('OPENAI_API_KEY')

        if not api_key:
            logger.error("OpenAI API key not found")
            raise ValueError(
                "OpenAI API key not found. Set OPENAI_API_KEY environment variable "
                "or provide api_key in config.yml"
            )

        self.client = openai.OpenAI(api_key=api_key, timeout=self.timeout_seconds)
        logger.info("OpenAI API initialized successfully")

    def _init_local(self, llm_config: Dict[str, Any]):
        """Initialize local LLM"""
        logger.info("Initializing Local LLM")

        self.base_url = llm_config.get('base_url', 'http://localhost:8000/v1')
        self.local_type = llm_config.get('local_type', 'mock')

        logger.info(f"Local LLM base URL: {self.base_url}")
        logger.info(f"Local LLM type: {self.local_type}")

        if self.local_type == 'openai_compatible':
            import openai
            self.client = openai.OpenAI(
                base_url=self.base_url,
                api_key="dummy",  # Many local servers don't need real keys
                timeout=self.timeout_seconds
            )
            logger.info("OpenAI-compatible local LLM initialized")
        else:
            logger.warning(f"Local LLM type '{self.local_type}' - using mock mode")

    @property
    def is_mock(self) -> bool:
        return self.provider == LLMProvider.LOCAL and self.local_type != 'openai_compatible'

    def generate(self, prompt: str, system_prompt: Optional[str] = None, **kwargs) -> str:
        """
        Generate response from LLM.

        Args:
            prompt: Input prompt
            system_prompt: Optional instructions sent ahead of the prompt
            **kwargs: temperature, max_tokens, timeout

        Returns:
            Generated text response

        Raises:
            InsightCapabilityError: provider failure or timeout
        """
        logger.debug(f"Generating response (prompt length: {len(prompt)} chars)")

        timeout = kwargs.pop('timeout', self.timeout_seconds)

        if self.provider == LLMProvider.GEMINI:
            call = self._generate_gemini
        elif self.provider == LLMProvider.OPENAI:
            call = self._generate_openai
        else:
            call = self._generate_local

        future = self._executor.submit(call, prompt, system_prompt, **kwargs)

        try:
            response = future.result(timeout=timeout)
        except FutureTimeoutError as e:
            future.cancel()
            logger.error(f"LLM call timed out after {timeout}s")
            raise InsightCapabilityError(f"LLM call timed out after {timeout}s") from e
        except Exception as e:
            logger.error(f"Error generating response: {e}", exc_info=True)
            raise InsightCapabilityError(f"LLM call failed: {e}") from e

        if not response or not response.strip():
            raise InsightCapabilityError("LLM returned an empty response")

        logger.debug(f"Response generated (length: {len(response)} chars)")
        return response

    def _generate_gemini(self, prompt: str, system_prompt: Optional[str], **kwargs) -> str:
        """Generate response using Gemini API"""
        logger.debug("Using Gemini API for generation")

        generation_config = {
            'temperature': kwargs.get('temperature', self.temperature),
            'max_output_tokens': kwargs.get('max_tokens', self.max_tokens)
        }

        logger.debug(f"Generation config: {generation_config}")

        full_prompt = f"{system_prompt}\n\n{prompt}" if system_prompt else prompt
        response = self.model.generate_content(full_prompt, generation_config=generation_config)

        if response.parts:
            return response.text

        logger.warning(f"Gemini response blocked. Full response: {response}")
        raise InsightCapabilityError("Response blocked by API")

    def _chat_completion(self, prompt: str, system_prompt: Optional[str], **kwargs) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = self.client.chat.completions.create(
            model=self.model_name,
            messages=messages,
            temperature=kwargs.get('temperature', self.temperature),
            max_tokens=kwargs.get('max_tokens', self.max_tokens)
        )

        return response.choices[0].message.content

    def _generate_openai(self, prompt: str, system_prompt: Optional[str], **kwargs) -> str:
        """Generate response using OpenAI API"""
        logger.debug("Using OpenAI API for generation")
        return self._chat_completion(prompt, system_prompt, **kwargs)

    def _generate_local(self, prompt: str, system_prompt: Optional[str], **kwargs) -> str:
        """Generate response using local LLM"""
        logger.debug("Using Local LLM for generation")

        if self.local_type == 'openai_compatible':
            return self._chat_completion(prompt, system_prompt, **kwargs)
        return self._mock_local_response(prompt, system_prompt)

    def _mock_local_response(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """
        Keyword-driven responses shaped like real model output.
        Used for demos and offline development.
        """
        instructions = (system_prompt or '').lower()
        lower_prompt = prompt.lower()

        if 'simplify' in instructions:
            # Echo the text back unchanged
            match = re.search(r'text:\s*(.*)\Z', prompt, flags=re.IGNORECASE | re.DOTALL)
            return match.group(1).strip() if match else prompt

        if 'sentiment' in instructions:
            return json.dumps({'score': 0.0, 'magnitude': 0.0, 'emotions': ['neutral']})

        if any(word in lower_prompt for word in ('distress', 'struggling', 'crisis', 'red', 'orange')):
            return json.dumps({
                'insights': [
                    "I hear how difficult things are for you right now.",
                    "Your feelings are valid, and you don't have to go through this alone."
                ],
                'encouragement': "Please be gentle with yourself today. You are doing the best you can."
            })

        if any(word in lower_prompt for word in ('thriving', 'improving', 'good', 'green', 'yellow')):
            return json.dumps({
                'insights': [
                    "It's wonderful to see you doing so well!",
                    "Building on this positive momentum can help you stay strong."
                ],
                'encouragement': "Keep up the amazing work! Your progress is inspiring."
            })

        return json.dumps({
            'insights': [
                "Thank you for sharing your check-in.",
                "Tracking your emotions is a great step towards wellbeing."
            ],
            'encouragement': "We are here to support you on your journey."
        })

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the current model"""
        info = {
            'provider': self.provider.value,
            'model_name': self.model_name,
            'temperature': self.temperature,
            'max_tokens': self.max_tokens,
            'timeout_seconds': self.timeout_seconds
        }

        if self.provider == LLMProvider.LOCAL:
            info['base_url'] = self.base_url
            info['local_type'] = self.local_type

        logger.debug(f"Model info: {info}")
        return info

    def test_connection(self) -> bool:
        """Test LLM connection"""
        logger.info("Testing LLM connection")

        try:
            response = self.generate("Hello, this is a test. Please respond with 'OK'.")
            logger.info(f"Connection test successful. Response: {response[:50]}...")
            return True
        except InsightCapabilityError as e:
            logger.error(f"Connection test failed: {e}")
            return False
