"""
Knowledge Retrieval Agent

Supporting agent that retrieves:
- Crisis helplines from the catalog (with built-in defaults)
- The crisis support payload shown when the crisis gate fires
"""

from typing import Any, Dict, List

from utils.logger import setup_logger
from utils.models import Helpline
from utils.storage import StorageBackend

logger = setup_logger('knowledge_retrieval_agent', 'logs/knowledge_retrieval_agent.log')


DEFAULT_HELPLINES = [
    Helpline(
        name="National Suicide Prevention Lifeline (US)",
        phone_number="988",
        description="24/7 free and confidential support",
        region="United States"
    ),
    Helpline(
        name="Crisis Text Line",
        phone_number="Text HOME to 741741",
        description="24/7 text-based crisis support",
        region="United States"
    ),
    Helpline(
        name="International Association for Suicide Prevention",
        phone_number="Visit iasp.info/resources",
        description="Find helplines worldwide",
        region="International"
    ),
]

CRISIS_SUPPORT_MESSAGE = {
    'title': "We're Here For You",
    'message': (
        "It sounds like you're going through a really difficult time right now. "
        "Please know that you don't have to face this alone."
    ),
    'disclaimer': (
        "This platform provides wellness guidance only and is not a substitute "
        "for professional mental health care."
    ),
    'urgent_note': (
        "If you're in immediate danger, please call your local emergency services "
        "or go to your nearest emergency room."
    ),
}


class KnowledgeRetrievalAgent:
    """
    Knowledge Retrieval Agent for crisis resources.

    Helplines come from the storage catalog; when the catalog is empty or
    unreachable the curated defaults are used, so a crisis response always
    carries at least one helpline.
    """

    def __init__(self, storage: StorageBackend, config: Dict[str, Any]):
        self.storage = storage
        self.config = config

        support_config = config.get('crisis_support', {})
        self.support_message = {**CRISIS_SUPPORT_MESSAGE, **support_config.get('message', {})}

        logger.info("Knowledge Retrieval Agent initialized")

    def get_helplines(self) -> List[Helpline]:
        """Active helplines ordered by region then name"""
        try:
            helplines = self.storage.list_helplines()
        except Exception as e:
            logger.error(f"Helpline lookup failed, using defaults: {e}", exc_info=True)
            return list(DEFAULT_HELPLINES)

        if not helplines:
            logger.warning("No helplines configured - using defaults")
            return list(DEFAULT_HELPLINES)

        return sorted(helplines, key=lambda h: (h.region, h.name))

    def build_crisis_support(self, helplines: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Crisis payload returned to the caller in place of normal content"""
        return {
            **self.support_message,
            'helplines': list(helplines) or [h.to_dict() for h in DEFAULT_HELPLINES],
        }
